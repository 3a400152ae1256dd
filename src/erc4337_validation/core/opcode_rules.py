"""
Opcode, call and contract creation rules (OP-011 .. OP-080).

Instructions whose result depends on the block being built (TIMESTAMP, NUMBER,
GASPRICE, ...) or on the remaining gas would let an operation validate during
simulation and fail on chain, so they are banned. Calls are restricted so an
operation cannot reach into the entry point, move value around, or depend on
contracts that do not exist yet.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from .address_utils import is_precompile, is_zero_address, word_to_address
from .constants import (
    BANNED_OPCODES,
    CALL_OPCODES,
    DEPOSIT_TO_SELECTOR,
    EXTCODE_OPCODES,
    STAKED_ONLY_OPCODES,
    Opcode,
)
from .interfaces import AddressLabeler, ChainStateReader
from .trace import CallFrame, TraceStep
from .user_operation import Entities
from .validation_exceptions import InvalidOpcodeError, PolicyViolationError, RuleCode

logger = logging.getLogger(__name__)


class OpcodePolicyValidator:
    """
    Classifies instructions, calls and creations of the sub-traces of one
    validation pass.

    The CREATE2 count spans every sub-trace of the pass, so use one instance
    per pass.
    """

    def __init__(
        self,
        entities: Entities,
        entry_point: str,
        has_init_code: bool,
        chain_state: ChainStateReader,
        labeler: Optional[AddressLabeler] = None,
    ):
        self.entities = entities
        self.entry_point = entry_point
        self.has_init_code = has_init_code
        self.chain_state = chain_state
        self.labeler = labeler
        self.create2_count = 0

    def validate(self, entity: str, steps: Sequence[TraceStep]) -> int:
        """
        Scan ``entity``'s sub-trace in execution order.

        Returns:
            Number of call/create frames checked

        Raises:
            InvalidOpcodeError: Banned instruction
            PolicyViolationError: Out-of-gas, call or creation rule broken
        """
        frames = 0
        for index, step in enumerate(steps):
            # [OP-020]
            if step.is_out_of_gas:
                raise PolicyViolationError(
                    RuleCode.OP_020,
                    f"{entity} ran out of gas in {self._describe(step.address)} during validation",
                    details={"entity": entity, "contract": step.address, "opcode": step.op_name},
                )

            self.check_opcode(entity, steps, index)

            opcode = step.opcode
            if opcode in CALL_OPCODES:
                self.check_call(entity, CallFrame.from_step(step))
                frames += 1
            elif opcode == Opcode.CREATE2:
                self.check_create2(entity, CallFrame.from_step(step))
                frames += 1
            elif opcode in EXTCODE_OPCODES:
                self.check_code_target(
                    entity, step.address, word_to_address(step.stack_item(0)), step.op_name
                )
        return frames

    def check_opcode(self, entity: str, steps: Sequence[TraceStep], index: int) -> None:
        step = steps[index]
        opcode = step.opcode
        if opcode not in BANNED_OPCODES:
            return

        # [OP-012]
        if opcode == Opcode.GAS:
            following = steps[index + 1] if index + 1 < len(steps) else None
            if following is not None and following.opcode in CALL_OPCODES:
                return
            raise InvalidOpcodeError(RuleCode.OP_012, entity, step.op_name, step.address)

        # [OP-080]
        if opcode in STAKED_ONLY_OPCODES:
            if self.entities.is_staked(step.address):
                return
            raise InvalidOpcodeError(RuleCode.OP_080, entity, step.op_name, step.address)

        # [OP-011]
        raise InvalidOpcodeError(RuleCode.OP_011, entity, step.op_name, step.address)

    def check_code_target(self, entity: str, caller: str, target: str, action: str) -> None:
        """[OP-041] target must have code, be a precompile, or be the account."""
        if target == self.entities.account or is_precompile(target):
            return
        if self.chain_state.code_size(target) > 0:
            return
        raise PolicyViolationError(
            RuleCode.OP_041,
            f"{entity} cannot {action} address without code {self._describe(target)}",
            details={"entity": entity, "caller": caller, "target": target, "opcode": action},
        )

    def check_call(self, entity: str, frame: CallFrame) -> None:
        entities = self.entities
        self.check_code_target(entity, frame.caller, frame.target, frame.kind.name)

        value_senders = {entities.account}
        if entities.has_factory:
            value_senders.add(entities.factory)

        # [OP-061]
        if frame.value > 0 and not (
            frame.caller in value_senders and frame.target == self.entry_point
        ):
            raise PolicyViolationError(
                RuleCode.OP_061,
                f"{entity} sends value {frame.value} from {self._describe(frame.caller)} "
                f"to {self._describe(frame.target)}",
                details={
                    "entity": entity,
                    "caller": frame.caller,
                    "target": frame.target,
                    "value": frame.value,
                },
            )

        # [OP-052]
        if frame.target == self.entry_point:
            if not frame.data and frame.caller == entities.account:
                return
            if frame.selector == DEPOSIT_TO_SELECTOR and frame.caller in value_senders:
                return
            raise PolicyViolationError(
                RuleCode.OP_052,
                f"{entity} makes illegal call into the entry point with selector "
                f"0x{frame.selector.hex()} from {self._describe(frame.caller)}",
                details={
                    "entity": entity,
                    "caller": frame.caller,
                    "selector": "0x" + frame.selector.hex(),
                    "kind": frame.kind.name,
                },
            )

    def check_create2(self, entity: str, frame: CallFrame) -> None:
        """[OP-031] one CREATE2, only with initCode, deploying the sender."""
        self.create2_count += 1
        details = {
            "entity": entity,
            "deployer": frame.caller,
            "created": frame.target,
            "count": self.create2_count,
        }
        if not self.has_init_code:
            raise PolicyViolationError(
                RuleCode.OP_031,
                f"{entity} uses CREATE2 but the operation has no initCode",
                details=details,
            )
        if self.create2_count > 1:
            raise PolicyViolationError(
                RuleCode.OP_031,
                f"{entity} uses CREATE2 more than once",
                details=details,
            )
        if frame.target != self.entities.account:
            raise PolicyViolationError(
                RuleCode.OP_031,
                f"{entity} CREATE2 deploys {frame.target} instead of the sender "
                f"{self.entities.account}",
                details=details,
            )
        logger.debug(
            "Sender deployed by CREATE2",
            extra={"event": "rules.create2_sender", "deployer": frame.caller},
        )

    def _describe(self, address: str) -> str:
        if is_zero_address(address):
            return address
        if self.labeler is not None:
            return f"{self.labeler.label(address)} ({address})"
        title = self.entities.title_of(address)
        if address == self.entry_point:
            title = "entry point"
        return address if title == "unknown" else f"{title} ({address})"
