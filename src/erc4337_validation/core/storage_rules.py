"""
Storage access rules (STO-010 .. STO-033).

Validation code may only touch storage the bundler can reason about across
operations in the same bundle:
- The account's own storage, always
- Storage "associated" with the account (``token.balances[account]``) once the
  account is deployed, or while a staked factory deploys it
- With a staked factory or paymaster: that entity's own storage, storage
  associated with it, and read-only access to any other contract

An association is a slot equal to the address, or a mapping slot whose key
(recovered through the mapping resolver) equals the address.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterator, Optional, Sequence

from .address_utils import address_to_word, is_zero_address
from .config import DEFAULT_CONFIG, ValidationConfig
from .constants import (
    STORAGE_OPCODES,
    STORAGE_WRITE_OPCODES,
    TRANSIENT_STORAGE_OPCODES,
)
from .interfaces import AddressLabeler, ChainStateReader, MappingRecorder
from .mapping_resolver import resolve_mapping_slot
from .trace import TraceStep
from .user_operation import Entities
from .validation_exceptions import InvalidStorageLocationError, RuleCode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StorageAccessEvent:
    """A storage read or write performed by one trace step."""

    contract: str
    slot: int
    value: int  # new value on write, loaded value on read
    is_write: bool
    is_transient: bool
    depth: int


def storage_accesses(steps: Sequence[TraceStep]) -> Iterator[StorageAccessEvent]:
    """Storage events of a sub-trace in execution order."""
    for index, step in enumerate(steps):
        if step.opcode not in STORAGE_OPCODES:
            continue
        is_write = step.opcode in STORAGE_WRITE_OPCODES
        slot = step.stack_item(0)
        if is_write:
            value = step.stack_item(1)
        else:
            value = _loaded_value(steps, index)
        yield StorageAccessEvent(
            contract=step.address,
            slot=slot,
            value=value,
            is_write=is_write,
            is_transient=step.opcode in TRANSIENT_STORAGE_OPCODES,
            depth=step.depth,
        )


def _loaded_value(steps: Sequence[TraceStep], index: int) -> int:
    step = steps[index]
    if step.result is not None:
        return step.result
    if index + 1 < len(steps):
        following = steps[index + 1]
        if following.depth == step.depth and following.address == step.address and following.stack:
            return following.stack_item(0)
    return 0


class StoragePolicyValidator:
    """Classifies every storage access of a sub-trace."""

    def __init__(
        self,
        entities: Entities,
        entry_point: str,
        chain_state: ChainStateReader,
        mapping_recorder: MappingRecorder,
        labeler: Optional[AddressLabeler] = None,
        config: ValidationConfig = DEFAULT_CONFIG,
    ):
        self.entities = entities
        self.entry_point = entry_point
        self.chain_state = chain_state
        self.mapping_recorder = mapping_recorder
        self.labeler = labeler
        self.config = config
        self._account_deployed: Optional[bool] = None

    @property
    def account_deployed(self) -> bool:
        if self._account_deployed is None:
            self._account_deployed = self.chain_state.code_size(self.entities.account) > 0
        return self._account_deployed

    def validate(self, entity: str, steps: Sequence[TraceStep]) -> int:
        """
        Check every storage access of ``entity``'s sub-trace.

        Returns:
            Number of storage accesses checked

        Raises:
            InvalidStorageLocationError: On the first disallowed access
        """
        checked = 0
        for access in storage_accesses(steps):
            self.check_access(entity, access)
            checked += 1
        return checked

    def check_access(self, entity: str, access: StorageAccessEvent) -> None:
        entities = self.entities
        contract = access.contract

        # [STO-010]
        if contract == entities.account:
            return
        # Entry point storage is only reachable through calls OP-052 permits
        if contract == self.entry_point:
            return

        is_entity_contract = entities.is_entity(contract)
        associated_with_account = (
            not is_entity_contract and self.is_associated(contract, access.slot, entities.account)
        )

        # [STO-021], [STO-022]
        if associated_with_account and (
            self.account_deployed or (entities.has_factory and entities.is_factory_staked)
        ):
            return

        if entities.any_staked:
            staked = [
                address
                for address in (entities.factory, entities.paymaster)
                if not is_zero_address(address) and entities.is_staked(address)
            ]
            # [STO-031]
            if contract in staked:
                return
            if not is_entity_contract:
                # [STO-032]
                if any(self.is_associated(contract, access.slot, address) for address in staked):
                    return
                # [STO-033]
                if not access.is_write:
                    return

        raise InvalidStorageLocationError(
            self._violated_rule(contract, access, is_entity_contract, associated_with_account),
            entity=entity,
            contract=contract,
            label=self._label(contract),
            slot=access.slot,
            value=access.value,
            is_write=access.is_write,
            is_transient=access.is_transient,
        )

    def is_associated(self, contract: str, slot: int, address: str) -> bool:
        """Whether ``slot`` equals ``address`` or is a mapping slot keyed by it."""
        if slot == 0 or is_zero_address(address):
            return False
        word = address_to_word(address)
        if slot == word:
            return True
        resolution = resolve_mapping_slot(
            self.mapping_recorder,
            contract,
            slot,
            search_depth=self.config.mapping_search_depth,
        )
        return resolution.found and resolution.key == word

    def _violated_rule(
        self,
        contract: str,
        access: StorageAccessEvent,
        is_entity_contract: bool,
        associated_with_account: bool,
    ) -> RuleCode:
        if associated_with_account:
            return RuleCode.STO_021
        if is_entity_contract:
            return RuleCode.STO_031
        for address in (self.entities.factory, self.entities.paymaster):
            if self.is_associated(contract, access.slot, address):
                return RuleCode.STO_032
        return RuleCode.STO_033

    def _label(self, address: str) -> str:
        if self.labeler is not None:
            return self.labeler.label(address)
        title = self.entities.title_of(address)
        return title if title != "unknown" else address
