"""
Trace filtering: attribute instruction steps to the entity that ran them.

The entry point drives validation from its own frame, calling the account
(``validateUserOp``), the factory (through its sender creator) and the
paymaster (``validatePaymasterUserOp``) in turn. Every step nested below one
of those calls belongs to the called entity; the entry point's own
bookkeeping at the top frame is not subject to the rules.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from .address_utils import is_zero_address, normalize_address, word_to_address
from .constants import Opcode
from .trace import TraceStep
from .user_operation import Entities

logger = logging.getLogger(__name__)

# Calls from the entry point's own frame that switch attribution
_ATTRIBUTING_CALLS = frozenset({Opcode.CALL, Opcode.STATICCALL})


@dataclass(frozen=True)
class EntityTraces:
    """Order-preserving, disjoint sub-traces per entity."""

    account: Tuple[TraceStep, ...] = ()
    paymaster: Tuple[TraceStep, ...] = ()
    factory: Tuple[TraceStep, ...] = ()
    start_depth: int = 0

    def items(self) -> List[Tuple[str, Tuple[TraceStep, ...]]]:
        """Sub-traces in validation order: account, factory, paymaster."""
        return [
            ("account", self.account),
            ("factory", self.factory),
            ("paymaster", self.paymaster),
        ]

    @property
    def step_count(self) -> int:
        return len(self.account) + len(self.paymaster) + len(self.factory)


def find_start_depth(steps: Iterable[TraceStep], entry_point: str) -> int:
    """Depth of the first step executed by the entry point, 0 if it never runs."""
    for step in steps:
        if step.address == entry_point:
            return step.depth
    return 0


def filter_entity_traces(
    steps: Iterable[TraceStep],
    entities: Entities,
    entry_point: str,
    sender_creator: Optional[str] = None,
) -> EntityTraces:
    """
    Split a flat trace into account, factory and paymaster sub-traces.

    Args:
        steps: Flat instruction trace in execution order
        entities: Resolved participants
        entry_point: Orchestrating entry point
        sender_creator: Helper contract the entry point calls to run the
            factory, if the entry point version uses one

    Returns:
        EntityTraces; steps of any other call from the entry point are dropped
    """
    steps = tuple(steps)
    entry_point = normalize_address(entry_point)
    start_depth = find_start_depth(steps, entry_point)

    factory_targets = set()
    if entities.has_factory:
        factory_targets.add(entities.factory)
    if sender_creator is not None and not is_zero_address(sender_creator):
        factory_targets.add(normalize_address(sender_creator))

    account_steps: List[TraceStep] = []
    paymaster_steps: List[TraceStep] = []
    factory_steps: List[TraceStep] = []
    current_target: Optional[str] = None
    dropped = 0

    for step in steps:
        if step.depth == start_depth and step.address == entry_point:
            if step.opcode in _ATTRIBUTING_CALLS:
                current_target = word_to_address(step.stack_item(1))
            continue
        if step.depth <= start_depth:
            dropped += 1
            continue

        if current_target == entities.account:
            account_steps.append(step)
        elif entities.has_paymaster and current_target == entities.paymaster:
            paymaster_steps.append(step)
        elif current_target in factory_targets:
            factory_steps.append(step)
        else:
            dropped += 1

    traces = EntityTraces(
        account=tuple(account_steps),
        paymaster=tuple(paymaster_steps),
        factory=tuple(factory_steps),
        start_depth=start_depth,
    )
    logger.debug(
        "Filtered validation trace",
        extra={
            "event": "trace.filtered",
            "start_depth": start_depth,
            "account_steps": len(account_steps),
            "factory_steps": len(factory_steps),
            "paymaster_steps": len(paymaster_steps),
            "dropped_steps": dropped,
        },
    )
    return traces
