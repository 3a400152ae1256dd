"""
Mapping slot resolution.

Solidity stores ``mapping[key]`` at ``keccak256(key ++ base_slot)`` and a
struct value's field ``k`` at that location plus ``k``. Recovering the key
behind an arbitrary 256-bit slot is what lets the storage rules decide whether
a slot is "associated" with an entity, e.g. ``token.balances[account]``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Tuple

from eth_utils import keccak

from .address_utils import normalize_address
from .config import MAPPING_SEARCH_DEPTH
from .constants import WORD_SIZE, Opcode
from .interfaces import MappingRecorder
from .trace import TraceStep

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MappingResolution:
    """Outcome of resolving a slot to the mapping key that produced it."""

    found: bool
    key: int = 0
    parent_slot: int = 0
    offset: int = 0  # struct field offset of the hit below the queried slot


NOT_FOUND = MappingResolution(found=False)


def resolve_mapping_slot(
    recorder: MappingRecorder,
    contract: str,
    slot: int,
    search_depth: int = MAPPING_SEARCH_DEPTH,
) -> MappingResolution:
    """
    Resolve ``slot`` of ``contract`` to its mapping key.

    The slot itself is tried first, then ``slot - 1`` down to
    ``slot - search_depth`` to recover fields of a struct stored in the
    mapping. Structs whose field sits further than ``search_depth`` words
    from the struct start do not resolve.
    """
    contract = normalize_address(contract)
    for offset in range(search_depth + 1):
        if offset > slot:
            break
        found, key, parent_slot = recorder.resolve(contract, slot - offset)
        if found:
            return MappingResolution(found=True, key=key, parent_slot=parent_slot, offset=offset)
    return NOT_FOUND


class KeccakMappingRecorder:
    """
    Mapping recorder fed from the trace's own KECCAK256 steps.

    A 64-byte preimage ``key ++ base_slot`` hashed by a contract is recorded as
    a mapping slot of that contract. Nested mappings resolve naturally: the
    outer slot's preimage carries the inner key and the parent mapping slot.
    """

    def __init__(self) -> None:
        self._slots: Dict[Tuple[str, int], Tuple[int, int]] = {}
        self._recording = False

    @classmethod
    def from_trace(cls, steps: Iterable[TraceStep]) -> "KeccakMappingRecorder":
        recorder = cls()
        recorder.start_recording()
        recorder.record_steps(steps)
        recorder.stop_recording()
        return recorder

    @property
    def recording(self) -> bool:
        return self._recording

    def start_recording(self) -> None:
        self._slots.clear()
        self._recording = True

    def stop_recording(self) -> None:
        self._recording = False

    def record_step(self, step: TraceStep) -> None:
        if not self._recording or step.opcode != Opcode.KECCAK256:
            return
        preimage = step.memory_input
        if len(preimage) != 2 * WORD_SIZE:
            return
        slot = int.from_bytes(keccak(preimage), "big")
        key = int.from_bytes(preimage[:WORD_SIZE], "big")
        parent_slot = int.from_bytes(preimage[WORD_SIZE:], "big")
        self._slots.setdefault((step.address, slot), (key, parent_slot))

    def record_mapping(self, contract: str, key: int, parent_slot: int) -> int:
        """
        Record a mapping slot observed outside the trace, e.g. by a node
        tracer that reports state accesses only.

        Returns:
            The slot ``keccak256(key ++ parent_slot)``
        """
        preimage = key.to_bytes(WORD_SIZE, "big") + parent_slot.to_bytes(WORD_SIZE, "big")
        slot = int.from_bytes(keccak(preimage), "big")
        self._slots.setdefault((normalize_address(contract), slot), (key, parent_slot))
        return slot

    def record_steps(self, steps: Iterable[TraceStep]) -> None:
        for step in steps:
            self.record_step(step)
        logger.debug(
            "Recorded mapping slots",
            extra={"event": "mapping.recorded", "slots": len(self._slots)},
        )

    def resolve(self, contract: str, slot: int) -> Tuple[bool, int, int]:
        entry = self._slots.get((normalize_address(contract), slot))
        if entry is None:
            return False, 0, 0
        return True, entry[0], entry[1]

    def __len__(self) -> int:
        return len(self._slots)
