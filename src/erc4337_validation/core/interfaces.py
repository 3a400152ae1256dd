"""
Collaborator Protocol Interfaces - Decoupling the rules engine from its harness.

The engine classifies an already-recorded trace. Everything that needs a live
chain (running the simulation, reverting it, resolving mapping slots, reading
stake and code) is reached through these protocols, so that:
- Tests can substitute static in-memory implementations
- Any simulation backend (a local EVM, a node tracer, a test framework) can
  drive the engine
- The engine itself never mutates chain state

Usage:
    validator = UserOperationValidator(
        stake_registry=registry,      # StakeRegistry
        chain_state=chain,            # ChainStateReader
        labeler=labels,               # AddressLabeler
    )
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, Sequence, Tuple, Union, runtime_checkable

if TYPE_CHECKING:
    from .trace import StateAccessRecord, TraceStep
    from .user_operation import UserOperation


@dataclass(frozen=True)
class DepositInfo:
    """Stake registry entry of one address."""

    stake: int = 0
    unstake_delay_sec: int = 0


@runtime_checkable
class StakeRegistry(Protocol):
    """
    Protocol for stake lookups.

    The entry point doubles as the stake manager, so lookups are scoped to
    the entry point the operation is validated against.
    """

    def deposit_info(self, entry_point: str, address: str) -> DepositInfo:
        """Return the stake and unstake delay posted by ``address``."""
        ...


@runtime_checkable
class ChainStateReader(Protocol):
    """Protocol for reading deployed code sizes."""

    def code_size(self, address: str) -> int:
        """Return the size of the code deployed at ``address`` (0 if none)."""
        ...


@runtime_checkable
class MappingRecorder(Protocol):
    """
    Protocol for mapping slot recording.

    Captures every keyed mapping slot computed during the traced execution and
    answers slot-to-key queries afterwards.
    """

    def start_recording(self) -> None:
        ...

    def stop_recording(self) -> None:
        ...

    def resolve(self, contract: str, slot: int) -> Tuple[bool, int, int]:
        """Return ``(found, key, parent_slot)`` for ``slot`` of ``contract``."""
        ...


@runtime_checkable
class AddressLabeler(Protocol):
    """Protocol for human-readable address labels (diagnostics only)."""

    def label(self, address: str) -> str:
        ...


@runtime_checkable
class SnapshotProvider(Protocol):
    """Protocol for isolating a simulation in a revertible snapshot."""

    def take_snapshot(self) -> int:
        ...

    def revert(self, snapshot_id: int) -> bool:
        ...


@runtime_checkable
class TraceProducer(Protocol):
    """Protocol for running the validation call and capturing its trace."""

    def trace_validation(
        self, user_op: "UserOperation", entry_point: str
    ) -> Union[Sequence["TraceStep"], Sequence["StateAccessRecord"]]:
        """
        Execute the validation call and return every instruction step, or
        one state-access record per call frame.
        """
        ...
