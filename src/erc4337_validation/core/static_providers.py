"""
Static collaborator implementations and trace fixtures.

In-memory stand-ins for the chain-facing collaborators, for validating traces
captured elsewhere (e.g. dumped by a node tracer) and for tests.

Fixture format (JSON or YAML):

    entryPoint: "0x0000000071727De22E5E9d8BAf0edAc6f37da032"
    senderCreator: "0x..."            # optional
    userOp: {sender: "0x...", initCode: "0x...", paymasterAndData: "0x..."}
    deposits: {"0x...": {stake: 1000000000000000000, unstakeDelaySec: 86400}}
    code: {"0x...": 1024}             # code size, or hex bytecode
    labels: {"0x...": "USDC"}
    mappings: {"0x...": [{key: "0x...", parentSlot: 3}, ...]}   # optional
    steps: [{address, op, depth, stack, memory, oog, result}, ...]
    stateAccesses: [{kind, account, accessor, depth, value, data, storageAccesses}, ...]
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple, Union

import yaml

from .address_utils import checksum, hex_to_bytes, normalize_address, parse_word
from .interfaces import DepositInfo
from .mapping_resolver import KeccakMappingRecorder
from .trace import StateAccessRecord, TraceStep, as_trace_steps
from .user_operation import UserOperation
from .validation_exceptions import MalformedTraceError

logger = logging.getLogger(__name__)


class StaticStakeRegistry:
    """Stake registry backed by a dict of deposits, per entry point or global."""

    def __init__(self, deposits: Optional[Mapping[str, DepositInfo]] = None):
        self._deposits: Dict[str, DepositInfo] = {
            normalize_address(address): info for address, info in (deposits or {}).items()
        }

    def set_deposit(self, address: str, stake: int, unstake_delay_sec: int) -> None:
        self._deposits[normalize_address(address)] = DepositInfo(stake, unstake_delay_sec)

    def deposit_info(self, entry_point: str, address: str) -> DepositInfo:
        return self._deposits.get(normalize_address(address), DepositInfo())


class StaticChainState:
    """Code sizes by address; unknown addresses have no code."""

    def __init__(self, code_sizes: Optional[Mapping[str, int]] = None):
        self._code_sizes: Dict[str, int] = {
            normalize_address(address): size for address, size in (code_sizes or {}).items()
        }

    def set_code(self, address: str, code: Union[bytes, int]) -> None:
        size = code if isinstance(code, int) else len(code)
        self._code_sizes[normalize_address(address)] = size

    def code_size(self, address: str) -> int:
        return self._code_sizes.get(normalize_address(address), 0)


class StaticLabeler:
    """Labels from a dict, falling back to the checksum address."""

    def __init__(self, labels: Optional[Mapping[str, str]] = None):
        self._labels = {normalize_address(a): label for a, label in (labels or {}).items()}

    def label(self, address: str) -> str:
        normalized = normalize_address(address)
        return self._labels.get(normalized) or checksum(normalized)


@dataclass
class ValidationFixture:
    """Everything needed to validate one recorded trace offline."""

    user_op: UserOperation
    entry_point: str
    trace: Union[Tuple[TraceStep, ...], Tuple[StateAccessRecord, ...]]
    stake_registry: StaticStakeRegistry = field(default_factory=StaticStakeRegistry)
    chain_state: StaticChainState = field(default_factory=StaticChainState)
    labeler: StaticLabeler = field(default_factory=StaticLabeler)
    sender_creator: Optional[str] = None
    mapping_recorder: Optional[KeccakMappingRecorder] = None


def _code_size(value: Union[int, str]) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.lower().startswith("0x"):
        return len(hex_to_bytes(value))
    return int(value)


def _mapping_recorder(
    mappings: Mapping[str, Sequence[Mapping[str, Any]]],
    trace: Sequence[Any],
) -> KeccakMappingRecorder:
    """Recorder holding the trace's own KECCAK256 slots plus the listed ones."""
    recorder = KeccakMappingRecorder.from_trace(as_trace_steps(trace))
    for contract, entries in mappings.items():
        for entry in entries:
            parent_slot = entry.get("parentSlot", entry.get("parent_slot"))
            if parent_slot is None:
                raise ValueError(f"Mapping entry for {contract} has no parentSlot")
            recorder.record_mapping(contract, parse_word(entry["key"]), parse_word(parent_slot))
    return recorder


def fixture_from_dict(data: Mapping[str, Any]) -> ValidationFixture:
    """
    Build a fixture from parsed JSON/YAML.

    Raises:
        MalformedTraceError: Missing or invalid fields
    """
    try:
        entry_point = normalize_address(data["entryPoint"])
        user_op = UserOperation.from_dict(dict(data["userOp"]))
    except (KeyError, TypeError, ValueError) as exc:
        raise MalformedTraceError(f"Invalid fixture header: {exc}") from exc

    steps: Sequence[Any] = data.get("steps") or ()
    records: Sequence[Any] = data.get("stateAccesses") or ()
    if steps and records:
        raise MalformedTraceError("Fixture must contain either steps or stateAccesses, not both")
    if records:
        trace: Any = tuple(StateAccessRecord.from_dict(item) for item in records)
    else:
        trace = tuple(TraceStep.from_dict(item) for item in steps)

    try:
        deposits = {
            address: DepositInfo(
                stake=parse_word(info.get("stake", 0)),
                unstake_delay_sec=int(info.get("unstakeDelaySec", info.get("unstake_delay_sec", 0))),
            )
            for address, info in (data.get("deposits") or {}).items()
        }
        code_sizes = {address: _code_size(code) for address, code in (data.get("code") or {}).items()}
        sender_creator = data.get("senderCreator")
        mappings = data.get("mappings")
        fixture = ValidationFixture(
            user_op=user_op,
            entry_point=entry_point,
            trace=trace,
            stake_registry=StaticStakeRegistry(deposits),
            chain_state=StaticChainState(code_sizes),
            labeler=StaticLabeler(data.get("labels") or {}),
            sender_creator=normalize_address(sender_creator) if sender_creator else None,
            mapping_recorder=_mapping_recorder(mappings, trace) if mappings else None,
        )
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        raise MalformedTraceError(f"Invalid fixture collaborators: {exc}") from exc

    logger.debug(
        "Loaded validation fixture",
        extra={"event": "fixture.loaded", "sender": user_op.sender, "trace_entries": len(trace)},
    )
    return fixture


def load_validation_fixture(path: Union[str, Path]) -> ValidationFixture:
    """Load a fixture from a ``.json``, ``.yaml`` or ``.yml`` file."""
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix.lower() in (".yaml", ".yml"):
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise MalformedTraceError(f"Cannot parse fixture {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise MalformedTraceError(f"Fixture {path} must contain a mapping")
    return fixture_from_dict(data)
