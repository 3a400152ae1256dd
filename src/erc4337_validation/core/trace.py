"""
Execution trace model.

The canonical trace is instruction level: one ``TraceStep`` per executed
instruction, in execution order. Harnesses that can only report call-level
state diffs produce ``StateAccessRecord`` entries instead; those are
converted into equivalent steps by ``steps_from_state_accesses`` so a single
validator serves both. Call-level summaries (``CallFrame``) are derived from
steps, never recorded separately.

Stack convention: ``TraceStep.stack`` is ordered bottom to top, so the top of
the stack is the last element and ``stack_item(0)``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .address_utils import (
    compute_create2_address,
    hex_to_bytes,
    normalize_address,
    parse_word,
    word_to_address,
)
from .constants import (
    CALL_OPCODES,
    VALUE_CALL_OPCODES,
    ZERO_ADDRESS,
    Opcode,
    opcode_name,
    parse_opcode,
)
from .validation_exceptions import MalformedTraceError


def parse_flag(value: Any) -> bool:
    """Parse a JSON/YAML boolean; strings must spell one out."""
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in ("true", "1", "yes"):
            return True
        if text in ("false", "0", "no", ""):
            return False
    raise ValueError(f"Invalid boolean flag: {value!r}")


class AccessKind(Enum):
    """Kind of call-level access, tagged with the opcode that performs it."""

    CALL = Opcode.CALL
    DELEGATECALL = Opcode.DELEGATECALL
    CALLCODE = Opcode.CALLCODE
    STATICCALL = Opcode.STATICCALL
    CREATE = Opcode.CREATE2
    CREATE_LEGACY = Opcode.CREATE

    @property
    def opcode(self) -> int:
        return int(self.value)

    @classmethod
    def parse(cls, value: "AccessKind | str") -> "AccessKind":
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().upper().replace("-", "").replace("_", "")
        aliases = {
            "CALL": cls.CALL,
            "DELEGATECALL": cls.DELEGATECALL,
            "CALLCODE": cls.CALLCODE,
            "STATICCALL": cls.STATICCALL,
            "CREATE": cls.CREATE,
            "CREATE2": cls.CREATE,
        }
        try:
            return aliases[normalized]
        except KeyError:
            raise MalformedTraceError(
                f"Unknown access kind: {value!r}", details={"kind": str(value)}
            ) from None


_OPCODE_TO_KIND = {kind.opcode: kind for kind in AccessKind}


@dataclass(frozen=True)
class TraceStep:
    """One executed instruction."""

    address: str  # contract whose code is executing
    opcode: int
    depth: int
    stack: Tuple[int, ...] = ()
    memory_input: bytes = b""
    is_out_of_gas: bool = False
    # Word pushed by the instruction, when the producer captured it
    result: Optional[int] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "address", normalize_address(self.address))
        object.__setattr__(self, "stack", tuple(self.stack))

    @property
    def op_name(self) -> str:
        return opcode_name(self.opcode)

    def stack_item(self, index: int) -> int:
        """Stack operand ``index`` positions below the top (0 is the top)."""
        if index >= len(self.stack):
            raise MalformedTraceError(
                f"{self.op_name} step in {self.address} has {len(self.stack)} stack "
                f"items, operand {index} requested",
                details={"address": self.address, "opcode": self.op_name, "depth": self.depth},
            )
        return self.stack[-1 - index]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TraceStep":
        """
        Parse a JSON step.

        Keys: ``address``, ``op`` (mnemonic or byte), ``depth``, ``stack``
        (bottom to top, hex or int), ``memory`` (hex), ``oog``, ``result``.
        """
        try:
            opcode = parse_opcode(data.get("op", data.get("opcode")))
            result = data.get("result")
            return cls(
                address=data["address"],
                opcode=opcode,
                depth=int(data["depth"]),
                stack=tuple(parse_word(item) for item in data.get("stack", ())),
                memory_input=hex_to_bytes(data.get("memory", data.get("memory_input"))),
                is_out_of_gas=parse_flag(data.get("oog", data.get("is_out_of_gas", False))),
                result=parse_word(result) if result is not None else None,
            )
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise MalformedTraceError(f"Invalid trace step: {exc}", details={"step": data}) from exc


@dataclass(frozen=True)
class StorageAccess:
    """One storage slot touched inside a call frame."""

    account: str  # contract whose storage was touched
    slot: int
    previous_value: int = 0
    new_value: int = 0
    is_write: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "account", normalize_address(self.account))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StorageAccess":
        return cls(
            account=data["account"],
            slot=parse_word(data["slot"]),
            previous_value=parse_word(data.get("previousValue", data.get("previous_value", 0))),
            new_value=parse_word(data.get("newValue", data.get("new_value", 0))),
            is_write=parse_flag(data.get("isWrite", data.get("is_write", False))),
        )


@dataclass(frozen=True)
class StateAccessRecord:
    """One call frame of a call-level (state diff) trace."""

    kind: AccessKind
    account: str  # callee, or the created address
    accessor: str  # caller
    depth: int
    value: int = 0
    data: bytes = b""
    storage_accesses: Tuple[StorageAccess, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", AccessKind.parse(self.kind))
        object.__setattr__(self, "account", normalize_address(self.account))
        object.__setattr__(self, "accessor", normalize_address(self.accessor))
        object.__setattr__(self, "storage_accesses", tuple(self.storage_accesses))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StateAccessRecord":
        try:
            return cls(
                kind=data["kind"],
                account=data["account"],
                accessor=data["accessor"],
                depth=int(data["depth"]),
                value=parse_word(data.get("value", 0)),
                data=hex_to_bytes(data.get("data")),
                storage_accesses=tuple(
                    StorageAccess.from_dict(item)
                    for item in data.get("storageAccesses", data.get("storage_accesses", ()))
                ),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise MalformedTraceError(
                f"Invalid state access record: {exc}", details={"record": data}
            ) from exc


# ==================== Call-Level Summaries ====================


@dataclass(frozen=True)
class CallFrame:
    """A call or contract creation, derived from the step that started it."""

    kind: AccessKind
    caller: str
    target: str
    value: int
    data: bytes
    depth: int

    @property
    def selector(self) -> bytes:
        return self.data[:4]

    @classmethod
    def from_step(cls, step: TraceStep) -> Optional["CallFrame"]:
        """Summarize a CALL*/CREATE* step; ``None`` for any other opcode."""
        kind = _OPCODE_TO_KIND.get(step.opcode)
        if kind is None:
            return None

        if step.opcode in CALL_OPCODES:
            target = word_to_address(step.stack_item(1))
            value = step.stack_item(2) if step.opcode in VALUE_CALL_OPCODES else 0
        elif step.opcode == Opcode.CREATE2:
            value = step.stack_item(0)
            if step.result is not None:
                target = word_to_address(step.result)
            else:
                target = compute_create2_address(step.address, step.stack_item(3), step.memory_input)
        else:
            value = step.stack_item(0)
            target = word_to_address(step.result) if step.result is not None else ZERO_ADDRESS

        return cls(
            kind=kind,
            caller=step.address,
            target=target,
            value=value,
            data=step.memory_input,
            depth=step.depth,
        )


def call_frames(steps: Iterable[TraceStep]) -> List[CallFrame]:
    """Call-level summary of an instruction trace, in execution order."""
    frames = []
    for step in steps:
        frame = CallFrame.from_step(step)
        if frame is not None:
            frames.append(frame)
    return frames


# ==================== State Access Conversion ====================


def _call_step(record: StateAccessRecord) -> TraceStep:
    target = int(record.account, 16)
    kind = record.kind
    if kind in (AccessKind.CREATE, AccessKind.CREATE_LEGACY):
        # salt, size, offset, value (bottom to top); the created address is known
        stack: Tuple[int, ...] = (0, len(record.data), 0, record.value)
        return TraceStep(
            address=record.accessor,
            opcode=kind.opcode,
            depth=record.depth,
            stack=stack,
            memory_input=record.data,
            result=target,
        )
    if kind in (AccessKind.CALL, AccessKind.CALLCODE):
        # retSize, retOffset, argsSize, argsOffset, value, addr, gas
        stack = (0, 0, len(record.data), 0, record.value, target, 0)
    else:
        stack = (0, 0, len(record.data), 0, target, 0)
    return TraceStep(
        address=record.accessor,
        opcode=kind.opcode,
        depth=record.depth,
        stack=stack,
        memory_input=record.data,
    )


def _storage_step(access: StorageAccess, depth: int) -> TraceStep:
    if access.is_write:
        return TraceStep(
            address=access.account,
            opcode=Opcode.SSTORE,
            depth=depth,
            stack=(access.new_value, access.slot),
        )
    return TraceStep(
        address=access.account,
        opcode=Opcode.SLOAD,
        depth=depth,
        stack=(access.slot,),
        result=access.previous_value,
    )


def steps_from_state_accesses(records: Iterable[StateAccessRecord]) -> List[TraceStep]:
    """
    Convert call-level records into an equivalent instruction trace.

    Each record yields the call step executed by the accessor at the record's
    depth, followed by one SLOAD/SSTORE step per storage access executed one
    level deeper, inside the callee's frame.
    """
    steps: List[TraceStep] = []
    for record in records:
        steps.append(_call_step(record))
        steps.extend(_storage_step(access, record.depth + 1) for access in record.storage_accesses)
    return steps


def as_trace_steps(
    trace: Sequence[TraceStep] | Sequence[StateAccessRecord],
) -> Tuple[TraceStep, ...]:
    """Normalize either trace representation to instruction steps."""
    items = tuple(trace)
    if all(isinstance(item, TraceStep) for item in items):
        return items
    if all(isinstance(item, StateAccessRecord) for item in items):
        return tuple(steps_from_state_accesses(items))
    raise MalformedTraceError(
        "Trace must contain only TraceStep or only StateAccessRecord entries",
        details={"types": sorted({type(item).__name__ for item in items})},
    )
