"""
UserOperation validation exception hierarchy.

Every violation of the bundler validation rules is reported as a typed
exception carrying the rule code and enough structured context (contract,
slot, values, opcode) to reproduce the decision without re-running the trace.
All of them are terminal: a rejected operation is never retried against the
same trace.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class RuleCode(Enum):
    """Bundler validation rules, keyed by their canonical code."""

    STO_010 = ("STO-010", "access to the account's own storage is always allowed")
    STO_021 = ("STO-021", "associated storage of the account requires a deployed account or a staked factory")
    STO_031 = ("STO-031", "access to an entity's own storage requires the entity to be staked")
    STO_032 = ("STO-032", "storage associated with a staked factory or paymaster may be accessed")
    STO_033 = ("STO-033", "read-only access to non-entity storage requires a staked factory or paymaster")
    OP_011 = ("OP-011", "banned opcode")
    OP_012 = ("OP-012", "GAS must be immediately followed by a call instruction")
    OP_020 = ("OP-020", "out-of-gas revert during validation leaks gas limit information")
    OP_031 = ("OP-031", "CREATE2 is allowed once, only with initCode, and must deploy the sender")
    OP_041 = ("OP-041", "cannot call or inspect addresses without code")
    OP_052 = ("OP-052", "only depositTo or a zero-length call may target the entry point")
    OP_061 = ("OP-061", "value may only be sent to the entry point by the account or factory")
    OP_080 = ("OP-080", "BALANCE and SELFBALANCE are allowed only for staked entities")

    def __init__(self, code: str, description: str) -> None:
        self.code = code
        self.description = description

    @classmethod
    def from_code(cls, code: str) -> "RuleCode":
        for rule in cls:
            if rule.code == code:
                return rule
        raise ValueError(f"Unknown rule code: {code}")


class UserOperationValidationError(Exception):
    """Base exception for all UserOperation validation failures.

    Attributes:
        message: Human-readable error description
        details: Structured context about the failure
        recoverable: Always False, a rejected trace stays rejected
    """

    recoverable = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "details": dict(self.details),
            "recoverable": self.recoverable,
        }


class MalformedTraceError(UserOperationValidationError):
    """Raised when a trace step cannot be interpreted.

    Examples: a CALL step whose stack is too shallow to hold the callee,
    a state-access record of an unknown kind.
    """
    pass


class SnapshotRevertError(UserOperationValidationError):
    """Raised when the harness fails to revert the simulation snapshot."""
    pass


# ==================== Rule Violations ====================


class RuleViolation(UserOperationValidationError):
    """Raised when a trace breaks one of the bundler validation rules."""

    def __init__(
        self,
        rule: RuleCode,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = dict(details or {})
        details.setdefault("rule", rule.code)
        super().__init__(f"[{rule.code}] {message}", details)
        self.rule = rule

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["rule"] = self.rule.code
        data["rule_description"] = self.rule.description
        return data


class InvalidStorageLocationError(RuleViolation):
    """Raised when a storage access fails every ownership/stake carve-out."""

    def __init__(
        self,
        rule: RuleCode,
        entity: str,
        contract: str,
        label: str,
        slot: int,
        value: int,
        is_write: bool,
        is_transient: bool = False,
    ) -> None:
        access = "write to" if is_write else "read from"
        kind = "transient slot" if is_transient else "slot"
        super().__init__(
            rule,
            f"{entity} has forbidden {access} {label} ({contract}) {kind} 0x{slot:064x}",
            details={
                "entity": entity,
                "contract": contract,
                "label": label,
                "slot": hex(slot),
                "value": hex(value),
                "is_write": is_write,
                "is_transient": is_transient,
            },
        )
        self.entity = entity
        self.contract = contract
        self.label = label
        self.slot = slot
        self.value = value
        self.is_write = is_write
        self.is_transient = is_transient


class InvalidOpcodeError(RuleViolation):
    """Raised when a banned instruction executes (OP-011, OP-012, OP-080)."""

    def __init__(self, rule: RuleCode, entity: str, opcode: str, contract: str) -> None:
        super().__init__(
            rule,
            f"{entity} uses banned opcode {opcode} in {contract}",
            details={"entity": entity, "opcode": opcode, "contract": contract},
        )
        self.entity = entity
        self.opcode = opcode
        self.contract = contract


class PolicyViolationError(RuleViolation):
    """Raised when a call, creation or out-of-gas rule is broken."""
    pass
