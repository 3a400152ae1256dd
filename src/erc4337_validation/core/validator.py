"""
UserOperation trace validator.

Entry point of the rules engine. One validation pass:
1. Resolve entities (account, factory, paymaster) and their stake
2. Normalize the trace to instruction steps
3. Split the trace into per-entity sub-traces
4. Scan each sub-trace with the opcode/call rules, then the storage rules
5. Fail fast on the first violation

The validator never executes anything and keeps no state between passes, so
one instance can serve concurrent passes for independent operations.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

from .address_utils import normalize_address
from .config import DEFAULT_CONFIG, ValidationConfig
from .interfaces import AddressLabeler, ChainStateReader, MappingRecorder, StakeRegistry
from .mapping_resolver import KeccakMappingRecorder
from .metrics import ValidationMetrics, get_validation_metrics
from .opcode_rules import OpcodePolicyValidator
from .storage_rules import StoragePolicyValidator
from .trace import CallFrame, StateAccessRecord, TraceStep, as_trace_steps, call_frames
from .trace_filter import EntityTraces, filter_entity_traces
from .user_operation import Entities, UserOperation, resolve_entities
from .validation_exceptions import (
    MalformedTraceError,
    RuleViolation,
    UserOperationValidationError,
)

logger = logging.getLogger(__name__)

Trace = Union[Sequence[TraceStep], Sequence[StateAccessRecord]]


@dataclass
class ValidationReport:
    """Verdict of one validation pass."""

    valid: bool
    entities: Optional[Entities] = None
    violation: Optional[UserOperationValidationError] = None
    step_counts: Dict[str, int] = field(default_factory=dict)
    calls: List[CallFrame] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "valid": self.valid,
            "step_counts": dict(self.step_counts),
            "calls": [
                {
                    "kind": frame.kind.name,
                    "caller": frame.caller,
                    "target": frame.target,
                    "value": frame.value,
                    "selector": "0x" + frame.selector.hex(),
                    "depth": frame.depth,
                }
                for frame in self.calls
            ],
        }
        if self.entities is not None:
            data["entities"] = {
                "account": self.entities.account,
                "factory": self.entities.factory,
                "factory_staked": self.entities.is_factory_staked,
                "paymaster": self.entities.paymaster,
                "paymaster_staked": self.entities.is_paymaster_staked,
                "aggregator": self.entities.aggregator,
            }
        if self.violation is not None:
            data["violation"] = self.violation.to_dict()
        return data


def _has_state_storage_accesses(trace: Trace) -> bool:
    return any(
        isinstance(record, StateAccessRecord) and record.storage_accesses for record in trace
    )


class UserOperationValidator:
    """
    Validates recorded validation traces against the bundler rules.

    Example:
        validator = UserOperationValidator(stake_registry=registry, chain_state=chain)
        validator.validate(user_op, entry_point, steps)   # raises on violation
        report = validator.check(user_op, entry_point, steps)
    """

    def __init__(
        self,
        stake_registry: StakeRegistry,
        chain_state: ChainStateReader,
        labeler: Optional[AddressLabeler] = None,
        config: Optional[ValidationConfig] = None,
        metrics: Optional[ValidationMetrics] = None,
    ):
        self.stake_registry = stake_registry
        self.chain_state = chain_state
        self.labeler = labeler
        self.config = config or DEFAULT_CONFIG
        if metrics is None and self.config.metrics_enabled:
            metrics = get_validation_metrics()
        self.metrics = metrics

    def resolve_entities(self, user_op: UserOperation, entry_point: str) -> Entities:
        return resolve_entities(user_op, entry_point, self.stake_registry, self.config)

    def validate(
        self,
        user_op: UserOperation,
        entry_point: str,
        trace: Trace,
        *,
        entities: Optional[Entities] = None,
        mapping_recorder: Optional[MappingRecorder] = None,
        sender_creator: Optional[str] = None,
    ) -> ValidationReport:
        """
        Validate one recorded trace.

        Args:
            user_op: Operation the trace was recorded for
            entry_point: Entry point that orchestrated the validation call
            trace: Instruction steps or state-access records
            entities: Pre-resolved entities; resolved from ``user_op`` if omitted
            mapping_recorder: Harness recorder for mapping slots; when omitted
                slots are recovered from the trace's KECCAK256 steps
            sender_creator: Helper the entry point calls to run the factory

        Returns:
            ValidationReport with ``valid=True``

        Raises:
            RuleViolation: First violation in scan order
            MalformedTraceError: Trace cannot be interpreted
        """
        started = time.perf_counter()
        entity = "unknown"
        try:
            entry_point = normalize_address(entry_point)
            steps = as_trace_steps(trace)
            if entities is None:
                entities = self.resolve_entities(user_op, entry_point)
            traces = filter_entity_traces(steps, entities, entry_point, sender_creator)

            recorder = mapping_recorder
            if recorder is None:
                recorder = KeccakMappingRecorder.from_trace(steps)
                if not recorder and _has_state_storage_accesses(trace):
                    logger.warning(
                        "State-access trace validated without a mapping recorder; "
                        "mapping slots associated with entities will not resolve",
                        extra={"event": "userop.no_mapping_recorder", "sender": user_op.sender},
                    )
            opcode_rules = OpcodePolicyValidator(
                entities,
                entry_point,
                has_init_code=user_op.has_init_code,
                chain_state=self.chain_state,
                labeler=self.labeler,
            )
            storage_rules = StoragePolicyValidator(
                entities,
                entry_point,
                chain_state=self.chain_state,
                mapping_recorder=recorder,
                labeler=self.labeler,
                config=self.config,
            )

            for entity, sub_trace in traces.items():
                if not sub_trace:
                    continue
                opcode_rules.validate(entity, sub_trace)
                storage_rules.validate(entity, sub_trace)
        except RuleViolation as exc:
            duration = time.perf_counter() - started
            logger.warning(
                "UserOperation rejected: %s",
                exc.message,
                extra={
                    "event": "userop.rejected",
                    "rule": exc.rule.code,
                    "entity": entity,
                    "sender": user_op.sender,
                },
            )
            if self.metrics is not None:
                self.metrics.record_rejected(exc.rule.code, entity, duration)
            raise
        except MalformedTraceError as exc:
            logger.error(
                "Malformed validation trace: %s",
                exc.message,
                extra={"event": "userop.malformed_trace", "sender": user_op.sender},
            )
            if self.metrics is not None:
                self.metrics.record_malformed(time.perf_counter() - started)
            raise

        duration = time.perf_counter() - started
        report = self._report(entities, traces)
        logger.info(
            "UserOperation accepted",
            extra={
                "event": "userop.accepted",
                "sender": user_op.sender,
                "steps": traces.step_count,
                "calls": len(report.calls),
                "duration_ms": round(duration * 1000, 3),
            },
        )
        if self.metrics is not None:
            self.metrics.record_accepted(duration, traces.step_count)
        return report

    def check(
        self,
        user_op: UserOperation,
        entry_point: str,
        trace: Trace,
        **kwargs: Any,
    ) -> ValidationReport:
        """Like ``validate`` but returns a failed report instead of raising."""
        entities = kwargs.pop("entities", None)
        if entities is None:
            entities = self.resolve_entities(user_op, normalize_address(entry_point))
        try:
            return self.validate(user_op, entry_point, trace, entities=entities, **kwargs)
        except UserOperationValidationError as exc:
            return ValidationReport(
                valid=False,
                entities=entities,
                violation=exc,
            )

    @staticmethod
    def _report(entities: Entities, traces: EntityTraces) -> ValidationReport:
        calls: List[CallFrame] = []
        for _, sub_trace in traces.items():
            calls.extend(call_frames(sub_trace))
        return ValidationReport(
            valid=True,
            entities=entities,
            step_counts={name: len(sub_trace) for name, sub_trace in traces.items()},
            calls=calls,
        )


def validate_user_operation(
    user_op: UserOperation,
    entry_point: str,
    trace: Trace,
    *,
    stake_registry: StakeRegistry,
    chain_state: ChainStateReader,
    mapping_recorder: Optional[MappingRecorder] = None,
    labeler: Optional[AddressLabeler] = None,
    sender_creator: Optional[str] = None,
    entities: Optional[Entities] = None,
    config: Optional[ValidationConfig] = None,
) -> ValidationReport:
    """Validate one trace with a throwaway validator; raises on violation."""
    validator = UserOperationValidator(
        stake_registry=stake_registry,
        chain_state=chain_state,
        labeler=labeler,
        config=config,
    )
    return validator.validate(
        user_op,
        entry_point,
        trace,
        entities=entities,
        mapping_recorder=mapping_recorder,
        sender_creator=sender_creator,
    )
