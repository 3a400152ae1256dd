"""
Validation session: drive a simulation harness, then validate its trace.

Each session owns its recording end to end:
take snapshot -> start mapping recording -> run validation call ->
stop recording -> revert snapshot -> classify the trace.
Sessions must not interleave on the same simulated state.
"""

from __future__ import annotations

import logging
from typing import Optional

from .address_utils import normalize_address
from .interfaces import MappingRecorder, SnapshotProvider, TraceProducer
from .trace import as_trace_steps
from .user_operation import UserOperation
from .validation_exceptions import SnapshotRevertError
from .validator import UserOperationValidator, ValidationReport

logger = logging.getLogger(__name__)


class ValidationSession:
    """Runs one simulation per call and validates the captured trace."""

    def __init__(
        self,
        validator: UserOperationValidator,
        producer: TraceProducer,
        snapshots: SnapshotProvider,
        mapping_recorder: Optional[MappingRecorder] = None,
        sender_creator: Optional[str] = None,
    ):
        self.validator = validator
        self.producer = producer
        self.snapshots = snapshots
        self.mapping_recorder = mapping_recorder
        self.sender_creator = sender_creator

    def run(self, user_op: UserOperation, entry_point: str) -> ValidationReport:
        """
        Simulate and validate ``user_op``.

        Raises:
            SnapshotRevertError: The harness could not undo the simulation
            RuleViolation: The trace breaks a validation rule
            MalformedTraceError: The trace cannot be interpreted
        """
        entry_point = normalize_address(entry_point)
        snapshot_id = self.snapshots.take_snapshot()
        logger.debug(
            "Simulating validation",
            extra={"event": "session.simulate", "sender": user_op.sender, "snapshot": snapshot_id},
        )

        if self.mapping_recorder is not None:
            self.mapping_recorder.start_recording()
        try:
            trace = as_trace_steps(self.producer.trace_validation(user_op, entry_point))
        finally:
            if self.mapping_recorder is not None:
                self.mapping_recorder.stop_recording()
            reverted = self.snapshots.revert(snapshot_id)

        if not reverted:
            logger.error(
                "Failed to revert simulation snapshot %s",
                snapshot_id,
                extra={"event": "session.revert_failed", "sender": user_op.sender},
            )
            raise SnapshotRevertError(
                f"Snapshot {snapshot_id} could not be reverted",
                details={"snapshot_id": snapshot_id},
            )

        return self.validator.validate(
            user_op,
            entry_point,
            trace,
            mapping_recorder=self.mapping_recorder,
            sender_creator=self.sender_creator,
        )
