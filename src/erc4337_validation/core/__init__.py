"""
ERC-4337 validation rules engine.

Classifies recorded validation traces of UserOperations against the bundler
storage, opcode and call rules.
"""

from .config import ConfigurationError, ValidationConfig
from .interfaces import (
    AddressLabeler,
    ChainStateReader,
    DepositInfo,
    MappingRecorder,
    SnapshotProvider,
    StakeRegistry,
    TraceProducer,
)
from .mapping_resolver import KeccakMappingRecorder, MappingResolution, resolve_mapping_slot
from .simulation import ValidationSession
from .trace import (
    AccessKind,
    CallFrame,
    StateAccessRecord,
    StorageAccess,
    TraceStep,
    call_frames,
    steps_from_state_accesses,
)
from .trace_filter import EntityTraces, filter_entity_traces
from .user_operation import Entities, UserOperation, resolve_entities
from .validation_exceptions import (
    InvalidOpcodeError,
    InvalidStorageLocationError,
    MalformedTraceError,
    PolicyViolationError,
    RuleCode,
    RuleViolation,
    SnapshotRevertError,
    UserOperationValidationError,
)
from .validator import UserOperationValidator, ValidationReport, validate_user_operation

__all__ = [
    "AccessKind",
    "AddressLabeler",
    "CallFrame",
    "ChainStateReader",
    "ConfigurationError",
    "DepositInfo",
    "Entities",
    "EntityTraces",
    "InvalidOpcodeError",
    "InvalidStorageLocationError",
    "KeccakMappingRecorder",
    "MalformedTraceError",
    "MappingRecorder",
    "MappingResolution",
    "PolicyViolationError",
    "RuleCode",
    "RuleViolation",
    "SnapshotProvider",
    "SnapshotRevertError",
    "StakeRegistry",
    "StateAccessRecord",
    "StorageAccess",
    "TraceProducer",
    "TraceStep",
    "UserOperation",
    "UserOperationValidationError",
    "UserOperationValidator",
    "ValidationConfig",
    "ValidationReport",
    "ValidationSession",
    "call_frames",
    "filter_entity_traces",
    "resolve_entities",
    "resolve_mapping_slot",
    "steps_from_state_accesses",
    "validate_user_operation",
]
