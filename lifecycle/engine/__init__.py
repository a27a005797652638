"""Generic guarded state machine engine."""

from lifecycle.engine.errors import (
    MachineConfigError,
    SnapshotMismatchError,
    StateMachineError,
)
from lifecycle.engine.machine import StateMachine
from lifecycle.engine.metadata import (
    ActorMetadata,
    OpaqueMetadata,
    ProviderMetadata,
    TransitionMetadata,
    coerce_metadata,
)
from lifecycle.engine.types import (
    DEFAULT_MAX_HISTORY_SIZE,
    DenialReason,
    Guard,
    Hook,
    HookFailure,
    MachineConfig,
    MachineHooks,
    Snapshot,
    TransitionDef,
    TransitionDenied,
    TransitionRecord,
    TransitionResult,
    TransitionSuccess,
)

__all__ = [
    "DEFAULT_MAX_HISTORY_SIZE",
    "ActorMetadata",
    "DenialReason",
    "Guard",
    "Hook",
    "HookFailure",
    "MachineConfig",
    "MachineConfigError",
    "MachineHooks",
    "OpaqueMetadata",
    "ProviderMetadata",
    "Snapshot",
    "SnapshotMismatchError",
    "StateMachine",
    "StateMachineError",
    "TransitionDef",
    "TransitionDenied",
    "TransitionMetadata",
    "TransitionRecord",
    "TransitionResult",
    "TransitionSuccess",
    "coerce_metadata",
]
