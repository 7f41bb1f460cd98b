# python/rendersync/__init__.py
# Public API for the render-state synchronization and conflict-resolution engine
# Exists to expose the dispatcher, its commands and the supporting state types in one place
# RELEVANT FILES: python/rendersync/dispatcher.py, python/rendersync/commands.py, tests/test_dispatcher.py
from . import presets
from .adapters import CallbackAdapter, RecordingAdapter, SubsystemAdapter
from .checkpoints import Checkpoint, CheckpointManager, JsonCheckpointStore, MemoryCheckpointStore
from .commands import (
    Activate,
    ApplyPreset,
    AutoResolve,
    BridgeConnect,
    BridgeDisconnect,
    ClearLogs,
    Command,
    Deactivate,
    Deescalate,
    Escalate,
    Ignore,
    ManualResolve,
    PerformanceDegraded,
    PerformanceRecovered,
    RestoreCheckpoint,
    Rollback,
    SaveCheckpoint,
    SetLevel,
    StopAlerts,
    ThreatCleared,
    ThreatDetected,
    ToggleAutoResolve,
    ToggleValidation,
    TriggerAlert,
    UpdateSubsystem,
)
from .config import EngineConfig, load_engine_config
from .conflicts import Conflict, ConflictKind, ConflictThresholds, Severity, evaluate
from .dispatcher import LogEntry, Notification, RenderSyncDispatcher, SyncStatus, Transition
from .params import ParameterState, ParameterStore, Subsystem
from .resolver import ConflictResolver, ResolutionOutcome, ResolutionPolicy, ResolutionResult
from .security import (
    AlertPattern,
    BridgeGraph,
    CircuitBreakerState,
    PerformanceMode,
    SecurityEscalationMachine,
    SecurityLevel,
    SecuritySignal,
    SignalEvent,
    Threat,
)

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "presets",
    # state
    "Subsystem",
    "ParameterState",
    "ParameterStore",
    # conflicts and resolution
    "Severity",
    "ConflictKind",
    "Conflict",
    "ConflictThresholds",
    "evaluate",
    "ResolutionOutcome",
    "ResolutionPolicy",
    "ResolutionResult",
    "ConflictResolver",
    # checkpoints
    "Checkpoint",
    "CheckpointManager",
    "MemoryCheckpointStore",
    "JsonCheckpointStore",
    # security
    "SecurityLevel",
    "PerformanceMode",
    "CircuitBreakerState",
    "AlertPattern",
    "SecuritySignal",
    "SignalEvent",
    "Threat",
    "BridgeGraph",
    "SecurityEscalationMachine",
    # dispatcher
    "SyncStatus",
    "Notification",
    "LogEntry",
    "Transition",
    "RenderSyncDispatcher",
    "EngineConfig",
    "load_engine_config",
    # adapters
    "SubsystemAdapter",
    "RecordingAdapter",
    "CallbackAdapter",
    # commands
    "Command",
    "UpdateSubsystem",
    "ApplyPreset",
    "SaveCheckpoint",
    "RestoreCheckpoint",
    "Rollback",
    "AutoResolve",
    "ManualResolve",
    "Ignore",
    "ToggleValidation",
    "ToggleAutoResolve",
    "ClearLogs",
    "Activate",
    "Deactivate",
    "Escalate",
    "Deescalate",
    "SetLevel",
    "ThreatDetected",
    "ThreatCleared",
    "TriggerAlert",
    "StopAlerts",
    "PerformanceDegraded",
    "PerformanceRecovered",
    "BridgeConnect",
    "BridgeDisconnect",
]
