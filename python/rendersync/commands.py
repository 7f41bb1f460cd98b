"""Closed set of commands accepted by :class:`~rendersync.dispatcher.RenderSyncDispatcher`.

Commands validate their own payload shape on construction, so an unknown
subsystem, level or alert pattern fails at the call site rather than
inside a synchronization cycle.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from . import presets
from .params import EDITABLE_SUBSYSTEMS, Subsystem
from .security import AlertPattern, SecurityLevel


class Command:
    """Base class for every dispatcher command."""


@dataclass(frozen=True)
class UpdateSubsystem(Command):
    subsystem: Subsystem
    params: Dict[str, Any]

    def __post_init__(self) -> None:
        sub = Subsystem.parse(self.subsystem)
        if sub not in EDITABLE_SUBSYSTEMS:
            raise ValueError(f"{sub.value} parameters are read-only")
        if not hasattr(self.params, "items"):
            raise TypeError(f"UpdateSubsystem params must be a mapping, got {type(self.params).__name__}")
        object.__setattr__(self, "subsystem", sub)
        object.__setattr__(self, "params", dict(self.params))


@dataclass(frozen=True)
class ApplyPreset(Command):
    name: str

    def __post_init__(self) -> None:
        presets.get(self.name)


@dataclass(frozen=True)
class SaveCheckpoint(Command):
    name: Optional[str] = None


@dataclass(frozen=True)
class RestoreCheckpoint(Command):
    id: Optional[str] = None


@dataclass(frozen=True)
class Rollback(Command):
    pass


@dataclass(frozen=True)
class AutoResolve(Command):
    pass


@dataclass(frozen=True)
class ManualResolve(Command):
    patch: Any = None


@dataclass(frozen=True)
class Ignore(Command):
    pass


@dataclass(frozen=True)
class ToggleValidation(Command):
    pass


@dataclass(frozen=True)
class ToggleAutoResolve(Command):
    pass


@dataclass(frozen=True)
class ClearLogs(Command):
    pass


@dataclass(frozen=True)
class Activate(Command):
    pass


@dataclass(frozen=True)
class Deactivate(Command):
    pass


@dataclass(frozen=True)
class Escalate(Command):
    pass


@dataclass(frozen=True)
class Deescalate(Command):
    pass


@dataclass(frozen=True)
class SetLevel(Command):
    level: SecurityLevel

    def __post_init__(self) -> None:
        object.__setattr__(self, "level", SecurityLevel.parse(self.level))


@dataclass(frozen=True)
class ThreatDetected(Command):
    # Payload is absorbed by the security machine, malformed values included
    score: Any = None
    threats: Any = None


@dataclass(frozen=True)
class ThreatCleared(Command):
    id: str


@dataclass(frozen=True)
class TriggerAlert(Command):
    pattern: AlertPattern
    config: Optional[Dict[str, Any]] = field(default=None)

    def __post_init__(self) -> None:
        object.__setattr__(self, "pattern", AlertPattern.parse(self.pattern))


@dataclass(frozen=True)
class StopAlerts(Command):
    pass


@dataclass(frozen=True)
class PerformanceDegraded(Command):
    metrics: Any = None


@dataclass(frozen=True)
class PerformanceRecovered(Command):
    pass


@dataclass(frozen=True)
class BridgeConnect(Command):
    system: Subsystem

    def __post_init__(self) -> None:
        object.__setattr__(self, "system", Subsystem.parse(self.system))


@dataclass(frozen=True)
class BridgeDisconnect(Command):
    system: Subsystem

    def __post_init__(self) -> None:
        object.__setattr__(self, "system", Subsystem.parse(self.system))


# Commands that start a validate/resolve cycle
CYCLE_COMMANDS: Tuple[type, ...] = (UpdateSubsystem, ApplyPreset)

# Commands answered from the conflictDetected state
DECISION_COMMANDS: Tuple[type, ...] = (AutoResolve, ManualResolve, Ignore, Rollback)

GLOBAL_COMMANDS: Tuple[type, ...] = (ToggleValidation, ToggleAutoResolve, ClearLogs)

CHECKPOINT_COMMANDS: Tuple[type, ...] = (SaveCheckpoint, RestoreCheckpoint)

SECURITY_COMMANDS: Tuple[type, ...] = (
    Activate,
    Deactivate,
    Escalate,
    Deescalate,
    SetLevel,
    ThreatDetected,
    ThreatCleared,
    TriggerAlert,
    StopAlerts,
    PerformanceDegraded,
    PerformanceRecovered,
    BridgeConnect,
    BridgeDisconnect,
)

ALL_COMMANDS: Tuple[type, ...] = CYCLE_COMMANDS + DECISION_COMMANDS + GLOBAL_COMMANDS + CHECKPOINT_COMMANDS + SECURITY_COMMANDS


__all__ = [cls.__name__ for cls in ALL_COMMANDS] + [
    "Command",
    "CYCLE_COMMANDS",
    "DECISION_COMMANDS",
    "GLOBAL_COMMANDS",
    "CHECKPOINT_COMMANDS",
    "SECURITY_COMMANDS",
    "ALL_COMMANDS",
]
