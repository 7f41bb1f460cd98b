# python/rendersync/security.py
# Security escalation machine: level, threats, alerts, performance mode and bridge graph
# Exists to feed security state to the dispatcher as read signals, never as direct adapter calls
# RELEVANT FILES: python/rendersync/dispatcher.py, python/rendersync/commands.py, tests/test_security.py
from __future__ import annotations

import logging
import math
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from .colors import is_hex_color, normalize_hex
from .params import Subsystem

logger = logging.getLogger(__name__)


def _normalize_key(value: Any) -> str:
    return str(value).strip().lower().replace("-", "").replace("_", "").replace(" ", "")


class SecurityLevel(str, Enum):
    """Escalation levels in strict order normal < scanning < alert < lockdown."""

    NORMAL = "normal"
    SCANNING = "scanning"
    ALERT = "alert"
    LOCKDOWN = "lockdown"

    @classmethod
    def parse(cls, value: Any) -> "SecurityLevel":
        if isinstance(value, cls):
            return value
        key = _normalize_key(value)
        for member in cls:
            if member.value == key:
                return member
        raise ValueError(f"Unknown security level: {value!r}. Available: {', '.join(m.value for m in cls)}")

    @property
    def index(self) -> int:
        return list(SecurityLevel).index(self)

    def up(self) -> "SecurityLevel":
        levels = list(SecurityLevel)
        return levels[min(self.index + 1, len(levels) - 1)]

    def down(self) -> "SecurityLevel":
        return list(SecurityLevel)[max(self.index - 1, 0)]

    def __str__(self) -> str:
        return self.value


class PerformanceMode(str, Enum):
    NORMAL = "normal"
    REDUCED = "reduced"
    MINIMAL = "minimal"
    BOOSTED = "boosted"


class CircuitBreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


class AlertPattern(str, Enum):
    FLASH = "flash"
    PULSE = "pulse"
    ROTATE = "rotate"
    DISTORTION = "distortion"
    GLITCH = "glitch"
    SCANNER = "scanner"

    @classmethod
    def parse(cls, value: Any) -> "AlertPattern":
        if isinstance(value, cls):
            return value
        key = _normalize_key(value)
        for member in cls:
            if member.value == key:
                return member
        raise ValueError(f"Unknown alert pattern: {value!r}. Available: {', '.join(m.value for m in cls)}")


class SecuritySignal(str, Enum):
    LEVEL_CHANGED = "level_changed"
    REDUCE_EFFECTS_QUALITY = "reduce_effects_quality"
    SECURED_HDR_MODE = "secured_hdr_mode"
    MINIMAL_LIGHTING_MODE = "minimal_lighting_mode"


SIGNAL_TARGETS: Dict[SecuritySignal, Tuple[Subsystem, ...]] = {
    SecuritySignal.LEVEL_CHANGED: (Subsystem.SECURITY,),
    SecuritySignal.REDUCE_EFFECTS_QUALITY: (Subsystem.BLOOM, Subsystem.PBR),
    SecuritySignal.SECURED_HDR_MODE: (Subsystem.LIGHTING, Subsystem.BACKGROUND),
    SecuritySignal.MINIMAL_LIGHTING_MODE: (Subsystem.LIGHTING,),
}


@dataclass(frozen=True)
class LevelConfig:
    threshold: float
    color: str
    intensity: float
    effects: Tuple[AlertPattern, ...]
    performance_mode: PerformanceMode


LEVEL_CONFIGS: Dict[SecurityLevel, LevelConfig] = {
    SecurityLevel.NORMAL: LevelConfig(0.0, "#00ff00", 0.3, (), PerformanceMode.NORMAL),
    SecurityLevel.SCANNING: LevelConfig(25.0, "#ffff00", 0.5, (AlertPattern.PULSE,), PerformanceMode.NORMAL),
    SecurityLevel.ALERT: LevelConfig(
        50.0, "#ff8800", 0.7, (AlertPattern.FLASH, AlertPattern.PULSE), PerformanceMode.REDUCED
    ),
    SecurityLevel.LOCKDOWN: LevelConfig(
        75.0,
        "#ff0000",
        1.0,
        (AlertPattern.FLASH, AlertPattern.PULSE, AlertPattern.ROTATE, AlertPattern.DISTORTION),
        PerformanceMode.MINIMAL,
    ),
}


@dataclass(frozen=True)
class AlertConfig:
    color: str
    intensity: float
    duration_ms: int
    frequency: float


ALERT_CONFIGS: Dict[AlertPattern, AlertConfig] = {
    AlertPattern.FLASH: AlertConfig("#ff0000", 0.8, 200, 5.0),
    AlertPattern.PULSE: AlertConfig("#ffaa00", 0.6, 1000, 1.0),
    AlertPattern.ROTATE: AlertConfig("#ff0000", 0.9, 500, 2.0),
    AlertPattern.DISTORTION: AlertConfig("#ff0000", 1.0, 300, 3.0),
    AlertPattern.GLITCH: AlertConfig("#ff0000", 1.0, 150, 8.0),
    AlertPattern.SCANNER: AlertConfig("#00ff00", 0.7, 2000, 0.5),
}

DEFAULT_ALERT_COLOR = "#ff0000"
DEFAULT_ALERT_INTENSITY = 0.8


@dataclass(frozen=True)
class Threat:
    id: str
    type: str = "unknown"
    severity: float = 0.0
    source: Optional[str] = None

    @classmethod
    def from_payload(cls, data: Any) -> Optional["Threat"]:
        """Build a Threat from a Threat, mapping or id string; None for anything else."""
        if isinstance(data, Threat):
            return data
        if isinstance(data, str) and data.strip():
            return cls(id=data.strip(), type=data.strip())
        if isinstance(data, Mapping):
            threat_id = data.get("id")
            severity = data.get("severity", 0.0)
            if isinstance(severity, bool) or not isinstance(severity, (int, float)) or math.isnan(severity):
                severity = 0.0
            source = data.get("source")
            return cls(
                id=str(threat_id) if threat_id not in (None, "") else uuid.uuid4().hex,
                type=str(data.get("type", "unknown")),
                severity=max(0.0, float(severity)),
                source=None if source is None else str(source),
            )
        return None

    def to_dict(self) -> dict:
        return {"id": self.id, "type": self.type, "severity": self.severity, "source": self.source}


@dataclass(frozen=True)
class Alert:
    pattern: AlertPattern
    color: str
    intensity: float
    duration_ms: int
    frequency: float
    started_at: float

    def to_dict(self) -> dict:
        return {
            "pattern": self.pattern.value,
            "color": self.color,
            "intensity": self.intensity,
            "duration_ms": self.duration_ms,
            "frequency": self.frequency,
            "started_at": self.started_at,
        }


def _metric(value: Any, lo: float = 0.0, hi: float = math.inf) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if math.isnan(value):
        return None
    return float(min(hi, max(lo, value)))


@dataclass(frozen=True)
class PerformanceMetrics:
    """Sanitized performance sample; unusable readings are None."""

    fps: Optional[float] = None
    memory_mb: Optional[float] = None
    cpu_percent: Optional[float] = None

    @classmethod
    def from_payload(cls, data: Any) -> "PerformanceMetrics":
        if isinstance(data, PerformanceMetrics):
            data = {"fps": data.fps, "memory": data.memory_mb, "cpu": data.cpu_percent}
        if not isinstance(data, Mapping):
            return cls()
        memory = data.get("memory", data.get("memory_mb", data.get("memoryUsage")))
        cpu = data.get("cpu", data.get("cpu_percent", data.get("cpuUsage")))
        return cls(
            fps=_metric(data.get("fps")),
            memory_mb=_metric(memory),
            cpu_percent=_metric(cpu, 0.0, 100.0),
        )


@dataclass(frozen=True)
class BridgeEdge:
    source: Subsystem
    target: Subsystem


class BridgeGraph:
    """Fixed edges from the security subsystem to every subsystem, each connectable.

    The SECURITY -> SECURITY edge is the machine's own bridge.
    """

    EDGES: Tuple[BridgeEdge, ...] = tuple(BridgeEdge(Subsystem.SECURITY, s) for s in Subsystem)

    def __init__(self) -> None:
        self._connected: Dict[BridgeEdge, bool] = {edge: False for edge in self.EDGES}

    def edge(self, system: Any) -> BridgeEdge:
        target = Subsystem.parse(system)
        for edge in self.EDGES:
            if edge.target is target:
                return edge
        raise ValueError(f"Unknown bridge endpoint: {system!r}")

    def connect(self, system: Any) -> None:
        self._connected[self.edge(system)] = True

    def disconnect(self, system: Any) -> None:
        self._connected[self.edge(system)] = False

    def is_connected(self, system: Any) -> bool:
        return self._connected[self.edge(system)]

    def connected(self) -> FrozenSet[Subsystem]:
        return frozenset(edge.target for edge, on in self._connected.items() if on)

    def reset(self) -> None:
        for edge in self._connected:
            self._connected[edge] = False

    def to_dict(self) -> Dict[str, bool]:
        return {edge.target.value: on for edge, on in self._connected.items()}


@dataclass(frozen=True)
class SignalEvent:
    signal: SecuritySignal
    level: SecurityLevel
    targets: FrozenSet[Subsystem]
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AuditEntry:
    timestamp: float
    event: str
    details: Dict[str, Any] = field(default_factory=dict)


class SecurityEscalationMachine:
    """Threat escalation state machine with an independent lifecycle.

    Created inactive. Every command method returns True when the command was
    accepted and False when it was rejected or ignored; malformed payloads are
    absorbed rather than raised.
    """

    def __init__(
        self,
        *,
        max_threats: int = 100,
        max_audit_entries: int = 1000,
        escalate_on_threat: bool = True,
        circuit_breaker_reset_s: float = 5.0,
        clock: Callable[[], float] = time.time,
    ):
        if max_threats < 1 or max_audit_entries < 1:
            raise ValueError("max_threats and max_audit_entries must be >= 1")
        self.max_threats = int(max_threats)
        self.escalate_on_threat = bool(escalate_on_threat)
        self.circuit_breaker_reset_s = float(circuit_breaker_reset_s)
        self._clock = clock
        self._listeners: List[Callable[[SignalEvent], None]] = []
        self._audit: Deque[AuditEntry] = deque(maxlen=int(max_audit_entries))
        self.bridges = BridgeGraph()
        self._reset()

    def _reset(self) -> None:
        self._active = False
        self._level = SecurityLevel.NORMAL
        self._threat_score = 0.0
        self._threats: Deque[Threat] = deque(maxlen=self.max_threats)
        self._alerts: List[Alert] = []
        self._performance_mode = PerformanceMode.NORMAL
        self._breaker = CircuitBreakerState.CLOSED
        self._breaker_opened_at: Optional[float] = None
        self.bridges.reset()

    # -- read-only state -------------------------------------------------

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def level(self) -> SecurityLevel:
        return self._level

    @property
    def level_config(self) -> LevelConfig:
        return LEVEL_CONFIGS[self._level]

    @property
    def threat_score(self) -> float:
        return self._threat_score

    @property
    def threats(self) -> Tuple[Threat, ...]:
        return tuple(self._threats)

    @property
    def alerts(self) -> Tuple[Alert, ...]:
        return tuple(self._alerts)

    @property
    def performance_mode(self) -> PerformanceMode:
        return self._performance_mode

    @property
    def circuit_breaker(self) -> CircuitBreakerState:
        if self._breaker is CircuitBreakerState.OPEN and self._breaker_opened_at is not None:
            if self._clock() - self._breaker_opened_at >= self.circuit_breaker_reset_s:
                return CircuitBreakerState.HALF_OPEN
        return self._breaker

    @property
    def audit_log(self) -> List[AuditEntry]:
        return list(self._audit)

    def snapshot(self) -> Dict[str, Any]:
        """Flat mirror written into the ``security`` parameter section."""
        return {
            "active": self._active,
            "level": self._level.value,
            "threatScore": self._threat_score,
            "performanceMode": self._performance_mode.value,
            "circuitBreaker": self.circuit_breaker.value,
        }

    def to_dict(self) -> Dict[str, Any]:
        out = self.snapshot()
        out["threats"] = [t.to_dict() for t in self._threats]
        out["alerts"] = [a.to_dict() for a in self._alerts]
        out["bridges"] = self.bridges.to_dict()
        return out

    # -- listeners -------------------------------------------------------

    def subscribe(self, listener: Callable[[SignalEvent], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, signal: SecuritySignal, **payload: Any) -> None:
        event = SignalEvent(signal, self._level, frozenset(SIGNAL_TARGETS[signal]), payload)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Security signal listener failed for %s", signal.value)

    def _record(self, event: str, **details: Any) -> None:
        self._audit.append(AuditEntry(float(self._clock()), event, details))

    def _reject(self, event: str, reason: str) -> bool:
        logger.warning("Rejected security command %s: %s", event, reason)
        return False

    def _enter(self, level: SecurityLevel, reason: str) -> None:
        previous = self._level
        if level is previous:
            return
        self._level = level
        logger.info("Security level %s -> %s (%s)", previous.value, level.value, reason)
        self._emit(SecuritySignal.LEVEL_CHANGED, previous=previous.value, reason=reason)
        if level in (SecurityLevel.ALERT, SecurityLevel.LOCKDOWN):
            self._emit(SecuritySignal.REDUCE_EFFECTS_QUALITY)
        if level is SecurityLevel.LOCKDOWN:
            self._emit(SecuritySignal.SECURED_HDR_MODE)
            if self.circuit_breaker is CircuitBreakerState.OPEN:
                self._emit(SecuritySignal.MINIMAL_LIGHTING_MODE)

    # -- commands --------------------------------------------------------

    def activate(self) -> bool:
        if self._active:
            logger.debug("Security machine already active")
            return False
        self._reset()
        self._active = True
        self.bridges.connect(Subsystem.SECURITY)
        self._record("activate")
        self._emit(SecuritySignal.LEVEL_CHANGED, previous=None, reason="activate")
        return True

    def deactivate(self) -> bool:
        if not self._active:
            return False
        self._record("deactivate")
        self._reset()
        return True

    def escalate(self) -> bool:
        if not self._active:
            return self._reject("escalate", "machine inactive")
        self._record("escalate", level=self._level.value)
        self._enter(self._level.up(), "escalate")
        return True

    def deescalate(self) -> bool:
        if not self._active:
            return self._reject("deescalate", "machine inactive")
        self._record("deescalate", level=self._level.value)
        self._enter(self._level.down(), "deescalate")
        return True

    def set_level(self, level: Any) -> bool:
        if not self._active:
            return self._reject("set_level", "machine inactive")
        try:
            target = SecurityLevel.parse(level)
        except ValueError as exc:
            return self._reject("set_level", str(exc))
        self._record("set_level", level=target.value)
        self._performance_mode = LEVEL_CONFIGS[target].performance_mode
        self._enter(target, "set_level")
        return True

    def threat_detected(self, score: Any = None, threats: Any = None) -> bool:
        if not self._active:
            return self._reject("threat_detected", "machine inactive")
        value = _metric(score)
        if value is not None:
            self._threat_score = value
        if threats is None:
            items: Iterable[Any] = ()
        elif isinstance(threats, (Mapping, str, Threat)):
            items = (threats,)
        elif isinstance(threats, Iterable):
            items = threats
        else:
            items = ()
        added = 0
        for item in items:
            threat = Threat.from_payload(item)
            if threat is None:
                logger.debug("Ignoring malformed threat payload %r", item)
                continue
            self._threats.append(threat)
            added += 1
        self._record("threat_detected", score=self._threat_score, added=added)
        if self.escalate_on_threat and self._level is not SecurityLevel.LOCKDOWN:
            if self._threat_score > LEVEL_CONFIGS[self._level.up()].threshold:
                self._enter(self._level.up(), "threat_score")
        return True

    def threat_cleared(self, threat_id: Any) -> bool:
        if not self._active:
            return self._reject("threat_cleared", "machine inactive")
        key = str(threat_id)
        kept = [t for t in self._threats if t.id != key]
        removed = len(self._threats) - len(kept)
        self._threats.clear()
        self._threats.extend(kept)
        self._record("threat_cleared", id=key, removed=removed)
        return True

    def trigger_alert(self, pattern: Any, config: Optional[Mapping[str, Any]] = None) -> bool:
        if not self._active:
            return self._reject("trigger_alert", "machine inactive")
        try:
            parsed = AlertPattern.parse(pattern)
        except ValueError as exc:
            return self._reject("trigger_alert", str(exc))
        defaults = ALERT_CONFIGS[parsed]
        config = config if isinstance(config, Mapping) else {}
        color = config.get("color")
        color = normalize_hex(color) if is_hex_color(color) else DEFAULT_ALERT_COLOR
        intensity = _metric(config.get("intensity"), 0.0, 1.0)
        duration = _metric(config.get("duration"))
        frequency = _metric(config.get("frequency"))
        alert = Alert(
            pattern=parsed,
            color=color,
            intensity=DEFAULT_ALERT_INTENSITY if intensity is None else intensity,
            duration_ms=defaults.duration_ms if duration is None else int(duration),
            frequency=defaults.frequency if frequency is None else frequency,
            started_at=float(self._clock()),
        )
        self._alerts.append(alert)
        self._record("trigger_alert", pattern=parsed.value)
        return True

    def stop_alerts(self) -> bool:
        if not self._active:
            return self._reject("stop_alerts", "machine inactive")
        self._alerts.clear()
        self._record("stop_alerts")
        return True

    def performance_degraded(self, metrics: Any = None) -> bool:
        if not self._active:
            return self._reject("performance_degraded", "machine inactive")
        sample = PerformanceMetrics.from_payload(metrics)
        if sample.fps is None:
            logger.debug("Ignoring performance sample without usable fps: %r", metrics)
        elif sample.fps < 30:
            self._performance_mode = PerformanceMode.MINIMAL
            # half-open reopens and restarts the reset timer
            if self.circuit_breaker is not CircuitBreakerState.OPEN:
                self._breaker = CircuitBreakerState.OPEN
                self._breaker_opened_at = float(self._clock())
        elif sample.fps < 45:
            self._performance_mode = PerformanceMode.REDUCED
        self._record("performance_degraded", fps=sample.fps, mode=self._performance_mode.value)
        return True

    def performance_recovered(self) -> bool:
        if not self._active:
            return self._reject("performance_recovered", "machine inactive")
        self._performance_mode = PerformanceMode.NORMAL
        self._breaker = CircuitBreakerState.CLOSED
        self._breaker_opened_at = None
        self._record("performance_recovered")
        return True

    def bridge_connect(self, system: Any) -> bool:
        if not self._active:
            return False
        self.bridges.connect(system)
        self._record("bridge_connect", system=Subsystem.parse(system).value)
        return True

    def bridge_disconnect(self, system: Any) -> bool:
        if not self._active:
            return False
        self.bridges.disconnect(system)
        self._record("bridge_disconnect", system=Subsystem.parse(system).value)
        return True


__all__ = [
    "SecurityLevel",
    "PerformanceMode",
    "CircuitBreakerState",
    "AlertPattern",
    "SecuritySignal",
    "SIGNAL_TARGETS",
    "LevelConfig",
    "LEVEL_CONFIGS",
    "AlertConfig",
    "ALERT_CONFIGS",
    "Threat",
    "Alert",
    "PerformanceMetrics",
    "BridgeEdge",
    "BridgeGraph",
    "SignalEvent",
    "AuditEntry",
    "SecurityEscalationMachine",
]
