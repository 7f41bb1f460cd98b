# python/rendersync/params.py
# Authoritative render parameter state grouped by subsystem
# Exists so every value entering the engine is clamped or dropped before it is stored
# RELEVANT FILES: python/rendersync/colors.py, python/rendersync/conflicts.py, python/rendersync/dispatcher.py, tests/test_params.py
from __future__ import annotations

import copy
import logging
import math
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Tuple

from .colors import grey_for_luminance, is_hex_color, luminance, mean_luminance, normalize_hex

logger = logging.getLogger(__name__)


class Subsystem(str, Enum):
    """Rendering subsystems whose parameters the engine owns."""

    BLOOM = "bloom"
    PBR = "pbr"
    LIGHTING = "lighting"
    BACKGROUND = "background"
    SECURITY = "security"

    @classmethod
    def parse(cls, value: Any) -> "Subsystem":
        if isinstance(value, cls):
            return value
        key = _normalize_key(value)
        for member in cls:
            if member.value == key:
                return member
        raise ValueError(f"Unknown subsystem: {value!r}")

    def __str__(self) -> str:
        return self.value


# Subsystems accepted by UpdateSubsystem; security is mirrored from the escalation machine
EDITABLE_SUBSYSTEMS: Tuple[Subsystem, ...] = (
    Subsystem.BLOOM,
    Subsystem.PBR,
    Subsystem.LIGHTING,
    Subsystem.BACKGROUND,
)

_TONE_MAPPINGS: Dict[str, str] = {
    "linear": "linear",
    "none": "linear",
    "reinhard": "reinhard",
    "cineon": "cineon",
    "aces": "aces",
    "acesfilmic": "aces",
    "agx": "agx",
}

_BACKGROUND_TYPES: Dict[str, str] = {
    "color": "color",
    "colour": "color",
    "solid": "color",
    "transparent": "transparent",
    "none": "transparent",
    "environment": "environment",
    "env": "environment",
    "hdri": "environment",
    "gradient": "gradient",
}

_GRADIENT_DIRECTIONS: Dict[str, str] = {
    "topbottom": "top-bottom",
    "leftright": "left-right",
    "diagonal": "diagonal",
    "radial": "radial",
}

_SECURITY_LEVELS: Dict[str, str] = {k: k for k in ("normal", "scanning", "alert", "lockdown")}
_PERFORMANCE_MODES: Dict[str, str] = {k: k for k in ("normal", "reduced", "minimal", "boosted")}
_BREAKER_STATES: Dict[str, str] = {"closed": "closed", "open": "open", "halfopen": "half-open"}

# Parameter catalogue: kind, default and valid range/choices for every stored value.
PARAMETER_SCHEMA: Dict[Subsystem, Dict[str, Dict[str, Any]]] = {
    Subsystem.BLOOM: {
        "enabled": {"kind": "bool", "default": True},
        "threshold": {"kind": "float", "default": 0.15, "min": 0.0, "max": 1.0},
        "strength": {"kind": "float", "default": 0.4, "min": 0.0, "max": 3.0},
        "radius": {"kind": "float", "default": 0.4, "min": 0.0, "max": 1.0},
        "emissiveIntensity": {"kind": "float", "default": 0.6, "min": 0.0, "max": 5.0},
    },
    Subsystem.PBR: {
        "metalness": {"kind": "float", "default": 0.3, "min": 0.0, "max": 1.0},
        "roughness": {"kind": "float", "default": 1.0, "min": 0.0, "max": 1.0},
        "ambientMultiplier": {"kind": "float", "default": 1.0, "min": 0.0, "max": 4.0},
        "directionalMultiplier": {"kind": "float", "default": 1.0, "min": 0.0, "max": 4.0},
        "environmentIntensity": {"kind": "float", "default": 1.1, "min": 0.0, "max": 4.0},
        "toneMapping": {"kind": "enum", "default": "agx", "choices": _TONE_MAPPINGS},
    },
    Subsystem.LIGHTING: {
        "exposure": {"kind": "float", "default": 1.0, "min": 0.0, "max": 5.0},
        "ambientIntensity": {"kind": "float", "default": 3.5, "min": 0.0, "max": 10.0},
        "directionalIntensity": {"kind": "float", "default": 5.0, "min": 0.0, "max": 10.0},
    },
    Subsystem.BACKGROUND: {
        "type": {"kind": "enum", "default": "color", "choices": _BACKGROUND_TYPES},
        "color": {"kind": "color", "default": "#1a1a1a"},
        "alpha": {"kind": "float", "default": 1.0, "min": 0.0, "max": 1.0},
        "gradient": {"kind": "gradient", "default": None},
        "brightness": {"kind": "derived", "default": None},
    },
    Subsystem.SECURITY: {
        "active": {"kind": "bool", "default": False},
        "level": {"kind": "enum", "default": "normal", "choices": _SECURITY_LEVELS},
        "threatScore": {"kind": "float", "default": 0.0, "min": 0.0, "max": math.inf},
        "performanceMode": {"kind": "enum", "default": "normal", "choices": _PERFORMANCE_MODES},
        "circuitBreaker": {"kind": "enum", "default": "closed", "choices": _BREAKER_STATES},
    },
}

_INVALID = object()


def _normalize_key(value: Any) -> str:
    return "".join(
        c
        for c in str(value).strip().lower()
        if c not in {"-", "_", " ", "."}
    )


def _attr_name(key: str) -> str:
    out = []
    for c in key:
        if c.isupper():
            out.append("_")
            out.append(c.lower())
        else:
            out.append(c)
    return "".join(out)


def _canonical_key(subsystem: Subsystem, raw_key: Any) -> Optional[str]:
    """Map 'emissiveIntensity', 'emissive_intensity' or 'EmissiveIntensity' to the schema key."""
    wanted = _normalize_key(raw_key)
    for key in PARAMETER_SCHEMA[subsystem]:
        if _normalize_key(key) == wanted:
            return key
    return None


def parameter_range(subsystem: Any, name: str) -> Tuple[float, float]:
    """Return the (min, max) bounds of a numeric parameter."""
    sub = Subsystem.parse(subsystem)
    key = _canonical_key(sub, name)
    if key is None or PARAMETER_SCHEMA[sub][key]["kind"] != "float":
        raise ValueError(f"{sub.value}.{name} is not a numeric parameter")
    entry = PARAMETER_SCHEMA[sub][key]
    return float(entry["min"]), float(entry["max"])


def clamp_parameter(subsystem: Any, name: str, value: float) -> float:
    """Clamp ``value`` into the valid range of ``subsystem.name``."""
    lo, hi = parameter_range(subsystem, name)
    return float(min(hi, max(lo, float(value))))


def _coerce(subsystem: Subsystem, key: str, value: Any) -> Any:
    entry = PARAMETER_SCHEMA[subsystem][key]
    kind = entry["kind"]
    label = f"{subsystem.value}.{key}"
    if kind == "bool":
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)) and value in (0, 1):
            return bool(value)
        if isinstance(value, str) and value.strip().lower() in {"true", "false", "on", "off"}:
            return value.strip().lower() in {"true", "on"}
        return _INVALID
    if kind == "float":
        if isinstance(value, bool):
            return _INVALID
        try:
            number = float(value)
        except (TypeError, ValueError):
            return _INVALID
        if math.isnan(number):
            return _INVALID
        lo, hi = entry["min"], entry["max"]
        clamped = min(hi, max(lo, number))
        if clamped != number:
            logger.debug("Clamped %s=%r into [%s, %s]", label, value, lo, hi)
        return float(clamped)
    if kind == "enum":
        normalized = _normalize_key(value)
        choices: Mapping[str, str] = entry["choices"]
        if normalized not in choices:
            return _INVALID
        return choices[normalized]
    if kind == "color":
        if not is_hex_color(value):
            return _INVALID
        return normalize_hex(value)
    if kind == "gradient":
        if value is None:
            return None
        if isinstance(value, GradientParams):
            return copy.deepcopy(value)
        if isinstance(value, Mapping):
            try:
                return GradientParams.from_mapping(value)
            except ValueError:
                return _INVALID
        return _INVALID
    return _INVALID


class _SectionParams:
    """Shared merge/serialize behaviour for per-subsystem parameter dataclasses."""

    SUBSYSTEM: ClassVar[Subsystem]

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for key in PARAMETER_SCHEMA[self.SUBSYSTEM]:
            value = getattr(self, _attr_name(key))
            if isinstance(value, GradientParams):
                value = value.to_dict()
            out[key] = value
        return out

    def copy(self):
        return copy.deepcopy(self)

    def _merge(self, data: Mapping[str, Any]) -> None:
        for raw_key, value in data.items():
            key = _canonical_key(self.SUBSYSTEM, raw_key)
            if key is None:
                logger.warning("Ignoring unknown parameter %s.%s", self.SUBSYSTEM.value, raw_key)
                continue
            if PARAMETER_SCHEMA[self.SUBSYSTEM][key]["kind"] == "derived":
                continue
            coerced = _coerce(self.SUBSYSTEM, key, value)
            if coerced is _INVALID:
                logger.warning("Dropping invalid value %s.%s=%r", self.SUBSYSTEM.value, key, value)
                continue
            setattr(self, _attr_name(key), coerced)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], default=None):
        if not isinstance(data, Mapping):
            raise TypeError(f"{cls.SUBSYSTEM.value} parameters must be a mapping")
        base = copy.deepcopy(default) if default is not None else cls()
        base._merge(data)
        return base


@dataclass
class GradientParams:
    colors: List[str] = field(default_factory=lambda: ["#1a1a1a", "#333333"])
    direction: str = "top-bottom"

    def to_dict(self) -> dict:
        return {"colors": list(self.colors), "direction": self.direction}

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "GradientParams":
        # Nested objects are replaced wholesale, never merged into a previous gradient
        base = cls()
        if "colors" in data:
            raw = data["colors"]
            if isinstance(raw, str) or not isinstance(raw, (list, tuple)):
                raise ValueError("background.gradient.colors must be a list of hex colors")
            colors = [normalize_hex(c) for c in raw if is_hex_color(c)]
            if len(colors) != len(raw) or not colors:
                raise ValueError("background.gradient.colors must be a non-empty list of hex colors")
            base.colors = colors
        if "direction" in data:
            key = _normalize_key(data["direction"])
            if key not in _GRADIENT_DIRECTIONS:
                raise ValueError(f"Unknown gradient direction: {data['direction']!r}")
            base.direction = _GRADIENT_DIRECTIONS[key]
        return base


@dataclass
class BloomParams(_SectionParams):
    SUBSYSTEM: ClassVar[Subsystem] = Subsystem.BLOOM

    enabled: bool = True
    threshold: float = 0.15
    strength: float = 0.4
    radius: float = 0.4
    emissive_intensity: float = 0.6


@dataclass
class PbrParams(_SectionParams):
    SUBSYSTEM: ClassVar[Subsystem] = Subsystem.PBR

    metalness: float = 0.3
    roughness: float = 1.0
    ambient_multiplier: float = 1.0
    directional_multiplier: float = 1.0
    environment_intensity: float = 1.1
    tone_mapping: str = "agx"


@dataclass
class LightingParams(_SectionParams):
    SUBSYSTEM: ClassVar[Subsystem] = Subsystem.LIGHTING

    exposure: float = 1.0
    ambient_intensity: float = 3.5
    directional_intensity: float = 5.0


@dataclass
class BackgroundParams(_SectionParams):
    """Background parameters; ``brightness`` is derived and recomputed on every merge."""

    SUBSYSTEM: ClassVar[Subsystem] = Subsystem.BACKGROUND

    type: str = "color"
    color: str = "#1a1a1a"
    alpha: float = 1.0
    gradient: Optional[GradientParams] = None
    brightness: float = field(default=0.0)

    def __post_init__(self) -> None:
        self.refresh_brightness()

    def refresh_brightness(self) -> float:
        if self.type == "transparent":
            value = 0.0
        elif self.type == "color":
            value = luminance(self.color)
        elif self.type == "gradient":
            colors = self.gradient.colors if self.gradient is not None else [self.color]
            value = mean_luminance(colors)
        else:
            value = 0.5
        self.brightness = float(value)
        return self.brightness

    def _merge(self, data: Mapping[str, Any]) -> None:
        primary = {k: v for k, v in data.items() if _canonical_key(Subsystem.BACKGROUND, k) != "brightness"}
        requested = [v for k, v in data.items() if _canonical_key(Subsystem.BACKGROUND, k) == "brightness"]
        drives_brightness = any(
            _canonical_key(Subsystem.BACKGROUND, k) in {"color", "type", "gradient"} for k in primary
        )
        if requested and not drives_brightness:
            # A requested brightness is expressed through the primary colour field
            target = requested[-1]
            if isinstance(target, bool) or not isinstance(target, (int, float)) or math.isnan(target):
                logger.warning("Dropping invalid value background.brightness=%r", target)
            else:
                primary["type"] = "color"
                primary["color"] = grey_for_luminance(float(target))
        super()._merge(primary)
        self.refresh_brightness()


@dataclass
class SecurityParams(_SectionParams):
    """Read-only mirror of the escalation machine, written by the dispatcher only."""

    SUBSYSTEM: ClassVar[Subsystem] = Subsystem.SECURITY

    active: bool = False
    level: str = "normal"
    threat_score: float = 0.0
    performance_mode: str = "normal"
    circuit_breaker: str = "closed"


_SECTION_TYPES: Dict[Subsystem, type] = {
    Subsystem.BLOOM: BloomParams,
    Subsystem.PBR: PbrParams,
    Subsystem.LIGHTING: LightingParams,
    Subsystem.BACKGROUND: BackgroundParams,
    Subsystem.SECURITY: SecurityParams,
}


@dataclass
class ParameterState:
    """Parameters for every subsystem. Equality is deep, by value."""

    bloom: BloomParams = field(default_factory=BloomParams)
    pbr: PbrParams = field(default_factory=PbrParams)
    lighting: LightingParams = field(default_factory=LightingParams)
    background: BackgroundParams = field(default_factory=BackgroundParams)
    security: SecurityParams = field(default_factory=SecurityParams)

    def section(self, subsystem: Any) -> _SectionParams:
        return getattr(self, Subsystem.parse(subsystem).value)

    def __getitem__(self, subsystem: Any) -> Dict[str, Any]:
        return self.section(subsystem).to_dict()

    def get(self, subsystem: Any, name: str, default: Any = None) -> Any:
        sub = Subsystem.parse(subsystem)
        key = _canonical_key(sub, name)
        if key is None:
            return default
        return getattr(self.section(sub), _attr_name(key))

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        return {f.name: getattr(self, f.name).to_dict() for f in fields(self)}

    def copy(self) -> "ParameterState":
        return copy.deepcopy(self)

    def merged(self, subsystem: Any, params: Mapping[str, Any]) -> "ParameterState":
        """Return a copy with ``params`` shallow-merged into one subsystem."""
        sub = Subsystem.parse(subsystem)
        out = self.copy()
        section_type = _SECTION_TYPES[sub]
        setattr(out, sub.value, section_type.from_mapping(params, getattr(self, sub.value)))
        return out

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], default: Optional["ParameterState"] = None) -> "ParameterState":
        if not isinstance(data, Mapping):
            raise TypeError("parameter state must be a mapping of subsystem -> parameters")
        base = copy.deepcopy(default) if default is not None else cls()
        for raw_name, params in data.items():
            sub = Subsystem.parse(raw_name)
            if not isinstance(params, Mapping):
                raise TypeError(f"{sub.value} must be a mapping")
            base = base.merged(sub, params)
        return base


class ParameterStore:
    """Holds the single authoritative ParameterState.

    Callers only ever receive copies; the state is replaced through the
    controlled mutation methods below, which the dispatcher alone invokes.
    """

    def __init__(self, initial: Optional[Any] = None):
        if initial is None:
            self._state = ParameterState()
        elif isinstance(initial, ParameterState):
            self._state = initial.copy()
        else:
            self._state = ParameterState.from_mapping(initial)

    @property
    def state(self) -> ParameterState:
        return self._state.copy()

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        return self._state.to_dict()

    def get(self, subsystem: Any, name: str, default: Any = None) -> Any:
        return self._state.get(subsystem, name, default)

    def update(self, subsystem: Any, partial: Mapping[str, Any]) -> ParameterState:
        """Shallow-merge ``partial`` into one editable subsystem and return the new state."""
        sub = Subsystem.parse(subsystem)
        if sub not in EDITABLE_SUBSYSTEMS:
            raise ValueError(f"{sub.value} parameters are read-only")
        if not isinstance(partial, Mapping):
            raise TypeError(f"{sub.value} update must be a mapping")
        self._state = self._state.merged(sub, partial)
        return self.state

    def merge(self, patch: Mapping[str, Mapping[str, Any]]) -> ParameterState:
        """Apply a multi-subsystem patch ({subsystem: {param: value}}) in one step."""
        if not isinstance(patch, Mapping):
            raise TypeError("patch must be a mapping of subsystem -> parameters")
        staged = self._state
        for raw_name, params in patch.items():
            sub = Subsystem.parse(raw_name)
            if sub not in EDITABLE_SUBSYSTEMS:
                raise ValueError(f"{sub.value} parameters are read-only")
            if not isinstance(params, Mapping):
                raise TypeError(f"{sub.value} must be a mapping")
            staged = staged.merged(sub, params)
        self._state = staged
        return self.state

    def replace(self, state: ParameterState) -> ParameterState:
        if not isinstance(state, ParameterState):
            raise TypeError("replace() expects a ParameterState")
        self._state = state.copy()
        return self.state

    def sync_security(self, values: Mapping[str, Any]) -> ParameterState:
        self._state = self._state.merged(Subsystem.SECURITY, values)
        return self.state


__all__ = [
    "Subsystem",
    "EDITABLE_SUBSYSTEMS",
    "PARAMETER_SCHEMA",
    "parameter_range",
    "clamp_parameter",
    "GradientParams",
    "BloomParams",
    "PbrParams",
    "LightingParams",
    "BackgroundParams",
    "SecurityParams",
    "ParameterState",
    "ParameterStore",
]
