"""Cross-subsystem conflict rules.

``evaluate`` is a pure function of a :class:`~rendersync.params.ParameterState`:
conflicts are never stored, they are recomputed on every evaluation.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, fields
from enum import Enum
from typing import Any, FrozenSet, List, Mapping, Optional, Tuple

from .params import ParameterState, Subsystem, parameter_range

logger = logging.getLogger(__name__)


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return {"low": 0, "medium": 1, "high": 2}[self.value]

    def __str__(self) -> str:
        return self.value


class ConflictKind(str, Enum):
    """Conflict categories, declared in reporting order."""

    BLOOM_INVISIBLE = "bloom_invisible"
    PBR_BLOOM_CONFLICT = "pbr_bloom_conflict"
    LOW_EXPOSURE = "low_exposure"
    HIGH_EXPOSURE = "high_exposure"
    DARK_SCENE = "dark_scene"

    @property
    def category(self) -> int:
        # bloom visibility < pbr/bloom < exposure range < background/lighting balance
        return {
            "bloom_invisible": 0,
            "pbr_bloom_conflict": 1,
            "low_exposure": 2,
            "high_exposure": 2,
            "dark_scene": 3,
        }[self.value]

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Conflict:
    kind: ConflictKind
    severity: Severity
    subsystems: FrozenSet[Subsystem]
    message: str
    suggestion: str

    def involves(self, subsystem: Any) -> bool:
        return Subsystem.parse(subsystem) in self.subsystems

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "severity": self.severity.value,
            "subsystems": sorted(s.value for s in self.subsystems),
            "message": self.message,
            "suggestion": self.suggestion,
        }


# (threshold field, subsystem, parameter whose range bounds it)
_THRESHOLD_RANGES: Tuple[Tuple[str, Subsystem, str], ...] = (
    ("bright_background", Subsystem.BACKGROUND, "alpha"),
    ("bloom_exposure_ceiling", Subsystem.LIGHTING, "exposure"),
    ("reflective_metalness", Subsystem.PBR, "metalness"),
    ("reflective_roughness", Subsystem.PBR, "roughness"),
    ("pbr_bloom_metalness", Subsystem.PBR, "metalness"),
    ("pbr_bloom_emissive", Subsystem.BLOOM, "emissiveIntensity"),
    ("low_exposure", Subsystem.LIGHTING, "exposure"),
    ("high_exposure", Subsystem.LIGHTING, "exposure"),
    ("dark_background", Subsystem.BACKGROUND, "alpha"),
)


@dataclass
class ConflictThresholds:
    """Tunable rule thresholds. Brightness thresholds share the [0, 1] alpha range."""

    bright_background: float = 0.8
    bloom_exposure_ceiling: float = 0.5
    reflective_metalness: float = 0.9
    reflective_roughness: float = 0.8
    pbr_bloom_metalness: float = 0.8
    pbr_bloom_emissive: float = 0.5
    low_exposure: float = 0.3
    high_exposure: float = 3.0
    dark_background: float = 0.2
    min_ambient_light: float = 2.0

    def to_dict(self) -> dict:
        return asdict(self)

    def copy(self) -> "ConflictThresholds":
        return ConflictThresholds(**self.to_dict())

    @classmethod
    def from_mapping(
        cls, data: Mapping[str, Any], default: Optional["ConflictThresholds"] = None
    ) -> "ConflictThresholds":
        base = default.copy() if default is not None else cls()
        known = {f.name for f in fields(cls)}
        for key, value in data.items():
            if key not in known:
                raise ValueError(f"Unknown conflict threshold: {key!r}")
            setattr(base, key, float(value))
        return base

    def validate(self) -> None:
        for name, subsystem, param in _THRESHOLD_RANGES:
            lo, hi = parameter_range(subsystem, param)
            value = getattr(self, name)
            if not lo <= value <= hi:
                raise ValueError(f"thresholds.{name} must be within [{lo}, {hi}], got {value}")
        if self.low_exposure >= self.high_exposure:
            raise ValueError("thresholds.low_exposure must be below thresholds.high_exposure")
        if self.min_ambient_light < 0:
            raise ValueError("thresholds.min_ambient_light must be >= 0")


def _bloom_visibility(state: ParameterState, t: ConflictThresholds) -> Optional[Conflict]:
    washed_out = (
        state.background.brightness >= t.bright_background
        and state.lighting.exposure <= t.bloom_exposure_ceiling
    )
    reflective = (
        state.pbr.metalness >= t.reflective_metalness
        and state.pbr.roughness >= t.reflective_roughness
    )
    if not (washed_out or reflective):
        return None
    involved = set()
    if washed_out:
        involved.update((Subsystem.BLOOM, Subsystem.BACKGROUND, Subsystem.LIGHTING))
    if reflective:
        involved.update((Subsystem.BLOOM, Subsystem.PBR))
    if washed_out and reflective:
        message = "Bloom invisible: bright background with low exposure, and highly metallic rough surfaces"
    elif washed_out:
        message = "Bloom invisible with this bright background and low exposure"
    else:
        message = "Bloom invisible on highly metallic rough surfaces"
    return Conflict(
        kind=ConflictKind.BLOOM_INVISIBLE,
        severity=Severity.HIGH,
        subsystems=frozenset(involved),
        message=message,
        suggestion="Raise bloom strength and exposure, or darken the background",
    )


def _pbr_bloom(state: ParameterState, t: ConflictThresholds) -> Optional[Conflict]:
    if state.pbr.metalness >= t.pbr_bloom_metalness and state.bloom.emissive_intensity >= t.pbr_bloom_emissive:
        return Conflict(
            kind=ConflictKind.PBR_BLOOM_CONFLICT,
            severity=Severity.MEDIUM,
            subsystems=frozenset((Subsystem.PBR, Subsystem.BLOOM)),
            message="High metalness combined with emissive bloom is visually incoherent",
            suggestion="Reduce metalness or emissiveIntensity",
        )
    return None


def _exposure_range(state: ParameterState, t: ConflictThresholds) -> List[Conflict]:
    exposure = state.lighting.exposure
    found = []
    if exposure < t.low_exposure:
        found.append(
            Conflict(
                kind=ConflictKind.LOW_EXPOSURE,
                severity=Severity.LOW,
                subsystems=frozenset((Subsystem.LIGHTING,)),
                message="Very low exposure, details may be lost",
                suggestion=f"Raise exposure above {t.low_exposure:g}",
            )
        )
    if exposure > t.high_exposure:
        found.append(
            Conflict(
                kind=ConflictKind.HIGH_EXPOSURE,
                severity=Severity.MEDIUM,
                subsystems=frozenset((Subsystem.LIGHTING,)),
                message="Very high exposure, colors may clip",
                suggestion=f"Lower exposure below {t.high_exposure:g}",
            )
        )
    return found


def _dark_scene(state: ParameterState, t: ConflictThresholds) -> Optional[Conflict]:
    ambient = state.lighting.ambient_intensity * state.pbr.ambient_multiplier
    if state.background.brightness < t.dark_background and ambient < t.min_ambient_light:
        return Conflict(
            kind=ConflictKind.DARK_SCENE,
            severity=Severity.LOW,
            subsystems=frozenset((Subsystem.BACKGROUND, Subsystem.LIGHTING, Subsystem.PBR)),
            message="Very dark scene, objects are barely visible",
            suggestion="Raise ambient light or brighten the background",
        )
    return None


def sort_conflicts(conflicts: List[Conflict]) -> List[Conflict]:
    """Order by rule category, then severity (high first). Stable for equal keys."""
    return sorted(conflicts, key=lambda c: (c.kind.category, -c.severity.rank))


def evaluate(
    state: ParameterState,
    *,
    validation_enabled: bool = True,
    thresholds: Optional[ConflictThresholds] = None,
) -> List[Conflict]:
    """Return the ordered conflicts present in ``state``.

    Returns an empty list when ``validation_enabled`` is False. The state is
    never modified.
    """
    if not validation_enabled:
        return []
    if not isinstance(state, ParameterState):
        raise TypeError("evaluate() expects a ParameterState")
    t = thresholds or ConflictThresholds()

    found: List[Conflict] = []
    if state.bloom.enabled:
        for rule in (_bloom_visibility, _pbr_bloom):
            conflict = rule(state, t)
            if conflict is not None:
                found.append(conflict)
    found.extend(_exposure_range(state, t))
    conflict = _dark_scene(state, t)
    if conflict is not None:
        found.append(conflict)
    return sort_conflicts(found)


def highest_severity(conflicts: List[Conflict]) -> Optional[Severity]:
    if not conflicts:
        return None
    return max((c.severity for c in conflicts), key=lambda s: s.rank)


def log_conflicts(conflicts: List[Conflict]) -> None:
    for c in conflicts:
        if c.severity is Severity.HIGH:
            logger.warning("Conflict %s: %s", c.kind.value, c.message)
        elif c.severity is Severity.MEDIUM:
            logger.info("Conflict %s: %s", c.kind.value, c.message)
        else:
            logger.debug("Conflict %s: %s", c.kind.value, c.message)


__all__ = [
    "Severity",
    "ConflictKind",
    "Conflict",
    "ConflictThresholds",
    "evaluate",
    "sort_conflicts",
    "highest_severity",
    "log_conflicts",
]
