"""Conflict resolution: automatic nudges, manual patches, ignore and rollback."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .checkpoints import Checkpoint
from .conflicts import Conflict, ConflictKind, ConflictThresholds, evaluate
from .params import EDITABLE_SUBSYSTEMS, ParameterState, Subsystem, clamp_parameter

logger = logging.getLogger(__name__)

BLOOM_STRENGTH_GAIN = 1.5
BLOOM_EXPOSURE_GAIN = 1.2
METALNESS_FACTOR = 0.7
METALNESS_FLOOR = 0.3
MIN_EXPOSURE = 0.5
MAX_EXPOSURE = 2.5
AMBIENT_GAIN = 1.3
AMBIENT_CAP = 2.0


class ResolutionOutcome(str, Enum):
    RESOLVED = "resolved"
    AWAITING_DECISION = "awaiting-decision"
    STILL_CONFLICTING = "still-conflicting"
    ROLLED_BACK = "rolled-back"
    IGNORED = "ignored"

    def __str__(self) -> str:
        return self.value


@dataclass
class ResolutionPolicy:
    """Process-wide resolution toggles, changed only by explicit operator commands."""

    validation_enabled: bool = True
    auto_resolve: bool = False

    def to_dict(self) -> dict:
        return {"validation_enabled": self.validation_enabled, "auto_resolve": self.auto_resolve}


@dataclass
class ResolutionResult:
    state: ParameterState
    outcome: ResolutionOutcome
    conflicts: List[Conflict] = field(default_factory=list)
    applied: List[ConflictKind] = field(default_factory=list)
    checkpoint_id: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome in (ResolutionOutcome.RESOLVED, ResolutionOutcome.IGNORED, ResolutionOutcome.ROLLED_BACK)


def _nudge_bloom_invisible(state: ParameterState) -> ParameterState:
    strength = clamp_parameter(Subsystem.BLOOM, "strength", state.bloom.strength * BLOOM_STRENGTH_GAIN)
    exposure = clamp_parameter(Subsystem.LIGHTING, "exposure", state.lighting.exposure * BLOOM_EXPOSURE_GAIN)
    state = state.merged(Subsystem.BLOOM, {"strength": strength})
    return state.merged(Subsystem.LIGHTING, {"exposure": exposure})


def _nudge_pbr_bloom(state: ParameterState) -> ParameterState:
    current = state.pbr.metalness
    metalness = min(current, max(METALNESS_FLOOR, current * METALNESS_FACTOR))
    return state.merged(Subsystem.PBR, {"metalness": metalness})


def _nudge_low_exposure(state: ParameterState) -> ParameterState:
    return state.merged(Subsystem.LIGHTING, {"exposure": max(MIN_EXPOSURE, state.lighting.exposure)})


def _nudge_high_exposure(state: ParameterState) -> ParameterState:
    return state.merged(Subsystem.LIGHTING, {"exposure": min(MAX_EXPOSURE, state.lighting.exposure)})


def _nudge_dark_scene(state: ParameterState) -> ParameterState:
    current = state.pbr.ambient_multiplier
    multiplier = max(current, min(AMBIENT_CAP, current * AMBIENT_GAIN))
    return state.merged(Subsystem.PBR, {"ambientMultiplier": multiplier})


_NUDGES = {
    ConflictKind.BLOOM_INVISIBLE: _nudge_bloom_invisible,
    ConflictKind.PBR_BLOOM_CONFLICT: _nudge_pbr_bloom,
    ConflictKind.LOW_EXPOSURE: _nudge_low_exposure,
    ConflictKind.HIGH_EXPOSURE: _nudge_high_exposure,
    ConflictKind.DARK_SCENE: _nudge_dark_scene,
}


def apply_nudges(state: ParameterState, conflicts: List[Conflict]) -> Tuple[ParameterState, List[ConflictKind]]:
    """Apply one corrective nudge per conflict kind, in detection order."""
    applied: List[ConflictKind] = []
    out = state.copy()
    for conflict in conflicts:
        if conflict.kind in applied:
            continue
        out = _NUDGES[conflict.kind](out)
        applied.append(conflict.kind)
    return out, applied


def _parse_patch(patch: Any) -> Optional[Dict[Subsystem, Mapping[str, Any]]]:
    if not isinstance(patch, Mapping) or not patch:
        return None
    parsed: Dict[Subsystem, Mapping[str, Any]] = {}
    for raw_name, params in patch.items():
        try:
            sub = Subsystem.parse(raw_name)
        except ValueError:
            return None
        if sub not in EDITABLE_SUBSYSTEMS or not isinstance(params, Mapping):
            return None
        parsed[sub] = params
    return parsed


class ConflictResolver:
    """Produce a new ParameterState and an outcome for a list of conflicts.

    Args:
        thresholds: Rule thresholds used when re-evaluating between passes.
        max_passes: Number of nudge passes for automatic resolution. With a
            single pass the result is ``resolved`` without re-evaluation;
            with more, conflicts left after the last pass yield
            ``still-conflicting``.
    """

    def __init__(self, thresholds: Optional[ConflictThresholds] = None, max_passes: int = 1):
        if max_passes < 1:
            raise ValueError("max_passes must be >= 1")
        self.thresholds = thresholds or ConflictThresholds()
        self.max_passes = int(max_passes)

    def resolve(self, state: ParameterState, conflicts: List[Conflict], policy: ResolutionPolicy) -> ResolutionResult:
        if not policy.auto_resolve:
            return ResolutionResult(state.copy(), ResolutionOutcome.AWAITING_DECISION, list(conflicts))
        return self.auto_resolve(state, conflicts)

    def auto_resolve(self, state: ParameterState, conflicts: List[Conflict]) -> ResolutionResult:
        if self.max_passes == 1:
            new_state, applied = apply_nudges(state, conflicts)
            logger.info("Auto-resolved %d conflict(s) in one pass", len(applied))
            return ResolutionResult(new_state, ResolutionOutcome.RESOLVED, [], applied)

        current, remaining = state.copy(), list(conflicts)
        applied: List[ConflictKind] = []
        for _ in range(self.max_passes):
            current, kinds = apply_nudges(current, remaining)
            applied.extend(k for k in kinds if k not in applied)
            remaining = evaluate(current, thresholds=self.thresholds)
            if not remaining:
                return ResolutionResult(current, ResolutionOutcome.RESOLVED, [], applied)
        logger.warning("%d conflict(s) remain after %d resolution passes", len(remaining), self.max_passes)
        return ResolutionResult(current, ResolutionOutcome.STILL_CONFLICTING, remaining, applied)

    def manual(self, state: ParameterState, patch: Any, conflicts: Optional[List[Conflict]] = None) -> ResolutionResult:
        """Merge an operator patch ({subsystem: {param: value}}) without re-validating."""
        parsed = _parse_patch(patch)
        if parsed is None:
            logger.warning("Manual resolution rejected: unusable patch %r", patch)
            return ResolutionResult(state.copy(), ResolutionOutcome.STILL_CONFLICTING, list(conflicts or []))
        out = state
        for sub, params in parsed.items():
            out = out.merged(sub, params)
        return ResolutionResult(out, ResolutionOutcome.RESOLVED)

    def ignore(self, state: ParameterState, conflicts: List[Conflict]) -> ResolutionResult:
        return ResolutionResult(state.copy(), ResolutionOutcome.IGNORED, list(conflicts))

    def rollback(self, state: ParameterState, checkpoint: Optional[Checkpoint]) -> ResolutionResult:
        """Replace ``state`` with the checkpoint snapshot; no checkpoint leaves it unchanged."""
        if checkpoint is None:
            return ResolutionResult(state.copy(), ResolutionOutcome.ROLLED_BACK)
        return ResolutionResult(checkpoint.state(), ResolutionOutcome.ROLLED_BACK, checkpoint_id=checkpoint.id)


__all__ = [
    "ResolutionOutcome",
    "ResolutionPolicy",
    "ResolutionResult",
    "ConflictResolver",
    "apply_nudges",
]
