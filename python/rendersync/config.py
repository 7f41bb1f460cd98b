# python/rendersync/config.py
# Engine configuration parsing: capacities, resolution policy defaults, persistence and thresholds
# Exists so the dispatcher is built from one validated settings object
# RELEVANT FILES: python/rendersync/dispatcher.py, python/rendersync/conflicts.py, tests/test_config.py
from __future__ import annotations

import copy
import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from .checkpoints import DEFAULT_CHECKPOINT_KEY, DEFAULT_CHECKPOINT_LIMIT
from .conflicts import ConflictThresholds

ConfigSource = Union["EngineConfig", Mapping[str, Any], str, Path, None]

CHECKPOINT_PATH_ENV = "RENDERSYNC_CHECKPOINTS"

_INT_FIELDS = (
    "checkpoint_limit",
    "log_limit",
    "notification_limit",
    "max_threats",
    "max_audit_entries",
    "max_resolution_passes",
)
_BOOL_FIELDS = (
    "validation_enabled",
    "auto_resolve",
    "resolve_on_detect",
    "checkpoint_before_auto_resolve",
    "escalate_on_threat",
)


def _to_bool(value: Any, label: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        key = value.strip().lower()
        if key in {"1", "true", "yes", "on"}:
            return True
        if key in {"0", "false", "no", "off"}:
            return False
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    raise ValueError(f"{label} must be a boolean, got {value!r}")


def _to_int(value: Any, label: str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{label} must be an integer, got {value!r}")
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{label} must be an integer, got {value!r}") from exc
    if number != value and not isinstance(value, str):
        raise ValueError(f"{label} must be an integer, got {value!r}")
    return number


@dataclass
class EngineConfig:
    checkpoint_limit: int = DEFAULT_CHECKPOINT_LIMIT
    log_limit: int = 50
    notification_limit: int = 10
    max_threats: int = 100
    max_audit_entries: int = 1000
    max_resolution_passes: int = 1
    validation_enabled: bool = True
    auto_resolve: bool = False
    resolve_on_detect: bool = False
    checkpoint_before_auto_resolve: bool = True
    checkpoint_path: Optional[str] = None
    checkpoint_key: str = DEFAULT_CHECKPOINT_KEY
    escalate_on_threat: bool = True
    circuit_breaker_reset_s: float = 5.0
    thresholds: ConflictThresholds = field(default_factory=ConflictThresholds)

    def to_dict(self) -> dict:
        data = {name: getattr(self, name) for name in _INT_FIELDS + _BOOL_FIELDS}
        data.update(
            {
                "checkpoint_path": self.checkpoint_path,
                "checkpoint_key": self.checkpoint_key,
                "circuit_breaker_reset_s": self.circuit_breaker_reset_s,
                "thresholds": self.thresholds.to_dict(),
            }
        )
        return data

    def copy(self) -> "EngineConfig":
        return copy.deepcopy(self)

    def validate(self) -> None:
        for name in ("checkpoint_limit", "log_limit", "notification_limit", "max_threats", "max_audit_entries"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be greater than zero")
        if self.max_resolution_passes < 1:
            raise ValueError("max_resolution_passes must be >= 1")
        if self.circuit_breaker_reset_s < 0.0:
            raise ValueError("circuit_breaker_reset_s must be non-negative")
        if not self.checkpoint_key:
            raise ValueError("checkpoint_key must be a non-empty string")
        self.thresholds.validate()

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], default: Optional["EngineConfig"] = None) -> "EngineConfig":
        base = copy.deepcopy(default) if default is not None else cls()
        for key, value in data.items():
            if key in _INT_FIELDS:
                setattr(base, key, _to_int(value, key))
            elif key in _BOOL_FIELDS:
                setattr(base, key, _to_bool(value, key))
            elif key == "checkpoint_path":
                base.checkpoint_path = None if value is None else str(value)
            elif key == "checkpoint_key":
                base.checkpoint_key = str(value)
            elif key == "circuit_breaker_reset_s":
                base.circuit_breaker_reset_s = float(value)
            elif key == "thresholds":
                if not isinstance(value, Mapping):
                    raise TypeError("thresholds must be a mapping")
                base.thresholds = ConflictThresholds.from_mapping(value, base.thresholds)
            else:
                raise ValueError(f"Unknown engine config key: {key!r}")
        return base


def _load_from_path(path: Path) -> Mapping[str, Any]:
    suffix = path.suffix.lower()
    text = path.read_text(encoding="utf-8")
    if suffix in {".json", ""}:
        data = json.loads(text)
        if not isinstance(data, Mapping):
            raise ValueError(f"Engine config file must hold a JSON object: {path}")
        return data
    raise ValueError(f"Unsupported engine config file format: {path}")


def _build_override_mapping(overrides: Mapping[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    thresholds: Dict[str, Any] = {}
    threshold_names = set(ConflictThresholds().to_dict())
    for key, value in overrides.items():
        if key in threshold_names:
            thresholds[key] = value
        elif key in {"checkpoints", "history"}:
            out["checkpoint_limit"] = value
        elif key == "validation":
            out["validation_enabled"] = value
        elif key == "passes":
            out["max_resolution_passes"] = value
        else:
            out[key] = value
    if thresholds:
        out["thresholds"] = thresholds
    return out


def load_engine_config(config: ConfigSource = None, overrides: Optional[Mapping[str, Any]] = None) -> EngineConfig:
    if isinstance(config, EngineConfig):
        cfg = config.copy()
    elif isinstance(config, Mapping):
        cfg = EngineConfig.from_mapping(config)
    elif isinstance(config, (str, Path)):
        cfg = EngineConfig.from_mapping(_load_from_path(Path(config)))
    elif config is None:
        cfg = EngineConfig()
    else:
        raise TypeError("config must be EngineConfig, mapping, path, or None")

    if overrides:
        merged = _build_override_mapping(overrides)
        if merged:
            cfg = EngineConfig.from_mapping(merged, cfg)
    if cfg.checkpoint_path is None and os.environ.get(CHECKPOINT_PATH_ENV):
        cfg.checkpoint_path = os.environ[CHECKPOINT_PATH_ENV]
    cfg.validate()
    return cfg


__all__ = ["EngineConfig", "ConfigSource", "CHECKPOINT_PATH_ENV", "load_engine_config"]
