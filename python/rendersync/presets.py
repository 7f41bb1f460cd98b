"""
python/rendersync/presets.py
Named multi-subsystem render presets.

Each preset returns a plain ``{subsystem: {param: value}}`` dict accepted by
``ParameterStore.merge()`` and by the ``ApplyPreset`` command, which merges
every subsystem of the preset in a single synchronization cycle. Lighting
multipliers are relative to the base ambient (3.5) and directional (5.0)
intensities.

Example
-------
>>> from rendersync import presets
>>> patch = presets.get("chrome")
>>> patch["pbr"]["metalness"]
0.9
"""
from __future__ import annotations

from typing import Any, Callable, Dict, List


def _normalize_name(name: str) -> str:
    return "".join(c for c in str(name).strip().lower() if c not in {"-", "_", " ", "."})


def _lighting(*, ambient: float, directional: float, exposure: float) -> Dict[str, Dict[str, Any]]:
    """Split preset lighting into the pbr multipliers and the lighting exposure."""
    return {
        "pbr": {"ambientMultiplier": float(ambient), "directionalMultiplier": float(directional)},
        "lighting": {"exposure": float(exposure)},
    }


def _compose(*parts: Dict[str, Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    out: Dict[str, Dict[str, Any]] = {}
    for part in parts:
        for subsystem, params in part.items():
            out.setdefault(subsystem, {}).update(params)
    return out


def studio_pro_plus() -> Dict[str, Dict[str, Any]]:
    """Default studio look: neutral multipliers, AgX tone mapping, soft matte materials."""
    return _compose(
        _lighting(ambient=1.0, directional=1.0, exposure=1.7),
        {
            "pbr": {
                "metalness": 0.3,
                "roughness": 1.0,
                "toneMapping": "agx",
                "environmentIntensity": 1.1,
            }
        },
    )


def chrome_showcase() -> Dict[str, Dict[str, Any]]:
    """Chrome materials under ACES; pairs badly with strong emissive bloom."""
    return _compose(
        _lighting(ambient=0.571, directional=0.6, exposure=1.2),
        {
            "pbr": {
                "metalness": 0.9,
                "roughness": 0.1,
                "toneMapping": "aces",
                "environmentIntensity": 0.8,
            }
        },
    )


def soft_studio() -> Dict[str, Dict[str, Any]]:
    return _compose(
        _lighting(ambient=0.429, directional=0.4, exposure=1.0),
        {
            "pbr": {
                "metalness": 0.2,
                "roughness": 0.8,
                "toneMapping": "linear",
                "environmentIntensity": 0.6,
            }
        },
    )


def dramatic_mood() -> Dict[str, Dict[str, Any]]:
    """Low ambient fill with Reinhard tone mapping and a near-black backdrop."""
    return _compose(
        _lighting(ambient=0.229, directional=0.8, exposure=1.5),
        {
            "pbr": {
                "metalness": 0.7,
                "roughness": 0.3,
                "toneMapping": "reinhard",
                "environmentIntensity": 1.3,
            },
            "background": {"type": "color", "color": "#2a2a2a"},
        },
    )


_PRESETS: Dict[str, Callable[[], Dict[str, Dict[str, Any]]]] = {
    "studioproplus": studio_pro_plus,
    "chromeshowcase": chrome_showcase,
    "softstudio": soft_studio,
    "dramaticmood": dramatic_mood,
}

_ALIASES: Dict[str, str] = {
    "studio": "studioproplus",
    "studiopro": "studioproplus",
    "default": "studioproplus",
    "chrome": "chromeshowcase",
    "soft": "softstudio",
    "dramatic": "dramaticmood",
    "mood": "dramaticmood",
}


def available() -> List[str]:
    """List available preset names."""
    return sorted(_PRESETS.keys())


def get(name: str) -> Dict[str, Dict[str, Any]]:
    """Resolve a preset by name (case-insensitive; supports common aliases).

    Raises
    ------
    ValueError
        If the preset name is unknown.
    """
    key = _normalize_name(name)
    if key in _ALIASES:
        key = _ALIASES[key]
    if key not in _PRESETS:
        raise ValueError(f"Unknown preset: {name!r}. Available: {', '.join(available())}")
    # Fresh dicts per call so callers may mutate the result
    return _PRESETS[key]()


__all__ = [
    "studio_pro_plus",
    "chrome_showcase",
    "soft_studio",
    "dramatic_mood",
    "available",
    "get",
]
