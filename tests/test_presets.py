# tests/test_presets.py
# Unit tests for render presets: registry, aliases and merge into the parameter store
# RELEVANT FILES: python/rendersync/presets.py, python/rendersync/params.py
from __future__ import annotations

import pytest

from rendersync import presets
from rendersync.conflicts import ConflictKind, evaluate
from rendersync.params import ParameterStore


@pytest.mark.parametrize("name", ["studioproplus", "chromeshowcase", "softstudio", "dramaticmood"])
def test_presets_available_and_mergeable(name: str) -> None:
    assert name in presets.available()
    mapping = presets.get(name)
    assert isinstance(mapping, dict)
    ParameterStore().merge(mapping)


def test_presets_available_canonical_names_sorted() -> None:
    assert presets.available() == ["chromeshowcase", "dramaticmood", "softstudio", "studioproplus"]


@pytest.mark.parametrize(
    "alias, canonical",
    [
        ("studio", "studio_pro_plus"),
        ("Studio-Pro", "studio_pro_plus"),
        ("default", "studio_pro_plus"),
        ("chrome", "chrome_showcase"),
        ("soft", "soft_studio"),
        ("MOOD", "dramatic_mood"),
    ],
)
def test_aliases(alias: str, canonical: str) -> None:
    assert presets.get(alias) == presets.get(canonical)


def test_unknown_preset_lists_available() -> None:
    with pytest.raises(ValueError, match="Available: chromeshowcase"):
        presets.get("neon")


def test_get_returns_fresh_dicts() -> None:
    first = presets.get("chrome")
    first["pbr"]["metalness"] = 0.0
    assert presets.get("chrome")["pbr"]["metalness"] == pytest.approx(0.9)


def test_lighting_is_split_into_multipliers_and_exposure() -> None:
    mapping = presets.get("soft")
    assert mapping["pbr"]["ambientMultiplier"] == pytest.approx(0.429)
    assert mapping["pbr"]["directionalMultiplier"] == pytest.approx(0.4)
    assert mapping["lighting"] == {"exposure": 1.0}


def test_studio_preset_is_conflict_free() -> None:
    state = ParameterStore().merge(presets.get("studio"))
    assert state.pbr.tone_mapping == "agx"
    assert state.lighting.exposure == pytest.approx(1.7)
    assert evaluate(state) == []


def test_dramatic_preset_sets_a_dark_backdrop() -> None:
    state = ParameterStore().merge(presets.get("dramatic"))
    assert state.background.color == "#2a2a2a"
    assert state.background.brightness < 0.2
    assert [c.kind for c in evaluate(state)] == [ConflictKind.DARK_SCENE]
