# tests/test_params.py
# Tests for the parameter store: clamping, shallow merges and derived background fields
# RELEVANT FILES: python/rendersync/params.py, python/rendersync/colors.py

from __future__ import annotations

import logging

import pytest

from rendersync.params import (
    ParameterState,
    ParameterStore,
    Subsystem,
    clamp_parameter,
    parameter_range,
)


def test_defaults() -> None:
    state = ParameterState()
    assert state["bloom"] == {
        "enabled": True,
        "threshold": 0.15,
        "strength": 0.4,
        "radius": 0.4,
        "emissiveIntensity": 0.6,
    }
    assert state["pbr"]["metalness"] == pytest.approx(0.3)
    assert state["pbr"]["roughness"] == pytest.approx(1.0)
    assert state["pbr"]["toneMapping"] == "agx"
    assert state["lighting"] == {"exposure": 1.0, "ambientIntensity": 3.5, "directionalIntensity": 5.0}
    assert state["background"]["color"] == "#1a1a1a"
    assert state["background"]["brightness"] == pytest.approx(26 / 255)
    assert state["security"]["active"] is False


def test_update_merges_only_given_keys() -> None:
    store = ParameterStore()
    state = store.update("bloom", {"strength": 0.8})
    assert state.bloom.strength == pytest.approx(0.8)
    assert state.bloom.threshold == pytest.approx(0.15)
    assert state.bloom.emissive_intensity == pytest.approx(0.6)


@pytest.mark.parametrize(
    "subsystem, params, attr, expected",
    [
        ("bloom", {"strength": 10}, ("bloom", "strength"), 3.0),
        ("bloom", {"threshold": -2}, ("bloom", "threshold"), 0.0),
        ("pbr", {"metalness": 1.7}, ("pbr", "metalness"), 1.0),
        ("lighting", {"exposure": 99}, ("lighting", "exposure"), 5.0),
        ("lighting", {"ambientIntensity": -1}, ("lighting", "ambient_intensity"), 0.0),
    ],
)
def test_out_of_range_values_are_clamped(subsystem, params, attr, expected) -> None:
    store = ParameterStore()
    state = store.update(subsystem, params)
    section, name = attr
    assert getattr(getattr(state, section), name) == pytest.approx(expected)


def test_snake_case_and_camel_case_keys_are_equivalent() -> None:
    store = ParameterStore()
    store.update("bloom", {"emissive_intensity": 1.2})
    assert store.state.bloom.emissive_intensity == pytest.approx(1.2)
    store.update("bloom", {"emissiveIntensity": 1.4})
    assert store.get("bloom", "emissiveIntensity") == pytest.approx(1.4)


def test_invalid_values_are_dropped_and_the_rest_applies(caplog: pytest.LogCaptureFixture) -> None:
    store = ParameterStore()
    with caplog.at_level(logging.WARNING, logger="rendersync.params"):
        state = store.update(
            "lighting",
            {"exposure": float("nan"), "ambientIntensity": "bright", "directionalIntensity": 4.0, "bogus": 1},
        )
    assert state.lighting.exposure == pytest.approx(1.0)
    assert state.lighting.ambient_intensity == pytest.approx(3.5)
    assert state.lighting.directional_intensity == pytest.approx(4.0)
    assert "unknown parameter lighting.bogus" in caplog.text


def test_booleans_are_not_numbers() -> None:
    store = ParameterStore()
    state = store.update("lighting", {"exposure": True})
    assert state.lighting.exposure == pytest.approx(1.0)


def test_enum_values_are_normalized() -> None:
    store = ParameterStore()
    assert store.update("pbr", {"toneMapping": "ACES-Filmic"}).pbr.tone_mapping == "aces"
    assert store.update("pbr", {"toneMapping": "nonsense"}).pbr.tone_mapping == "aces"
    assert store.update("bloom", {"enabled": "off"}).bloom.enabled is False


def test_security_section_is_read_only() -> None:
    store = ParameterStore()
    with pytest.raises(ValueError, match="read-only"):
        store.update("security", {"level": "lockdown"})
    state = store.sync_security({"active": True, "level": "alert", "threatScore": 60})
    assert state.security.level == "alert"
    assert state.security.threat_score == pytest.approx(60.0)


def test_unknown_subsystem_and_bad_patch_types() -> None:
    store = ParameterStore()
    with pytest.raises(ValueError, match="Unknown subsystem"):
        store.update("fog", {"density": 1})
    with pytest.raises(TypeError):
        store.update("bloom", [("strength", 1.0)])


def test_store_hands_out_copies() -> None:
    store = ParameterStore()
    state = store.state
    state.bloom.strength = 2.9
    assert store.state.bloom.strength == pytest.approx(0.4)
    returned = store.update("pbr", {"metalness": 0.5})
    returned.pbr.metalness = 0.1
    assert store.state.pbr.metalness == pytest.approx(0.5)


class TestDerivedBrightness:
    def setup_method(self):
        self.store = ParameterStore()

    def test_color_background_uses_luminance(self):
        state = self.store.update("background", {"color": "#ffffff"})
        assert state.background.brightness == pytest.approx(1.0)

    def test_brightness_request_becomes_grey_color(self):
        state = self.store.update("background", {"brightness": 0.9})
        assert state.background.type == "color"
        assert state.background.color == "#e6e6e6"
        assert state.background.brightness == pytest.approx(0.9, abs=0.005)

    def test_brightness_is_ignored_when_primary_fields_are_given(self):
        state = self.store.update("background", {"color": "#000000", "brightness": 0.9})
        assert state.background.brightness == pytest.approx(0.0)

    def test_transparent_and_environment(self):
        assert self.store.update("background", {"type": "transparent"}).background.brightness == 0.0
        assert self.store.update("background", {"type": "environment"}).background.brightness == pytest.approx(0.5)

    def test_gradient_uses_mean_luminance(self):
        state = self.store.update(
            "background", {"type": "gradient", "gradient": {"colors": ["#000000", "#ffffff"]}}
        )
        assert state.background.brightness == pytest.approx(0.5)

    def test_nested_gradient_is_replaced_wholesale(self):
        self.store.update(
            "background",
            {"type": "gradient", "gradient": {"colors": ["#ff0000", "#00ff00"], "direction": "left-right"}},
        )
        state = self.store.update("background", {"gradient": {"colors": ["#0000ff"]}})
        assert state.background.gradient.colors == ["#0000ff"]
        assert state.background.gradient.direction == "top-bottom"

    def test_invalid_gradient_is_dropped(self):
        state = self.store.update("background", {"gradient": {"colors": "nope"}})
        assert state.background.gradient is None


def test_merge_applies_several_subsystems() -> None:
    store = ParameterStore()
    state = store.merge({"pbr": {"metalness": 0.9}, "lighting": {"exposure": 1.2}})
    assert state.pbr.metalness == pytest.approx(0.9)
    assert state.lighting.exposure == pytest.approx(1.2)
    with pytest.raises(ValueError):
        store.merge({"security": {"active": True}})


def test_state_roundtrip_is_deep_equal() -> None:
    store = ParameterStore()
    store.update("background", {"type": "gradient", "gradient": {"colors": ["#101010", "#808080"]}})
    store.update("pbr", {"metalness": 0.77, "toneMapping": "reinhard"})
    state = store.state
    restored = ParameterState.from_mapping(state.to_dict())
    assert restored == state
    assert restored is not state


def test_parameter_ranges() -> None:
    assert parameter_range(Subsystem.BLOOM, "strength") == (0.0, 3.0)
    assert parameter_range("lighting", "exposure") == (0.0, 5.0)
    assert clamp_parameter("pbr", "ambientMultiplier", 9.0) == pytest.approx(4.0)
    with pytest.raises(ValueError):
        parameter_range("pbr", "toneMapping")
