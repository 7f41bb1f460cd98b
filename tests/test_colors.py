from __future__ import annotations

import pytest

from rendersync.colors import (
    grey_for_luminance,
    hex_to_rgb,
    is_hex_color,
    luminance,
    mean_luminance,
    normalize_hex,
    rgb_to_hex,
)


@pytest.mark.parametrize(
    "value, expected",
    [("#ABC", "#aabbcc"), ("fff", "#ffffff"), ("#1A1a1A", "#1a1a1a"), (" #00ff00 ", "#00ff00")],
)
def test_normalize_hex(value: str, expected: str) -> None:
    assert normalize_hex(value) == expected


@pytest.mark.parametrize("value", ["red", "#12345", "#ggg", "", None, 0x1A1A1A])
def test_invalid_hex_is_rejected(value) -> None:
    assert not is_hex_color(value)
    with pytest.raises(ValueError):
        normalize_hex(value)


def test_hex_rgb_conversions() -> None:
    assert hex_to_rgb("#1a1a1a") == (26, 26, 26)
    assert hex_to_rgb("#ff8800") == (255, 136, 0)
    assert rgb_to_hex((300, -5, 16)) == "#ff0010"


def test_luminance_uses_perceptual_weights() -> None:
    assert luminance("#ffffff") == pytest.approx(1.0)
    assert luminance("#000000") == pytest.approx(0.0)
    assert luminance("#ff0000") == pytest.approx(0.299)
    assert luminance("#00ff00") == pytest.approx(0.587)
    assert luminance("#0000ff") == pytest.approx(0.114)


def test_mean_luminance() -> None:
    assert mean_luminance([]) == 0.0
    assert mean_luminance(["#000000", "#ffffff"]) == pytest.approx(0.5)


@pytest.mark.parametrize("target", [0.0, 0.25, 0.5, 0.9, 1.0])
def test_grey_for_luminance_matches_target(target: float) -> None:
    assert luminance(grey_for_luminance(target)) == pytest.approx(target, abs=0.003)


def test_grey_for_luminance_clamps() -> None:
    assert grey_for_luminance(-1.0) == "#000000"
    assert grey_for_luminance(7.0) == "#ffffff"
