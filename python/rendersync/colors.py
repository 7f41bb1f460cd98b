"""Color conversion utilities backing derived background fields."""

from __future__ import annotations

import re
from typing import Iterable, Sequence, Tuple

import numpy as np

_HEX_PATTERN = re.compile(r"^#?(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")

# Perceived luminance weights (ITU-R BT.601)
_LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114], dtype=np.float64)


def is_hex_color(value: object) -> bool:
    """Return True when ``value`` is a '#rgb' or '#rrggbb' string."""
    return isinstance(value, str) and _HEX_PATTERN.match(value.strip()) is not None


def normalize_hex(hex_color: str) -> str:
    """Normalize a hex color to lowercase '#rrggbb'.

    Raises:
        ValueError: if the string is not a 3- or 6-digit hex color
    """
    if not is_hex_color(hex_color):
        raise ValueError(f"Invalid hex color: {hex_color!r}")
    digits = hex_color.strip().lstrip('#').lower()
    if len(digits) == 3:
        digits = "".join(c * 2 for c in digits)
    return f"#{digits}"


def hex_to_rgb(hex_color: str) -> Tuple[int, int, int]:
    """Convert hex color to RGB tuple (0-255 range).

    Args:
        hex_color: Color in hex format, e.g. '#FF5500' or 'FF5500'

    Returns:
        Tuple of (R, G, B) values in 0-255 range
    """
    digits = normalize_hex(hex_color).lstrip('#')
    return (
        int(digits[0:2], 16),
        int(digits[2:4], 16),
        int(digits[4:6], 16),
    )


def rgb_to_hex(rgb: Sequence[int]) -> str:
    """Convert an (R, G, B) 0-255 triple to '#rrggbb', clamping each channel."""
    r, g, b = (int(min(255, max(0, round(c)))) for c in rgb)
    return f"#{r:02x}{g:02x}{b:02x}"


def luminance(hex_color: str) -> float:
    """Perceived luminance of a hex color in [0, 1]."""
    rgb = np.asarray(hex_to_rgb(hex_color), dtype=np.float64) / 255.0
    return float(rgb @ _LUMA_WEIGHTS)


def mean_luminance(colors: Iterable[str]) -> float:
    """Average perceived luminance of several hex colors (0.0 for none)."""
    values = [hex_to_rgb(c) for c in colors]
    if not values:
        return 0.0
    rgb = np.asarray(values, dtype=np.float64) / 255.0
    return float(np.mean(rgb @ _LUMA_WEIGHTS))


def grey_for_luminance(value: float) -> str:
    """Return the grey '#vvvvvv' whose perceived luminance is closest to ``value``."""
    level = float(np.clip(value, 0.0, 1.0)) * 255.0
    return rgb_to_hex((level, level, level))
