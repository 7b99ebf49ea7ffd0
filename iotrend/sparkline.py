"""Sparkline quantization: levels, intensity classes and glyph palettes."""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import IntEnum

# ── Palettes ───────────────────────────────────────────────────────────────

# Fine ramp: braille dots filling bottom-up, 9 levels.
BRAILLE = "⠀⠁⠃⠇⠗⠷⡷⣷⣿"
# Coarse ramp for terminals without braille glyphs, 5 levels.
ASCII = " .:|#"

PALETTES: dict[str, str] = {
    "braille": BRAILLE,
    "ascii": ASCII,
}
STYLES: tuple[str, ...] = tuple(PALETTES)


class Intensity(IntEnum):
    """Colour class of a sparkline cell, ascending."""

    IDLE = 0
    LOW = 1
    MID = 2
    HIGH = 3
    HOT = 4


# Checked in order; the first threshold the ratio strictly exceeds wins.
INTENSITY_THRESHOLDS: tuple[tuple[float, Intensity], ...] = (
    (1.0, Intensity.HOT),
    (0.75, Intensity.HIGH),
    (0.5, Intensity.MID),
    (0.25, Intensity.LOW),
)


@dataclass(frozen=True)
class Cell:
    level: int = 0
    intensity: Intensity = Intensity.IDLE


# ── Quantizer ──────────────────────────────────────────────────────────────


def quantize_level(value: float, max_value: float, levels: int) -> int:
    """Map *value* against *max_value* onto an integer level in [0, levels-1]."""
    if max_value <= 0 or levels < 2:
        return 0
    level = math.floor(value / max_value * (levels - 1) + 0.5)
    return max(0, min(level, levels - 1))


def intensity_for(ratio: float) -> Intensity:
    for threshold, intensity in INTENSITY_THRESHOLDS:
        if ratio > threshold:
            return intensity
    return Intensity.IDLE


def make_cell(value: float, max_value: float, levels: int) -> Cell:
    ratio = value / max_value if max_value > 0 else 0.0
    return Cell(quantize_level(value, max_value, levels), intensity_for(ratio))


def rescale_level(level: int, old_levels: int, new_levels: int) -> int:
    """Carry a level quantized for *old_levels* over to *new_levels*."""
    if old_levels < 2:
        return 0
    return quantize_level(level, old_levels - 1, new_levels)


# ── Palette lookups ────────────────────────────────────────────────────────


def palette_levels(style: str) -> int:
    return len(PALETTES[style])


def glyph(style: str, level: int) -> str:
    ramp = PALETTES[style]
    return ramp[max(0, min(level, len(ramp) - 1))]


def next_style(style: str) -> str:
    """The style after *style*, wrapping around."""
    idx = STYLES.index(style) if style in STYLES else -1
    return STYLES[(idx + 1) % len(STYLES)]
