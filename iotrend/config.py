"""Configuration loading for iotrend.

Loads settings from TOML config files with sensible defaults.
Search order: explicit --config path → ~/.config/iotrend/config.toml → defaults only.

The module-level constants are the scaling and scheduling policy of the
dashboard; the TOML keys override them per user.
"""

from __future__ import annotations

import sys
import tomllib
from pathlib import Path
from typing import Any

# ── Policy constants ───────────────────────────────────────────────────────

# Smallest elapsed time (seconds) used when differencing two snapshots.
MIN_ELAPSED = 0.001

# Lowest value an adaptive max may take; keeps value/max well-defined.
ADAPTIVE_FLOOR = 1.0

# Per-cycle multiplicative decay of the adaptive max when no new peak arrives.
DEFAULT_DECAY = 0.95

# Seconds an entity may go unranked before its history is discarded.
DEFAULT_STALENESS = 30.0

# Number of cells kept (and drawn) per sparkline.
HISTORY_WIDTH = 30

# Queue depth that fills the disk pressure bar.
QUEUE_SATURATION = 2.0

# Top-K bounds.
DEFAULT_TOP = 5
MAX_TOP = 20

# Key polling granularity, independent of the sampling interval.
POLL_GRANULARITY = 0.01

# Longest pause before a held key starts auto-repeating.
KEY_HOLD_SECONDS = 0.6

# Longest gap between two auto-repeats of a held key.
KEY_REPEAT_SECONDS = 0.1

# Sampling intervals reachable with +/-, in milliseconds, ascending.
ALLOWED_INTERVALS_MS: tuple[int, ...] = (
    100, 200, 300, 400, 500, 600, 700, 800, 900,
    1000, 2000, 5000, 10000,
)

DEFAULT_CONFIG: dict[str, Any] = {
    "top": DEFAULT_TOP,
    "style": "braille",
    "interval": 1.0,
    "history_width": HISTORY_WIDTH,
    "decay_factor": DEFAULT_DECAY,
    "staleness_seconds": DEFAULT_STALENESS,
    "queue_saturation": QUEUE_SATURATION,
    "key_hold_seconds": KEY_HOLD_SECONDS,
    "key_repeat_seconds": KEY_REPEAT_SECONDS,
    "poll_granularity": POLL_GRANULARITY,
    "intervals": list(ALLOWED_INTERVALS_MS),
}

_DEFAULT_PATH = Path.home() / ".config" / "iotrend" / "config.toml"


def _deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """Merge overlay into base. Nested dicts are merged at the first level only."""
    merged = dict(base)
    for key, value in overlay.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = value
    return merged


def load_config(path: Path | None = None) -> dict[str, Any]:
    """Load configuration, merging user TOML over defaults.

    Args:
        path: Explicit config file path (from --config). If None, tries the
              default location ~/.config/iotrend/config.toml.

    Returns:
        Merged configuration dict.

    Raises:
        SystemExit: If an explicit path doesn't exist or can't be parsed.
    """
    if path is not None:
        if not path.is_file():
            print(f"iotrend: config file not found: {path}", file=sys.stderr)
            raise SystemExit(1)
        try:
            user_config = tomllib.loads(path.read_text(encoding="utf-8"))
        except tomllib.TOMLDecodeError as e:
            print(f"iotrend: invalid TOML in {path}: {e}", file=sys.stderr)
            raise SystemExit(1) from e
        return _deep_merge(DEFAULT_CONFIG, user_config)

    if _DEFAULT_PATH.is_file():
        try:
            user_config = tomllib.loads(_DEFAULT_PATH.read_text(encoding="utf-8"))
            return _deep_merge(DEFAULT_CONFIG, user_config)
        except tomllib.TOMLDecodeError:
            print(
                f"iotrend: warning: ignoring invalid TOML in {_DEFAULT_PATH}",
                file=sys.stderr,
            )

    return dict(DEFAULT_CONFIG)


def dump_default_config() -> str:
    """Return the default configuration as a TOML string."""
    intervals = ", ".join(str(ms) for ms in DEFAULT_CONFIG["intervals"])
    lines = [
        "# iotrend configuration",
        "# Place this file at ~/.config/iotrend/config.toml",
        "",
        f"top = {DEFAULT_CONFIG['top']}",
        f'style = "{DEFAULT_CONFIG["style"]}"',
        f"interval = {DEFAULT_CONFIG['interval']}",
        f"history_width = {DEFAULT_CONFIG['history_width']}",
        f"decay_factor = {DEFAULT_CONFIG['decay_factor']}",
        f"staleness_seconds = {DEFAULT_CONFIG['staleness_seconds']}",
        f"queue_saturation = {DEFAULT_CONFIG['queue_saturation']}",
        f"key_hold_seconds = {DEFAULT_CONFIG['key_hold_seconds']}",
        f"key_repeat_seconds = {DEFAULT_CONFIG['key_repeat_seconds']}",
        f"poll_granularity = {DEFAULT_CONFIG['poll_granularity']}",
        "",
        "# Allowed sampling intervals in milliseconds, ascending",
        f"intervals = [{intervals}]",
    ]
    return "\n".join(lines) + "\n"


# ── Validation helpers ─────────────────────────────────────────────────────


def clamp_top(n: int) -> int:
    """Clamp a requested top-K count into 1..MAX_TOP."""
    return max(1, min(int(n), MAX_TOP))


def interval_table(config: dict[str, Any]) -> list[float]:
    """Return the configured interval table in seconds, sorted and de-duplicated."""
    raw = config.get("intervals") or ALLOWED_INTERVALS_MS
    table = sorted({int(ms) for ms in raw if int(ms) > 0})
    if not table:
        table = list(ALLOWED_INTERVALS_MS)
    return [ms / 1000.0 for ms in table]


def snap_interval(seconds: float, intervals: list[float]) -> int:
    """Index of the allowed interval closest to *seconds* (ties pick the shorter)."""
    return min(range(len(intervals)), key=lambda i: (abs(intervals[i] - seconds), i))
