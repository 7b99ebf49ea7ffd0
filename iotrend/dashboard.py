"""Interactive terminal dashboard: per-process disk I/O trends for iotrend.

Shows the busiest processes by disk throughput, each with read and write
sparklines scaled to that process's own recent peak, plus a disk pressure bar
driven by the average storage queue length. Runs in curses.

Usage:
    uv run iotrend
    uv run iotrend --top 10 --style ascii --config path/to/config.toml

Keys: + / - change the sampling interval, s toggles the glyph style, q quits.
"""

from __future__ import annotations

import argparse
import curses
import sys
import time
from pathlib import Path
from typing import Any

from iotrend.config import (
    DEFAULT_CONFIG,
    MAX_TOP,
    clamp_top,
    dump_default_config,
    interval_table,
    load_config,
    snap_interval,
)
from iotrend.history import HistoryStore
from iotrend.loop import Session, run
from iotrend.probe import SystemProbe
from iotrend.sparkline import STYLES, Cell, Intensity, glyph, palette_levels

__version__ = "1.0.2"

# ── Constants ──────────────────────────────────────────────────────────────

BAR_FILL = "█"
BAR_EMPTY = "░"
NAME_WIDTH = 16
PID_WIDTH = 7

# Curses colour-pair IDs
C_NORMAL = 1
C_WARNING = 2
C_CRITICAL = 3
C_TITLE = 4
C_DIM = 5
C_BLUE = 6
C_ORANGE = 7


# ── Colour helpers ─────────────────────────────────────────────────────────


def _init_colors() -> None:
    curses.start_color()
    curses.use_default_colors()
    curses.init_pair(C_NORMAL, curses.COLOR_GREEN, -1)
    curses.init_pair(C_WARNING, curses.COLOR_YELLOW, -1)
    curses.init_pair(C_CRITICAL, curses.COLOR_RED, -1)
    curses.init_pair(C_TITLE, curses.COLOR_CYAN, -1)
    curses.init_pair(C_DIM, curses.COLOR_WHITE, -1)
    curses.init_pair(C_BLUE, curses.COLOR_BLUE, -1)
    # 208 is orange in the xterm 256-colour cube
    orange = 208 if curses.COLORS >= 256 else curses.COLOR_MAGENTA
    curses.init_pair(C_ORANGE, orange, -1)


INTENSITY_COLORS: dict[Intensity, int] = {
    Intensity.IDLE: C_DIM,
    Intensity.LOW: C_NORMAL,
    Intensity.MID: C_WARNING,
    Intensity.HIGH: C_ORANGE,
    Intensity.HOT: C_CRITICAL,
}


def _severity_color(value: float, warn: float, crit: float) -> int:
    if value >= crit:
        return C_CRITICAL
    if value >= warn:
        return C_WARNING
    return C_NORMAL


# ── Formatting helpers ─────────────────────────────────────────────────────


def fmt_rate(bps: float) -> str:
    """Human-readable transfer rate."""
    if bps < 1024:
        return f"{bps:.0f} B/s"
    if bps < 1024 * 1024:
        return f"{bps / 1024:.1f} KB/s"
    if bps < 1024**3:
        return f"{bps / 1024 ** 2:.1f} MB/s"
    return f"{bps / 1024 ** 3:.1f} GB/s"


def fmt_interval(seconds: float) -> str:
    """``100ms`` below one second, whole seconds otherwise."""
    if seconds < 1.0:
        return f"{round(seconds * 1000)}ms"
    return f"{seconds:.0f}s"


def truncate_name(name: str, width: int = NAME_WIDTH) -> str:
    if len(name) <= width:
        return name
    return name[: width - 1] + "…"


# ── Curses drawing primitives ──────────────────────────────────────────────


def _safe(win: curses.window, *args: Any) -> None:
    """addstr wrapper that swallows out-of-bounds errors."""
    try:
        win.addstr(*args)
    except curses.error:
        pass


def _draw_bar(
    win: curses.window,
    y: int,
    x: int,
    width: int,
    pct: float,
    label: str = "",
    color: int = C_NORMAL,
    suffix: str | None = None,
) -> None:
    """Render ``label ████░░░░ suffix`` on one line."""
    max_y, max_x = win.getmaxyx()
    if y >= max_y - 1 or x >= max_x - 1:
        return

    cx = x
    if label:
        _safe(win, y, cx, f"{label} ", curses.color_pair(C_BLUE) | curses.A_BOLD)
        cx += len(label) + 1

    if suffix is None:
        suffix = f" {pct:5.1f}%"

    bar_w = min(width - (cx - x) - len(suffix), max_x - cx - len(suffix) - 1)
    if bar_w < 3:
        return

    filled = int(bar_w * min(max(pct, 0.0), 100.0) / 100.0)
    empty = bar_w - filled

    _safe(win, y, cx, BAR_FILL * filled, curses.color_pair(color) | curses.A_BOLD)
    _safe(win, BAR_EMPTY * empty, curses.color_pair(C_DIM))
    _safe(win, suffix, curses.color_pair(color) | curses.A_BOLD)


def _draw_sparkline(
    win: curses.window,
    y: int,
    x: int,
    width: int,
    cells: list[Cell],
    style: str,
) -> None:
    """Render the most recent *width* cells, each coloured by intensity."""
    max_y, max_x = win.getmaxyx()
    if y >= max_y or x >= max_x - 1:
        return
    w = min(width, max_x - x - 1, len(cells))
    if w < 1:
        return
    for i, cell in enumerate(cells[-w:]):
        attr = curses.color_pair(INTENSITY_COLORS[cell.intensity])
        if cell.intensity >= Intensity.HIGH:
            attr |= curses.A_BOLD
        _safe(win, y, x + i, glyph(style, cell.level), attr)


# ── Panels ─────────────────────────────────────────────────────────────────


def _draw_header(win: curses.window, w: int) -> None:
    ts = time.strftime("%H:%M:%S")
    attr = curses.color_pair(C_TITLE) | curses.A_REVERSE
    _safe(win, 0, 0, " " * (w - 1), attr)
    _safe(win, 0, 1, f"iotrend {__version__}", attr | curses.A_BOLD)
    hint = "q: quit"
    _safe(win, 0, max(0, w - len(hint) - 2), hint, attr)
    _safe(win, 0, (w - len(ts)) // 2, ts, attr)


def draw_pressure(
    win: curses.window, y: int, w: int, depth: float, saturation: float
) -> None:
    pct = depth / saturation * 100.0 if saturation > 0 else 0.0
    color = _severity_color(pct, 50.0, 100.0)
    suffix = f" {depth:.2f}/{saturation:.1f}"
    _draw_bar(win, y, 1, min(w - 2, 60), pct, "Disk Pressure", color, suffix)


def draw_table(win: curses.window, y: int, session: Session) -> int:
    """Draw the process table starting at row *y*; returns the next free row."""
    max_y, max_x = win.getmaxyx()
    width = session.store.width
    sep = " │ "
    hdr = (
        f"{'PID':>{PID_WIDTH}s}{sep}{'Name':<{NAME_WIDTH}s}{sep}"
        f"{'Read':<{width}s}{sep}{'Write':<{width}s}{sep}Rate (r / w)"
    )
    _safe(win, y, 1, hdr[: max_x - 2], curses.color_pair(C_TITLE) | curses.A_BOLD)
    y += 1
    _safe(win, y, 1, "─" * min(max_x - 2, len(hdr)), curses.color_pair(C_DIM))
    y += 1

    if not session.rows:
        msg = "waiting for samples…" if session.ticks == 0 else "no disk activity"
        _safe(win, y, 2, msg, curses.color_pair(C_DIM))
        return y + 1

    read_x = 1 + PID_WIDTH + len(sep) + NAME_WIDTH + len(sep)
    write_x = read_x + width + len(sep)
    rate_x = write_x + width + len(sep)
    for rate, entry in session.rows:
        if y >= max_y - 2:
            break
        lead = f"{rate.pid:>{PID_WIDTH}d}{sep}{truncate_name(rate.name):<{NAME_WIDTH}s}{sep}"
        _safe(win, y, 1, lead[: max_x - 2], curses.color_pair(C_DIM))
        _draw_sparkline(win, y, read_x, width, entry.read_ring.render(), session.style)
        _safe(win, y, read_x + width, sep, curses.color_pair(C_DIM))
        _draw_sparkline(
            win, y, write_x, width, entry.write_ring.render(), session.style
        )
        _safe(win, y, write_x + width, sep, curses.color_pair(C_DIM))
        rates = f"{fmt_rate(rate.read_rate)} / {fmt_rate(rate.write_rate)}"
        _safe(win, y, rate_x, rates[: max(0, max_x - rate_x - 1)])
        y += 1
    return y


def _draw_footer(win: curses.window, y: int, session: Session) -> None:
    line = (
        f"Interval: {fmt_interval(session.interval)}  |  style: {session.style}"
        "  |  +/- to adjust, s to toggle style, q to quit"
    )
    _safe(win, y, 1, line, curses.color_pair(C_BLUE))


def render(stdscr: curses.window, session: Session, config: dict[str, Any]) -> None:
    max_y, max_x = stdscr.getmaxyx()
    stdscr.erase()
    if max_y < 8 or max_x < 40:
        _safe(stdscr, 0, 0, "Terminal too small (need 40x8+)")
        stdscr.refresh()
        return

    _draw_header(stdscr, max_x)
    saturation = float(config.get("queue_saturation", DEFAULT_CONFIG["queue_saturation"]))
    draw_pressure(stdscr, 2, max_x, session.queue_depth, saturation)
    row = draw_table(stdscr, 4, session)
    _draw_footer(stdscr, min(row + 1, max_y - 1), session)
    stdscr.refresh()


# ── Keyboard-aware probe ───────────────────────────────────────────────────


class CursesProbe(SystemProbe):
    """SystemProbe that also reads keys from a nodelay curses window."""

    def __init__(self, stdscr: curses.window) -> None:
        super().__init__()
        self._stdscr = stdscr

    def poll_key(self) -> str | None:
        while True:
            key = self._stdscr.getch()
            if key == -1:
                return None
            if key == curses.KEY_RESIZE:
                self._stdscr.clear()
                continue
            if 0 <= key < 256:
                return chr(key)


# ── Session setup ──────────────────────────────────────────────────────────


def build_session(
    config: dict[str, Any],
    top: int | None = None,
    style: str | None = None,
    interval: float | None = None,
) -> Session:
    """Create the session state from config, with CLI values taking priority."""
    style = style or str(config.get("style", DEFAULT_CONFIG["style"]))
    if style not in STYLES:
        style = str(DEFAULT_CONFIG["style"])
    intervals = interval_table(config)
    start = interval if interval is not None else float(config.get("interval", 1.0))
    store = HistoryStore(
        width=max(1, int(config.get("history_width", DEFAULT_CONFIG["history_width"]))),
        levels=palette_levels(style),
        decay=float(config.get("decay_factor", DEFAULT_CONFIG["decay_factor"])),
        staleness=float(
            config.get("staleness_seconds", DEFAULT_CONFIG["staleness_seconds"])
        ),
    )
    return Session(
        store=store,
        intervals=intervals,
        interval_index=snap_interval(start, intervals),
        style=style,
        top=clamp_top(top if top is not None else config.get("top", DEFAULT_CONFIG["top"])),
    )


# ── Main loop ──────────────────────────────────────────────────────────────


def _loop_timing(config: dict[str, Any]) -> dict[str, float]:
    """Keyword arguments for ``run`` taken from the config."""
    return {
        "granularity": float(
            config.get("poll_granularity", DEFAULT_CONFIG["poll_granularity"])
        ),
        "hold": float(config.get("key_hold_seconds", DEFAULT_CONFIG["key_hold_seconds"])),
        "repeat": float(
            config.get("key_repeat_seconds", DEFAULT_CONFIG["key_repeat_seconds"])
        ),
    }


def _dashboard_loop(
    stdscr: curses.window,
    session: Session,
    config: dict[str, Any],
    timing: dict[str, float],
) -> None:
    _init_colors()
    curses.curs_set(0)
    stdscr.nodelay(True)

    probe = CursesProbe(stdscr)
    run(session, probe, lambda s: render(stdscr, s, config), **timing)


# ── CLI entry point ────────────────────────────────────────────────────────


def _top_arg(value: str) -> int:
    try:
        n = int(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"not a number: {value!r}") from e
    if n < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {n}")
    return clamp_top(n)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="iotrend",
        description="Live per-process disk I/O dashboard with trend sparklines.",
    )
    parser.add_argument(
        "--top",
        type=_top_arg,
        default=None,
        metavar="N",
        help=f"Show the top N processes (1-{MAX_TOP}, default: {DEFAULT_CONFIG['top']})",
    )
    parser.add_argument(
        "--style",
        choices=STYLES,
        default=None,
        help="Sparkline glyphs (default: braille)",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        metavar="SECONDS",
        help="Initial sampling interval, snapped to the allowed steps (default: 1)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        metavar="PATH",
        help="Path to TOML config file",
    )
    parser.add_argument(
        "--print-config",
        action="store_true",
        help="Print the default configuration as TOML and exit",
    )
    parser.add_argument(
        "--info",
        "-i",
        action="store_true",
        help="Show project information and license",
    )
    parser.add_argument(
        "--version",
        "-v",
        action="version",
        version=f"iotrend version {__version__}",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    if args.print_config:
        print(dump_default_config(), end="")
        return
    if args.info:
        print(f"iotrend {__version__}: per-process disk I/O trends in the terminal")
        print("License: MIT")
        return

    config = load_config(args.config)
    try:
        session = build_session(config, args.top, args.style, args.interval)
        timing = _loop_timing(config)
        config["queue_saturation"] = float(
            config.get("queue_saturation", DEFAULT_CONFIG["queue_saturation"])
        )
    except (ValueError, TypeError) as e:
        print(f"iotrend: invalid config: {e}", file=sys.stderr)
        raise SystemExit(1) from e

    if not (sys.stdin.isatty() and sys.stdout.isatty()):
        print("iotrend: stdin and stdout must be a terminal", file=sys.stderr)
        raise SystemExit(1)
    try:
        curses.wrapper(_dashboard_loop, session, config, timing)
    except KeyboardInterrupt:
        pass
    except curses.error as e:
        print(f"iotrend: cannot initialise terminal: {e}", file=sys.stderr)
        raise SystemExit(1) from e


if __name__ == "__main__":
    main()
