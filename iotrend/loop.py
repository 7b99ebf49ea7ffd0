"""Control loop: session state, keyboard commands and the tick scheduler.

One cooperative flow interleaves two event sources. The sampling timer fires
every ``interval`` seconds and drives the whole sample → diff → rank →
history pipeline. Between ticks the keyboard is polled without blocking at a
fine granularity; commands only touch the interval, the render style and the
running flag.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum

from iotrend.config import KEY_HOLD_SECONDS, KEY_REPEAT_SECONDS, POLL_GRANULARITY
from iotrend.engine import Rate, Snapshot, diff_snapshots, rank_rates
from iotrend.history import HistoryEntry, HistoryStore
from iotrend.probe import Probe
from iotrend.sparkline import next_style, palette_levels

# Upper bound on keys drained per poll so a flood of input cannot starve ticks.
_MAX_KEYS_PER_POLL = 32


class Command(Enum):
    SLOWER = "slower"  # longer interval
    FASTER = "faster"  # shorter interval
    TOGGLE_STYLE = "toggle_style"
    QUIT = "quit"


KEYMAP: dict[str, Command] = {
    "+": Command.SLOWER,
    "=": Command.SLOWER,
    "-": Command.FASTER,
    "_": Command.FASTER,
    "s": Command.TOGGLE_STYLE,
    "S": Command.TOGGLE_STYLE,
    "q": Command.QUIT,
    "Q": Command.QUIT,
    "\x1b": Command.QUIT,
}


def command_for(key: str) -> Command | None:
    return KEYMAP.get(key)


def step_interval(intervals: list[float], current: float, up: bool) -> float:
    """Move one step through *intervals*; a no-op at either end.

    A *current* value that is not in the table is returned unchanged.
    """
    if current not in intervals:
        return current
    i = intervals.index(current)
    if up and i < len(intervals) - 1:
        return intervals[i + 1]
    if not up and i > 0:
        return intervals[i - 1]
    return current


# ── Key edge detection ─────────────────────────────────────────────────────


class KeyEdges:
    """Turn polled key sightings into one event per physical press.

    A terminal only reports presses, and a held key shows up as a stream of
    auto-repeats: one sighting, a pause of up to ``hold`` seconds (the
    auto-repeat delay), then sightings at most ``repeat`` seconds apart. A
    key is released once a poll misses it for longer than the gap it is
    allowed at that point; only the up → down transition is reported.
    """

    def __init__(
        self, hold: float = KEY_HOLD_SECONDS, repeat: float = KEY_REPEAT_SECONDS
    ) -> None:
        self.hold = hold
        self.repeat = repeat
        # key -> (last sighting, auto-repeat under way)
        self._down: dict[str, tuple[float, bool]] = {}

    def update(self, keys: Iterable[str], now: float) -> list[str]:
        keys = list(keys)
        for key, (seen, repeating) in list(self._down.items()):
            gap = self.repeat if repeating else self.hold
            if key not in keys and now - seen > gap:
                del self._down[key]
        pressed: list[str] = []
        for key in keys:
            if key in self._down:
                self._down[key] = (now, True)
            else:
                self._down[key] = (now, False)
                pressed.append(key)
        return pressed


def drain_keys(probe: Probe, limit: int = _MAX_KEYS_PER_POLL) -> list[str]:
    keys: list[str] = []
    for _ in range(limit):
        key = probe.poll_key()
        if key is None:
            break
        keys.append(key)
    return keys


# ── Session state ──────────────────────────────────────────────────────────


@dataclass
class Session:
    """Everything the dashboard mutates, owned by the control loop."""

    store: HistoryStore
    intervals: list[float]
    interval_index: int
    style: str
    top: int
    prev: Snapshot | None = None
    queue_depth: float = 0.0
    rows: list[tuple[Rate, HistoryEntry]] = field(
        default_factory=lambda: list[tuple[Rate, HistoryEntry]]()
    )
    ticks: int = 0
    running: bool = True

    @property
    def interval(self) -> float:
        return self.intervals[self.interval_index]

    def tick(self, probe: Probe) -> None:
        """Run one full sampling cycle."""
        snap = probe.sample()
        self.queue_depth = probe.queue_depth()
        rates = diff_snapshots(self.prev, snap)
        ranked = rank_rates(rates, self.top)
        self.rows = self.store.update(ranked, snap.timestamp)
        self.store.evict(snap.timestamp)
        self.prev = snap
        self.ticks += 1

    def apply(self, command: Command) -> bool:
        """Apply a keyboard command. Returns True if the interval changed."""
        if command is Command.QUIT:
            self.running = False
        elif command is Command.TOGGLE_STYLE:
            self.style = next_style(self.style)
            self.store.set_levels(palette_levels(self.style))
        elif command in (Command.SLOWER, Command.FASTER):
            new = step_interval(
                self.intervals, self.interval, up=command is Command.SLOWER
            )
            if new != self.interval:
                self.interval_index = self.intervals.index(new)
                return True
        return False


# ── Scheduler ──────────────────────────────────────────────────────────────


def run(
    session: Session,
    probe: Probe,
    render: Callable[[Session], None],
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
    granularity: float = POLL_GRANULARITY,
    hold: float = KEY_HOLD_SECONDS,
    repeat: float = KEY_REPEAT_SECONDS,
) -> None:
    """Drive *session* until a quit command arrives.

    The first sample only sets the baseline; rates appear one interval later.
    A due tick is always serviced before input is looked at, and waiting for
    input never sleeps past the next tick. Input is polled at least once
    between two ticks, however long sampling takes.
    """
    edges = KeyEdges(hold, repeat)
    session.prev = probe.sample()
    session.queue_depth = probe.queue_depth()
    render(session)
    next_tick = clock() + session.interval

    while session.running:
        if clock() >= next_tick:
            session.tick(probe)
            render(session)
            next_tick += session.interval
            now = clock()
            if next_tick <= now:
                # Fell behind (slow probe); resume the cadence from now.
                next_tick = now + session.interval

        now = clock()
        changed = False
        for key in edges.update(drain_keys(probe), now):
            command = command_for(key)
            if command is None:
                continue
            if session.apply(command):
                next_tick = clock() + session.interval
            changed = True
            if not session.running:
                return
        if changed:
            render(session)

        sleep(max(0.0, min(granularity, next_tick - clock())))
