"""Tests for iotrend.loop (session state, key edges and the scheduler)."""

from __future__ import annotations

import pytest

from iotrend.engine import CounterSample, Rate, Snapshot
from iotrend.history import HistoryStore
from iotrend.loop import (
    Command,
    KeyEdges,
    Session,
    command_for,
    drain_keys,
    run,
    step_interval,
)

INTERVALS = [0.1, 0.2, 0.5, 1.0, 2.0]


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        assert seconds >= 0
        self.now += seconds


class FakeProbe:
    """Counters of one process grow by 1000 bytes read per sample."""

    def __init__(self, clock: FakeClock, keys: list[tuple[float, str]] | None = None):
        self.clock = clock
        self.keys = sorted(keys or [])
        self.sample_times: list[float] = []

    def sample(self) -> Snapshot:
        self.sample_times.append(self.clock.now)
        n = len(self.sample_times)
        return Snapshot.from_samples(
            self.clock.now, [CounterSample(1, "dd", 1000 * n, 0)]
        )

    def queue_depth(self) -> float:
        return 0.5

    def poll_key(self) -> str | None:
        if self.keys and self.keys[0][0] <= self.clock.now:
            return self.keys.pop(0)[1]
        return None


class SlowSampler(FakeProbe):
    """Each sample costs *cost* seconds of clock time."""

    def __init__(
        self, clock: FakeClock, keys: list[tuple[float, str]], cost: float
    ) -> None:
        super().__init__(clock, keys)
        self.cost = cost

    def sample(self) -> Snapshot:
        snap = super().sample()
        self.clock.now += self.cost
        return snap


def _session(index: int = 3, top: int = 5, style: str = "braille") -> Session:
    return Session(
        store=HistoryStore(width=4, levels=9),
        intervals=list(INTERVALS),
        interval_index=index,
        style=style,
        top=top,
    )


# ── step_interval ──────────────────────────────────────────────────────────


class TestStepInterval:
    def test_up_and_down(self) -> None:
        assert step_interval(INTERVALS, 0.5, up=True) == 1.0
        assert step_interval(INTERVALS, 0.5, up=False) == 0.2

    def test_boundaries_are_no_ops(self) -> None:
        assert step_interval(INTERVALS, 2.0, up=True) == 2.0
        assert step_interval(INTERVALS, 0.1, up=False) == 0.1

    def test_unknown_value_unchanged(self) -> None:
        assert step_interval(INTERVALS, 0.75, up=True) == 0.75

    @pytest.mark.parametrize("up", [True, False])
    def test_never_leaves_range(self, up: bool) -> None:
        current = 0.5
        for _ in range(50):
            current = step_interval(INTERVALS, current, up)
            assert INTERVALS[0] <= current <= INTERVALS[-1]
        assert current == (INTERVALS[-1] if up else INTERVALS[0])


# ── Key handling ───────────────────────────────────────────────────────────


class TestKeyEdges:
    def test_first_sighting_is_a_press(self) -> None:
        edges = KeyEdges(hold=0.5)
        assert edges.update(["+"], 0.0) == ["+"]

    def test_held_key_fires_once(self) -> None:
        edges = KeyEdges(hold=0.5)
        fired = []
        t = 0.0
        for _ in range(40):
            fired += edges.update(["+"], t)
            t += 0.03
        assert fired == ["+"]

    def test_release_then_press_fires_again(self) -> None:
        edges = KeyEdges(hold=0.5)
        assert edges.update(["+"], 0.0) == ["+"]
        assert edges.update([], 0.3) == []
        assert edges.update([], 0.6) == []
        assert edges.update(["+"], 0.9) == ["+"]

    def test_quick_press_after_auto_repeat_fires(self) -> None:
        edges = KeyEdges(hold=0.5, repeat=0.1)
        fired = []
        for t in (0.0, 0.45, 0.48, 0.51):
            fired += edges.update(["+"], t)
        assert edges.update([], 0.65) == []
        fired += edges.update(["+"], 0.8)
        assert fired == ["+", "+"]

    def test_repeat_gap_is_shorter_than_initial_delay(self) -> None:
        edges = KeyEdges(hold=0.5, repeat=0.1)
        edges.update(["+"], 0.0)
        assert edges.update([], 0.4) == []
        assert edges.update(["+"], 0.45) == []
        assert edges.update([], 0.6) == []
        assert edges.update(["+"], 0.62) == ["+"]

    def test_no_poll_in_between_keeps_key_held(self) -> None:
        # Repeats buffered while the loop was busy sampling.
        edges = KeyEdges(hold=0.5, repeat=0.1)
        edges.update(["+"], 0.0)
        edges.update(["+"], 0.4)
        assert edges.update(["+", "+", "+"], 1.2) == []

    def test_duplicates_in_one_poll_collapse(self) -> None:
        edges = KeyEdges(hold=0.5)
        assert edges.update(["-", "-", "q"], 0.0) == ["-", "q"]

    def test_independent_keys(self) -> None:
        edges = KeyEdges(hold=0.5)
        edges.update(["+"], 0.0)
        assert edges.update(["+", "s"], 0.1) == ["s"]


def test_command_for() -> None:
    assert command_for("+") is Command.SLOWER
    assert command_for("-") is Command.FASTER
    assert command_for("s") is Command.TOGGLE_STYLE
    assert command_for("q") is Command.QUIT
    assert command_for("Q") is Command.QUIT
    assert command_for("x") is None


def test_drain_keys_stops_at_none() -> None:
    clock = FakeClock()
    probe = FakeProbe(clock, [(0.0, "a"), (0.0, "b"), (5.0, "c")])
    assert drain_keys(probe) == ["a", "b"]
    assert drain_keys(probe) == []


def test_drain_keys_is_bounded() -> None:
    clock = FakeClock()
    probe = FakeProbe(clock, [(0.0, "x")] * 100)
    assert len(drain_keys(probe, limit=10)) == 10


# ── Session ────────────────────────────────────────────────────────────────


class TestSession:
    def test_first_tick_only_sets_baseline(self) -> None:
        clock = FakeClock()
        probe = FakeProbe(clock)
        session = _session()
        session.tick(probe)
        assert session.rows == []
        assert session.prev is not None
        assert session.ticks == 1
        assert session.queue_depth == 0.5

    def test_second_tick_produces_rows(self) -> None:
        clock = FakeClock()
        probe = FakeProbe(clock)
        session = _session()
        session.tick(probe)
        clock.now = 2.0
        session.tick(probe)
        ((rate, entry),) = session.rows
        assert rate.pid == 1
        assert rate.read_rate == pytest.approx(500.0)
        assert entry.read_ring.render()[-1].level == 8
        assert 1 in session.store

    def test_tick_evicts_stale_history(self) -> None:
        session = _session()
        session.store.staleness = 1.0
        session.store.update([Rate(9, "old", 10.0, 0.0)], now=0.0)
        clock = FakeClock()
        clock.now = 5.0
        session.tick(FakeProbe(clock))
        assert 9 not in session.store

    def test_quit(self) -> None:
        session = _session()
        assert session.apply(Command.QUIT) is False
        assert session.running is False

    def test_toggle_style_switches_levels(self) -> None:
        session = _session()
        session.apply(Command.TOGGLE_STYLE)
        assert session.style == "ascii"
        assert session.store.levels == 5
        session.apply(Command.TOGGLE_STYLE)
        assert session.style == "braille"
        assert session.store.levels == 9

    def test_interval_commands(self) -> None:
        session = _session(index=3)
        assert session.apply(Command.SLOWER) is True
        assert session.interval == 2.0
        assert session.apply(Command.SLOWER) is False
        assert session.interval == 2.0
        assert session.apply(Command.FASTER) is True
        assert session.interval == 1.0


# ── run ────────────────────────────────────────────────────────────────────


class TestRun:
    def _run(self, session: Session, keys: list[tuple[float, str]]):
        clock = FakeClock()
        probe = FakeProbe(clock, keys)
        frames: list[int] = []
        run(
            session,
            probe,
            lambda s: frames.append(s.ticks),
            clock=clock,
            sleep=clock.sleep,
            granularity=0.01,
            hold=0.2,
        )
        return probe, frames

    def test_ticks_on_schedule_until_quit(self) -> None:
        session = _session(index=3)
        probe, frames = self._run(session, [(2.5, "q")])
        assert probe.sample_times == pytest.approx([0.0, 1.0, 2.0])
        assert session.ticks == 2
        assert session.running is False
        assert frames == [0, 1, 2]
        ((rate, _),) = session.rows
        assert rate.read_rate == pytest.approx(1000.0)

    def test_interval_change_reschedules(self) -> None:
        session = _session(index=3)
        probe, _ = self._run(session, [(0.5, "-"), (1.05, "q")])
        assert session.interval == 0.5
        assert probe.sample_times == pytest.approx([0.0, 1.0], abs=0.02)

        session = _session(index=3)
        probe, _ = self._run(session, [(0.5, "+"), (2.6, "q")])
        assert session.interval == 2.0
        assert probe.sample_times == pytest.approx([0.0, 2.5], abs=0.02)

    def test_held_key_steps_once(self) -> None:
        session = _session(index=0)
        held = [(0.05 + 0.03 * i, "+") for i in range(20)]
        self._run(session, held + [(1.0, "q")])
        assert session.interval == 0.2

    def test_separate_presses_stop_at_boundary(self) -> None:
        session = _session(index=2)
        presses = [(0.05 + 0.3 * i, "+") for i in range(10)]
        self._run(session, presses + [(5.0, "q")])
        assert session.interval == INTERVALS[-1]

    def test_input_flood_does_not_delay_ticks(self) -> None:
        session = _session(index=3)
        noise = [(0.001 * i, "0123456789xyz"[i % 13]) for i in range(2900)]
        probe, _ = self._run(session, noise + [(2.95, "q")])
        assert probe.sample_times == pytest.approx([0.0, 1.0, 2.0])

    def test_style_toggle_rerenders(self) -> None:
        session = _session(index=3)
        _, frames = self._run(session, [(0.3, "s"), (0.4, "q")])
        assert session.style == "ascii"
        assert frames == [0, 0]

    def test_slow_sampling_still_reads_keys(self) -> None:
        clock = FakeClock()
        probe = SlowSampler(clock, [(1.0, "q")], cost=0.3)
        session = _session(index=0)
        run(
            session,
            probe,
            lambda s: None,
            clock=clock,
            sleep=clock.sleep,
            granularity=0.01,
        )
        assert session.running is False
        assert 3 <= len(probe.sample_times) < 10
        # Each tick starts a full interval after the previous one finished.
        gaps = [b - a for a, b in zip(probe.sample_times, probe.sample_times[1:])]
        assert all(g == pytest.approx(0.4, abs=0.02) for g in gaps)

    def test_slow_sampling_interval_can_be_raised(self) -> None:
        clock = FakeClock()
        probe = SlowSampler(clock, [(0.5, "+"), (1.5, "+"), (3.0, "q")], cost=0.3)
        session = _session(index=0)
        run(session, probe, lambda s: None, clock=clock, sleep=clock.sleep, hold=0.2)
        assert session.interval == 0.5
