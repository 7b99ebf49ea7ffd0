"""Snapshot differencing and ranking of per-process I/O rates."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from iotrend.config import MIN_ELAPSED

# ── Data types ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class CounterSample:
    """Cumulative I/O counters of one process at one instant."""

    pid: int
    name: str
    read_bytes: int
    write_bytes: int


@dataclass(frozen=True)
class Snapshot:
    """All counter samples taken during one sampling tick."""

    timestamp: float
    samples: Mapping[int, CounterSample] = field(
        default_factory=lambda: dict[int, CounterSample]()
    )

    @classmethod
    def from_samples(
        cls, timestamp: float, samples: Iterable[CounterSample]
    ) -> Snapshot:
        return cls(timestamp=timestamp, samples={s.pid: s for s in samples})

    def __len__(self) -> int:
        return len(self.samples)


@dataclass(frozen=True)
class Rate:
    """Throughput of one process over one tick, in bytes per second."""

    pid: int
    name: str
    read_rate: float
    write_rate: float

    @property
    def total_rate(self) -> float:
        return self.read_rate + self.write_rate


# ── Differencer ────────────────────────────────────────────────────────────


def diff_snapshots(
    old: Snapshot | None,
    new: Snapshot,
    min_elapsed: float = MIN_ELAPSED,
) -> list[Rate]:
    """Convert two snapshots into per-process rates.

    Only processes present in both snapshots get a rate. A counter that went
    backwards (pid reused by a new process, or wrapped) contributes zero for
    this tick; the caller keeps *new* as the next baseline. Processes with no
    I/O at all over the tick are left out. The result is unordered.
    """
    if old is None or not old.samples:
        return []

    elapsed = max(new.timestamp - old.timestamp, min_elapsed)
    rates: list[Rate] = []
    for pid, curr in new.samples.items():
        prev = old.samples.get(pid)
        if prev is None:
            continue
        read_delta = max(0, curr.read_bytes - prev.read_bytes)
        write_delta = max(0, curr.write_bytes - prev.write_bytes)
        if read_delta + write_delta == 0:
            continue
        rates.append(
            Rate(
                pid=pid,
                name=curr.name,
                read_rate=read_delta / elapsed,
                write_rate=write_delta / elapsed,
            )
        )
    return rates


# ── Ranker ─────────────────────────────────────────────────────────────────


def rank_rates(rates: Iterable[Rate], k: int) -> list[Rate]:
    """Top *k* rates by total throughput; equal totals are ordered by pid."""
    if k < 1:
        raise ValueError(f"k must be at least 1, got {k}")
    return sorted(rates, key=lambda r: (-r.total_rate, r.pid))[:k]
