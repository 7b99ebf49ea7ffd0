"""Per-process trend history: ring buffers, adaptive scaling and eviction."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from iotrend.config import ADAPTIVE_FLOOR, DEFAULT_DECAY, DEFAULT_STALENESS
from iotrend.engine import Rate
from iotrend.sparkline import Cell, make_cell, rescale_level

# ── Ring buffer ────────────────────────────────────────────────────────────


class Ring:
    """Fixed-capacity circular buffer of cells.

    Always holds exactly ``capacity`` cells; a push overwrites the oldest.
    """

    __slots__ = ("_buf", "_head")

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError(f"ring capacity must be at least 1, got {capacity}")
        self._buf: list[Cell] = [Cell()] * capacity
        self._head = 0

    def __len__(self) -> int:
        return len(self._buf)

    def push(self, cell: Cell) -> None:
        self._buf[self._head] = cell
        self._head = (self._head + 1) % len(self._buf)

    def render(self) -> list[Cell]:
        """Cells oldest to newest."""
        return self._buf[self._head :] + self._buf[: self._head]

    def remap(self, old_levels: int, new_levels: int) -> None:
        self._buf = [
            Cell(rescale_level(c.level, old_levels, new_levels), c.intensity)
            for c in self._buf
        ]


# ── History store ──────────────────────────────────────────────────────────


@dataclass
class HistoryEntry:
    read_ring: Ring
    write_ring: Ring
    adaptive_max: float
    last_seen: float


class HistoryStore:
    """Trend state for every process ranked recently enough to matter."""

    def __init__(
        self,
        width: int,
        levels: int,
        decay: float = DEFAULT_DECAY,
        staleness: float = DEFAULT_STALENESS,
        floor: float = ADAPTIVE_FLOOR,
    ) -> None:
        if not 0.0 < decay <= 1.0:
            raise ValueError(f"decay must be in (0, 1], got {decay}")
        if floor <= 0:
            raise ValueError(f"floor must be positive, got {floor}")
        self.width = width
        self.levels = levels
        self.decay = decay
        self.staleness = staleness
        self.floor = floor
        self._entries: dict[int, HistoryEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, pid: object) -> bool:
        return pid in self._entries

    def get(self, pid: int) -> HistoryEntry | None:
        return self._entries.get(pid)

    def _new_entry(self, now: float) -> HistoryEntry:
        return HistoryEntry(
            read_ring=Ring(self.width),
            write_ring=Ring(self.width),
            adaptive_max=self.floor,
            last_seen=now,
        )

    def _rescale(self, entry: HistoryEntry, total: float) -> None:
        # Rise at once to a new peak, otherwise shrink back slowly.
        if total > entry.adaptive_max:
            entry.adaptive_max = total
        else:
            entry.adaptive_max = max(entry.adaptive_max * self.decay, self.floor)

    def update(
        self, ranked: Iterable[Rate], now: float
    ) -> list[tuple[Rate, HistoryEntry]]:
        """Record one tick of ranked rates; returns them with their entries."""
        rows: list[tuple[Rate, HistoryEntry]] = []
        for rate in ranked:
            entry = self._entries.get(rate.pid)
            if entry is None:
                entry = self._new_entry(now)
                self._entries[rate.pid] = entry
            entry.last_seen = now
            self._rescale(entry, rate.total_rate)
            entry.read_ring.push(
                make_cell(rate.read_rate, entry.adaptive_max, self.levels)
            )
            entry.write_ring.push(
                make_cell(rate.write_rate, entry.adaptive_max, self.levels)
            )
            rows.append((rate, entry))
        return rows

    def evict(self, now: float) -> list[int]:
        """Drop entries unseen for longer than the staleness window."""
        stale = [
            pid
            for pid, entry in self._entries.items()
            if now - entry.last_seen > self.staleness
        ]
        for pid in stale:
            del self._entries[pid]
        return stale

    def set_levels(self, levels: int) -> None:
        """Switch quantization granularity, rescaling the recorded cells."""
        if levels == self.levels:
            return
        for entry in self._entries.values():
            entry.read_ring.remap(self.levels, levels)
            entry.write_ring.remap(self.levels, levels)
        self.levels = levels
