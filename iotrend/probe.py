"""Read-only system probe: per-process I/O counters and disk queue depth.

Process counters come from psutil. Queue depth is derived from
``/proc/diskstats`` directly (no sleeps): the weighted time spent doing I/O
grows by the average number of requests in flight per elapsed millisecond.
"""

from __future__ import annotations

import os
import time
from collections.abc import Callable
from typing import Protocol

import psutil

from iotrend.engine import CounterSample, Snapshot

_DISKSTATS = "/proc/diskstats"
_SYS_BLOCK = "/sys/block"
# Virtual devices that would double count or never queue.
_SKIP_PREFIXES = ("loop", "ram", "zram", "dm-", "md", "sr")


class Probe(Protocol):
    """What the control loop needs from the outside world."""

    def sample(self) -> Snapshot: ...

    def queue_depth(self) -> float: ...

    def poll_key(self) -> str | None: ...


# ── Process counters ───────────────────────────────────────────────────────


def sample_processes(clock: Callable[[], float] = time.monotonic) -> Snapshot:
    """One pass over the process table.

    Processes that exit mid-scan, deny access or expose no counters are left
    out of the snapshot.
    """
    samples: list[CounterSample] = []
    for proc in psutil.process_iter(["pid", "name", "io_counters"]):
        try:
            info = proc.info
            io = info.get("io_counters")
            if io is None:
                continue
            samples.append(
                CounterSample(
                    pid=int(info["pid"]),
                    name=info.get("name") or "?",
                    read_bytes=int(io.read_bytes),
                    write_bytes=int(io.write_bytes),
                )
            )
        except (psutil.NoSuchProcess, psutil.AccessDenied, AttributeError):
            continue
    return Snapshot.from_samples(clock(), samples)


# ── Disk queue depth ───────────────────────────────────────────────────────


def _whole_disks() -> set[str] | None:
    """Names of block devices that are whole disks, or None if unknown."""
    try:
        names = os.listdir(_SYS_BLOCK)
    except OSError:
        return None
    return {n for n in names if not n.startswith(_SKIP_PREFIXES)}


def read_weighted_io_ms(
    path: str = _DISKSTATS, disks: set[str] | None = None
) -> int:
    """Sum the weighted I/O milliseconds over whole disks in *path*."""
    total = 0
    with open(path) as f:
        for line in f:
            parts = line.split()
            if len(parts) < 14:
                continue
            name = parts[2]
            if disks is not None:
                if name not in disks:
                    continue
            elif name.startswith(_SKIP_PREFIXES):
                continue
            total += int(parts[13])
    return total


class DiskQueue:
    """Average disk queue length between consecutive reads."""

    def __init__(
        self,
        path: str = _DISKSTATS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._path = path
        self._clock = clock
        self._disks = _whole_disks()
        self._prev: tuple[float, int] | None = None

    def read(self) -> float:
        """Queue depth since the previous read; 0.0 when it cannot be known."""
        now = self._clock()
        try:
            weighted = read_weighted_io_ms(self._path, self._disks)
        except (OSError, ValueError, IndexError):
            self._prev = None
            return 0.0
        prev = self._prev
        self._prev = (now, weighted)
        if prev is None or now <= prev[0] or weighted < prev[1]:
            return 0.0
        return (weighted - prev[1]) / ((now - prev[0]) * 1000.0)


class SystemProbe:
    """Probe backed by psutil and /proc. Has no keyboard of its own."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._queue = DiskQueue(clock=clock)

    def sample(self) -> Snapshot:
        return sample_processes(self._clock)

    def queue_depth(self) -> float:
        return self._queue.read()

    def poll_key(self) -> str | None:
        return None
