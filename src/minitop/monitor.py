"""Sampling and derivation engine for minitop."""

import logging
from dataclasses import dataclass, fields

from minitop.config import MonitorConfig
from minitop.models import (
    CpuSnapshot,
    CpuTimes,
    DiskStats,
    MemoryStats,
    ProcessRecord,
    RawProcessCounters,
)
from minitop.sources import CounterSource, default_counter_source

logger = logging.getLogger(__name__)

_BUSY_FIELDS = ("user", "nice", "system")
_ALL_FIELDS = tuple(f.name for f in fields(CpuTimes))


def _clamp_percent(value: float) -> float:
    return min(100.0, max(0.0, value))


def cpu_usage_percent(previous: CpuTimes, current: CpuTimes) -> float:
    """
    Busy percentage of one CPU entry over the interval between two readings.

    A counter going backwards (reset, overflow) or an interval with no elapsed
    ticks yields 0.0. No wraparound arithmetic is attempted.
    """
    deltas = {name: getattr(current, name) - getattr(previous, name) for name in _ALL_FIELDS}
    if any(delta < 0 for delta in deltas.values()):
        return 0.0

    busy = sum(deltas[name] for name in _BUSY_FIELDS)
    total = sum(deltas.values())
    if total <= 0:
        return 0.0
    return _clamp_percent(100.0 * busy / total)


class CpuRateEstimator:
    """
    Turns cumulative CPU counters into per-entry usage percentages.

    Holds the previous snapshot as its baseline. The first call, and any call
    where the number of entries changed (CPU hot-plug), has no valid interval
    and reports 0.0 for every entry. The current snapshot always becomes the
    new baseline.
    """

    def __init__(self, source: CounterSource) -> None:
        self._source = source
        self._previous: CpuSnapshot | None = None

    @property
    def has_baseline(self) -> bool:
        return self._previous is not None

    def sample(self) -> list[float]:
        """Usage for the aggregate entry followed by each core, 0.0 - 100.0."""
        current = self._source.read_cpu_snapshot()
        previous, self._previous = self._previous, current

        if previous is None:
            return [0.0] * len(current)
        if len(previous) != len(current):
            logger.info("CPU count changed from %d to %d entries", len(previous), len(current))
            return [0.0] * len(current)

        return [cpu_usage_percent(p, c) for p, c in zip(previous, current)]


def memory_used_percent(stats: MemoryStats) -> float:
    """Used memory, excluding buffers and page cache, as a percentage of total."""
    if stats.total_kb <= 0:
        return 0.0
    used = stats.total_kb - (stats.free_kb + stats.buffers_kb + stats.cached_kb)
    return _clamp_percent(100.0 * used / stats.total_kb)


def disk_used_percent(stats: DiskStats) -> float:
    """Used space of a filesystem as a percentage of its size."""
    if stats.total_bytes <= 0:
        return 0.0
    used = stats.total_bytes - stats.free_bytes
    return _clamp_percent(100.0 * used / stats.total_bytes)


def strip_command_name(raw: str) -> str:
    """Remove the parentheses the kernel wraps around a process name."""
    if len(raw) > 2 and raw.startswith("(") and raw.endswith(")"):
        return raw[1:-1]
    return raw


def lifetime_cpu_percent(raw: RawProcessCounters, uptime: float, clock_ticks: int) -> float:
    """
    CPU share of a process averaged over its whole life.

    Children's reaped time is not included. A process that started this very
    instant (or a clock that disagrees with the start time) reports 0.0.
    """
    if clock_ticks <= 0:
        return 0.0
    age_seconds = uptime - raw.start_ticks / clock_ticks
    if age_seconds <= 0:
        return 0.0
    cpu_seconds = (raw.user_ticks + raw.system_ticks) / clock_ticks
    return 100.0 * cpu_seconds / age_seconds


class ProcessSampler:
    """
    Ranks live processes by CPU share.

    Unlike CpuRateEstimator this reports the average since each process
    started, not since the previous tick. It needs no per-process state
    between ticks, so there is nothing keyed by pid to go stale when a pid is
    reused, but a long-lived process reacts slowly to a recent burst.
    """

    def __init__(self, source: CounterSource) -> None:
        self._source = source

    def records(self) -> list[ProcessRecord]:
        """All processes that could be read this tick, in discovery order."""
        uptime = self._source.read_uptime()
        clock_ticks = self._source.clock_ticks
        return [
            ProcessRecord(
                pid=raw.pid,
                name=strip_command_name(raw.name),
                cpu_percent=lifetime_cpu_percent(raw, uptime, clock_ticks),
                rss_kb=raw.rss_kb,
            )
            for raw in self._source.list_processes()
        ]

    def top_processes(self, n: int) -> list[ProcessRecord]:
        """
        The ``n`` busiest processes, highest CPU first.

        Ties keep discovery order. Fewer than ``n`` processes returns them all.
        """
        if n < 0:
            raise ValueError(f"n must be >= 0, got {n}")
        ranked = sorted(self.records(), key=lambda record: record.cpu_percent, reverse=True)
        return ranked[:n]


@dataclass(slots=True)
class SystemSnapshot:
    """Everything derived in one tick."""

    cpu_percent_per_entry: list[float]  # Aggregate first, then each core
    memory_percent: float
    disk_percent: float
    processes: list[ProcessRecord]


class SystemMonitor:
    """
    Runs one sampling tick over a counter source.

    The CPU estimator's baseline is the only state kept between ticks; all
    other values are read and derived fresh each time.
    """

    def __init__(
        self,
        source: CounterSource | None = None,
        config: MonitorConfig | None = None,
    ) -> None:
        """
        Initialize the SystemMonitor.

        Args:
            source: Where raw counters come from. Defaults to /proc or psutil.
            config: Fixed settings (top-N size, disk path).
        """
        self._source = source if source is not None else default_counter_source()
        self._config = config if config is not None else MonitorConfig()
        self._cpu = CpuRateEstimator(self._source)
        self._processes = ProcessSampler(self._source)

    @property
    def config(self) -> MonitorConfig:
        return self._config

    def sample(self) -> SystemSnapshot:
        """Collect and derive a snapshot of the current system state."""
        cpu_percents = self._cpu.sample()
        memory = memory_used_percent(self._source.read_memory_stats())
        disk = disk_used_percent(self._source.read_disk_stats(self._config.disk_path))
        processes = self._processes.top_processes(self._config.top_n)

        return SystemSnapshot(
            cpu_percent_per_entry=cpu_percents,
            memory_percent=memory,
            disk_percent=disk,
            processes=processes,
        )
