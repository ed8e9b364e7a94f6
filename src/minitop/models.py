"""Data models for minitop."""

from dataclasses import dataclass


@dataclass(slots=True, frozen=True)
class CpuTimes:
    """Cumulative CPU time buckets for one entry, in clock ticks."""

    user: int = 0
    nice: int = 0
    system: int = 0
    idle: int = 0
    iowait: int = 0
    irq: int = 0
    softirq: int = 0
    steal: int = 0


# Index 0 is the aggregate of all cores, followed by one entry per core.
CpuSnapshot = tuple[CpuTimes, ...]


@dataclass(slots=True, frozen=True)
class MemoryStats:
    """System memory totals (kB)."""

    total_kb: int = 0
    free_kb: int = 0
    buffers_kb: int = 0
    cached_kb: int = 0


@dataclass(slots=True, frozen=True)
class DiskStats:
    """Filesystem capacity for a single mount path."""

    total_bytes: int = 0
    free_bytes: int = 0


@dataclass(slots=True, frozen=True)
class RawProcessCounters:
    """Raw per-process counters as read from the counter source."""

    pid: int
    name: str  # May still be wrapped in parentheses
    state: str  # 'R', 'S', 'Z', 'D', etc.
    user_ticks: int
    system_ticks: int
    children_user_ticks: int
    children_system_ticks: int
    start_ticks: int  # Clock ticks since boot
    rss_kb: int


@dataclass(slots=True, frozen=True)
class ProcessRecord:
    """A derived, tick-local view of one process."""

    pid: int
    name: str
    cpu_percent: float  # Lifetime average, see ProcessSampler
    rss_kb: int
