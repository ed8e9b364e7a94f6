"""Raw counter sources for minitop.

A counter source reports cumulative OS counters as of "now". It never derives
rates; that is left to :mod:`minitop.monitor`. Every reader degrades to a
neutral value instead of raising, so a missing or unreadable file costs one
gauge for one tick, never the whole monitor.
"""

import logging
import os
import time
from collections.abc import Sequence
from dataclasses import fields
from pathlib import Path
from typing import Protocol

import psutil

from minitop.models import CpuSnapshot, CpuTimes, DiskStats, MemoryStats, RawProcessCounters

logger = logging.getLogger(__name__)

DEFAULT_CLOCK_TICKS = 100
CPU_FIELDS = tuple(f.name for f in fields(CpuTimes))
MEMINFO_KEYS = {
    "MemTotal": "total_kb",
    "MemFree": "free_kb",
    "Buffers": "buffers_kb",
    "Cached": "cached_kb",
}
PSUTIL_STATUS_CHARS = {
    psutil.STATUS_RUNNING: "R",
    psutil.STATUS_SLEEPING: "S",
    psutil.STATUS_DISK_SLEEP: "D",
    psutil.STATUS_STOPPED: "T",
    psutil.STATUS_TRACING_STOP: "t",
    psutil.STATUS_ZOMBIE: "Z",
    psutil.STATUS_DEAD: "X",
    psutil.STATUS_WAKING: "W",
    psutil.STATUS_IDLE: "I",
    psutil.STATUS_PARKED: "P",
}


class CounterSource(Protocol):
    """What the monitor needs from the operating system."""

    @property
    def clock_ticks(self) -> int: ...

    def read_cpu_snapshot(self) -> CpuSnapshot: ...

    def read_memory_stats(self) -> MemoryStats: ...

    def read_disk_stats(self, path: str) -> DiskStats: ...

    def read_uptime(self) -> float: ...

    def list_processes(self) -> Sequence[RawProcessCounters]: ...


def system_clock_ticks() -> int:
    """Clock ticks per second (USER_HZ), 100 if the platform can't tell us."""
    try:
        ticks = os.sysconf("SC_CLK_TCK")
    except (AttributeError, ValueError, OSError):
        return DEFAULT_CLOCK_TICKS
    return ticks if ticks > 0 else DEFAULT_CLOCK_TICKS


# -- /proc parsing -----------------------------------------------------------


def parse_cpu_line(line: str) -> CpuTimes:
    """
    Parse one ``cpu``/``cpuN`` line of /proc/stat.

    Older kernels report fewer than eight buckets; missing ones read as 0.
    """
    values = [int(v) for v in line.split()[1 : len(CPU_FIELDS) + 1]]
    values += [0] * (len(CPU_FIELDS) - len(values))
    return CpuTimes(*values)


def parse_cpu_snapshot(text: str) -> CpuSnapshot:
    """Parse the leading cpu lines of /proc/stat, aggregate first."""
    entries: list[CpuTimes] = []
    for line in text.splitlines():
        if not line.startswith("cpu"):
            break
        entries.append(parse_cpu_line(line))
    return tuple(entries)


def parse_meminfo(text: str) -> MemoryStats:
    """Pick the totals we care about out of /proc/meminfo."""
    values: dict[str, int] = {}
    for line in text.splitlines():
        key, _, rest = line.partition(":")
        attr = MEMINFO_KEYS.get(key)
        if attr is not None:
            values[attr] = int(rest.split()[0])
    return MemoryStats(**values)


def parse_pid_stat(text: str) -> tuple[int, str, str, list[str]]:
    """
    Split a /proc/<pid>/stat record into pid, raw name, state and the rest.

    The name is everything from the first ``(`` to the last ``)`` since a
    process may put spaces or parentheses in its own name. It is returned with
    the parentheses still on. ``rest[0]`` is field 4 (ppid) in proc(5) terms.
    """
    open_paren = text.index("(")
    close_paren = text.rindex(")")
    pid = int(text[:open_paren])
    name = text[open_paren : close_paren + 1]
    state, *rest = text[close_paren + 1 :].split()
    return pid, name, state, rest


def parse_status_rss(text: str) -> int:
    """VmRSS from /proc/<pid>/status in kB; kernel threads have none."""
    for line in text.splitlines():
        if line.startswith("VmRSS:"):
            return int(line.split()[1])
    return 0


class ProcfsCounterSource:
    """Counter source reading the Linux /proc pseudo-filesystem directly."""

    # Offsets into the fields following ``state`` in /proc/<pid>/stat
    _UTIME = 10
    _STIME = 11
    _CUTIME = 12
    _CSTIME = 13
    _STARTTIME = 18

    def __init__(self, proc_root: str | os.PathLike[str] = "/proc") -> None:
        self._root = Path(proc_root)
        self._clock_ticks = system_clock_ticks()

    @property
    def clock_ticks(self) -> int:
        return self._clock_ticks

    def read_cpu_snapshot(self) -> CpuSnapshot:
        try:
            return parse_cpu_snapshot((self._root / "stat").read_text())
        except (OSError, ValueError) as exc:
            logger.warning("Unable to read CPU counters: %s", exc)
            return ()

    def read_memory_stats(self) -> MemoryStats:
        try:
            return parse_meminfo((self._root / "meminfo").read_text())
        except (OSError, ValueError, IndexError) as exc:
            logger.warning("Unable to read memory counters: %s", exc)
            return MemoryStats()

    def read_disk_stats(self, path: str) -> DiskStats:
        try:
            st = os.statvfs(path)
        except OSError as exc:
            logger.warning("Unable to stat filesystem %s: %s", path, exc)
            return DiskStats()
        return DiskStats(
            total_bytes=st.f_blocks * st.f_frsize,
            free_bytes=st.f_bfree * st.f_frsize,
        )

    def read_uptime(self) -> float:
        try:
            return float((self._root / "uptime").read_text().split()[0])
        except (OSError, ValueError, IndexError) as exc:
            logger.warning("Unable to read uptime: %s", exc)
            return 0.0

    def list_processes(self) -> list[RawProcessCounters]:
        """
        Read every process under the proc root.

        The listing is best effort: a process that exits between the directory
        scan and reading its files is skipped.
        """
        processes: list[RawProcessCounters] = []
        try:
            with os.scandir(self._root) as it:
                entries = [entry.name for entry in it if entry.name.isdigit()]
        except OSError as exc:
            logger.warning("Unable to list processes: %s", exc)
            return processes

        for name in entries:
            try:
                processes.append(self._read_process(self._root / name))
            except (OSError, ValueError, IndexError) as exc:
                logger.debug("Skipping process %s: %s", name, exc)
                continue

        return processes

    def _read_process(self, proc_dir: Path) -> RawProcessCounters:
        pid, name, state, rest = parse_pid_stat((proc_dir / "stat").read_text())
        rss_kb = parse_status_rss((proc_dir / "status").read_text())
        return RawProcessCounters(
            pid=pid,
            name=name,
            state=state,
            user_ticks=int(rest[self._UTIME]),
            system_ticks=int(rest[self._STIME]),
            children_user_ticks=int(rest[self._CUTIME]),
            children_system_ticks=int(rest[self._CSTIME]),
            start_ticks=int(rest[self._STARTTIME]),
            rss_kb=rss_kb,
        )


# -- psutil ------------------------------------------------------------------


def _to_ticks(seconds: float | None, clock_ticks: int) -> int:
    return round((seconds or 0.0) * clock_ticks)


class PsutilCounterSource:
    """
    Counter source backed by psutil, for hosts without a readable /proc.

    psutil reports CPU time in seconds; values are converted back to clock
    ticks so both sources feed the monitor the same units. Buckets a platform
    does not report (iowait, steal, ... outside Linux) read as 0.
    """

    def __init__(self) -> None:
        self._clock_ticks = system_clock_ticks()

    @property
    def clock_ticks(self) -> int:
        return self._clock_ticks

    def _cpu_times(self, times) -> CpuTimes:
        return CpuTimes(
            *(_to_ticks(getattr(times, name, 0.0), self._clock_ticks) for name in CPU_FIELDS)
        )

    def read_cpu_snapshot(self) -> CpuSnapshot:
        try:
            total = psutil.cpu_times()
            per_core = psutil.cpu_times(percpu=True)
        except OSError as exc:
            logger.warning("Unable to read CPU counters: %s", exc)
            return ()
        return tuple(self._cpu_times(t) for t in [total, *per_core])

    def read_memory_stats(self) -> MemoryStats:
        try:
            mem = psutil.virtual_memory()
        except OSError as exc:
            logger.warning("Unable to read memory counters: %s", exc)
            return MemoryStats()
        return MemoryStats(
            total_kb=mem.total // 1024,
            free_kb=mem.free // 1024,
            buffers_kb=getattr(mem, "buffers", 0) // 1024,
            cached_kb=getattr(mem, "cached", 0) // 1024,
        )

    def read_disk_stats(self, path: str) -> DiskStats:
        try:
            usage = psutil.disk_usage(path)
        except OSError as exc:
            logger.warning("Unable to stat filesystem %s: %s", path, exc)
            return DiskStats()
        # psutil's "free" excludes root-reserved blocks; total - used does not
        return DiskStats(total_bytes=usage.total, free_bytes=usage.total - usage.used)

    def read_uptime(self) -> float:
        try:
            return time.time() - psutil.boot_time()
        except OSError as exc:
            logger.warning("Unable to read boot time: %s", exc)
            return 0.0

    def list_processes(self) -> list[RawProcessCounters]:
        """
        Collect raw counters for all running processes.

        Uses psutil.process_iter() with oneshot() so each process is read once.
        Processes that die mid-poll, deny access, or are zombies are skipped.
        """
        processes: list[RawProcessCounters] = []
        try:
            boot_time = psutil.boot_time()
        except OSError as exc:
            logger.warning("Unable to read boot time: %s", exc)
            return processes

        for proc in psutil.process_iter():
            try:
                with proc.oneshot():
                    times = proc.cpu_times()
                    created = proc.create_time()
                    processes.append(
                        RawProcessCounters(
                            pid=proc.pid,
                            name=proc.name(),
                            state=PSUTIL_STATUS_CHARS.get(proc.status(), "?"),
                            user_ticks=_to_ticks(times.user, self._clock_ticks),
                            system_ticks=_to_ticks(times.system, self._clock_ticks),
                            children_user_ticks=_to_ticks(
                                getattr(times, "children_user", 0.0), self._clock_ticks
                            ),
                            children_system_ticks=_to_ticks(
                                getattr(times, "children_system", 0.0), self._clock_ticks
                            ),
                            start_ticks=_to_ticks(created - boot_time, self._clock_ticks),
                            rss_kb=proc.memory_info().rss // 1024,
                        )
                    )
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess) as exc:
                logger.debug("Skipping process %s: %s", proc.pid, exc)
                continue

        return processes


def default_counter_source() -> CounterSource:
    """Read /proc directly where it exists, fall back to psutil elsewhere."""
    if os.access("/proc/stat", os.R_OK):
        return ProcfsCounterSource()
    return PsutilCounterSource()
