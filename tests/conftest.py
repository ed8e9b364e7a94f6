"""Shared fixtures for minitop tests."""

import pytest

from minitop.models import CpuTimes, DiskStats, MemoryStats, RawProcessCounters


class FakeCounterSource:
    """In-memory counter source; CPU snapshots are handed out in order."""

    def __init__(
        self,
        cpu_snapshots=None,
        memory=None,
        disk=None,
        uptime=1000.0,
        processes=None,
        clock_ticks=100,
    ):
        self.cpu_snapshots = list(cpu_snapshots or [])
        self.memory = memory or MemoryStats()
        self.disk = disk or DiskStats()
        self.uptime = uptime
        self.processes = list(processes or [])
        self._clock_ticks = clock_ticks
        self.disk_paths: list[str] = []

    @property
    def clock_ticks(self):
        return self._clock_ticks

    def read_cpu_snapshot(self):
        if len(self.cpu_snapshots) > 1:
            return self.cpu_snapshots.pop(0)
        return self.cpu_snapshots[0] if self.cpu_snapshots else ()

    def read_memory_stats(self):
        return self.memory

    def read_disk_stats(self, path):
        self.disk_paths.append(path)
        return self.disk

    def read_uptime(self):
        return self.uptime

    def list_processes(self):
        return list(self.processes)


def make_process(pid, cpu_ticks=0, start_ticks=0, name=None, rss_kb=1024):
    """A raw process with all of its CPU time counted as user time."""
    return RawProcessCounters(
        pid=pid,
        name=name if name is not None else f"(proc{pid})",
        state="S",
        user_ticks=cpu_ticks,
        system_ticks=0,
        children_user_ticks=0,
        children_system_ticks=0,
        start_ticks=start_ticks,
        rss_kb=rss_kb,
    )


@pytest.fixture
def fake_source_factory():
    """Build FakeCounterSource instances."""
    return FakeCounterSource


@pytest.fixture
def process_factory():
    """Build RawProcessCounters with sensible defaults."""
    return make_process


@pytest.fixture
def idle_cpu():
    """A two-entry snapshot (aggregate + one core) with no activity."""
    times = CpuTimes(user=100, idle=900)
    return (times, times)


@pytest.fixture
def fake_proc(tmp_path):
    """
    A fake /proc tree with two readable processes.

    pid 42 has a name containing spaces and parentheses; pid 7 is a kernel
    thread without VmRSS.
    """
    (tmp_path / "stat").write_text(
        "cpu  100 5 50 900 10 1 2 3 0 0\n"
        "cpu0 60 5 30 450 5 1 1 2 0 0\n"
        "cpu1 40 0 20 450 5 0 1 1 0 0\n"
        "intr 12345 0 0\n"
        "ctxt 987654\n"
    )
    (tmp_path / "meminfo").write_text(
        "MemTotal:       16000000 kB\n"
        "MemFree:         4000000 kB\n"
        "MemAvailable:    9000000 kB\n"
        "Buffers:          500000 kB\n"
        "Cached:          3500000 kB\n"
        "SwapCached:            0 kB\n"
    )
    (tmp_path / "uptime").write_text("1234.56 4321.00\n")

    proc42 = tmp_path / "42"
    proc42.mkdir()
    (proc42 / "stat").write_text(
        "42 (my (odd) name) R 1 42 42 0 -1 4194304 100 0 0 0 "
        "250 50 7 3 20 0 1 0 12000 1000000 256 18446744073709551615\n"
    )
    (proc42 / "status").write_text(
        "Name:\tmy (odd) name\nState:\tR (running)\nVmRSS:\t    2048 kB\nThreads:\t1\n"
    )

    proc7 = tmp_path / "7"
    proc7.mkdir()
    (proc7 / "stat").write_text(
        "7 (kworker/0:1) I 2 0 0 0 -1 69238880 0 0 0 0 "
        "0 12 0 0 20 0 1 0 30 0 0 18446744073709551615\n"
    )
    (proc7 / "status").write_text("Name:\tkworker/0:1\nState:\tI (idle)\n")

    (tmp_path / "self").mkdir()
    return tmp_path
