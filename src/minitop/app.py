"""minitop - Main Textual application."""

import asyncio
import logging
import signal
from dataclasses import dataclass

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Container
from textual.logging import TextualHandler
from textual.widgets import DataTable, Static

from minitop.config import MonitorConfig, log_level_from_env
from minitop.models import ProcessRecord
from minitop.monitor import SystemMonitor, SystemSnapshot

BAND_COLORS = {
    "ok": "green",
    "warn": "yellow",
    "alert": "red",
}
LABEL_WIDTH = 10
# Signals that end the app through a normal exit so the terminal is restored
EXIT_SIGNALS = tuple(
    getattr(signal, name) for name in ("SIGTERM", "SIGHUP") if hasattr(signal, name)
)


def color_band(percent: float) -> str:
    """Map a percentage to its color band: ok below 50, warn below 80, else alert."""
    if percent < 50:
        return "ok"
    if percent < 80:
        return "warn"
    return "alert"


def render_gauge(label: str, percent: float, width: int) -> str:
    """Render ``label [####------] NN%`` as markup, the fill colored by band."""
    filled = min(max(int(percent / 100.0 * width), 0), width)
    color = BAND_COLORS[color_band(percent)]
    bar = f"[{color}]{'#' * filled}[/{color}]" + "-" * (width - filled)
    # Use escaped brackets for the bar container
    return f"{label:<{LABEL_WIDTH}} \\[{bar}] {percent:3.0f}%"


def cpu_label(index: int) -> str:
    """Label for a CPU entry: index 0 is the aggregate, then one per core."""
    return "CPU Total" if index == 0 else f"CPU{index - 1}"


@dataclass(slots=True, frozen=True)
class GaugeCommand:
    """One gauge to draw: what it shows and which row it goes on."""

    label: str
    percent: float
    row: int
    width: int


def build_gauges(snapshot: SystemSnapshot, width: int) -> list[GaugeCommand]:
    """Lay out one gauge per CPU entry, then memory, then disk."""
    gauges = [
        GaugeCommand(cpu_label(i), percent, i, width)
        for i, percent in enumerate(snapshot.cpu_percent_per_entry)
    ]
    row = len(gauges)
    gauges.append(GaugeCommand("Mem", snapshot.memory_percent, row, width))
    gauges.append(GaugeCommand("Disk", snapshot.disk_percent, row + 1, width))
    return gauges


class GaugePanel(Static):
    """Draws gauge commands, one per line, in row order."""

    DEFAULT_CSS = """
    GaugePanel {
        height: auto;
        padding: 1 2;
    }
    """

    def __init__(self, **kwargs) -> None:
        """Initialize GaugePanel."""
        super().__init__("Loading...", **kwargs)
        self._gauges: list[GaugeCommand] = []

    @property
    def gauges(self) -> list[GaugeCommand]:
        return list(self._gauges)

    def draw(self, gauges: list[GaugeCommand]) -> None:
        """Replace everything on the panel with the given gauges."""
        self._gauges = sorted(gauges, key=lambda gauge: gauge.row)
        self.update(
            "\n".join(render_gauge(g.label, g.percent, g.width) for g in self._gauges)
        )


class ProcessTable(Container):
    """The top-N process list."""

    DEFAULT_CSS = """
    ProcessTable {
        height: auto;
        border: solid $primary;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize ProcessTable."""
        super().__init__(*args, **kwargs)
        self._pids: list[int] = []

    @property
    def pids(self) -> list[int]:
        """PIDs currently shown, top row first."""
        return list(self._pids)

    def compose(self) -> ComposeResult:
        """Compose the process table."""
        yield DataTable(id="process-table", cursor_type="none")

    def on_mount(self) -> None:
        """Initialize the data table when mounted."""
        table = self.query_one("#process-table", DataTable)
        table.add_column("PID", key="pid", width=8)
        table.add_column("Command", key="command", width=20)
        table.add_column("CPU%", key="cpu", width=8)
        table.add_column("Mem (KB)", key="mem", width=12)

    def update_processes(self, processes: list[ProcessRecord]) -> None:
        """
        Show the given processes in order.

        Rows are rebuilt every tick; a pid seen last tick may belong to a
        different process now.
        """
        table = self.query_one("#process-table", DataTable)
        table.clear()
        for proc in processes:
            table.add_row(
                str(proc.pid),
                proc.name[:20],
                f"{proc.cpu_percent:5.1f}",
                str(proc.rss_kb),
            )
        self._pids = [proc.pid for proc in processes]


class MinitopApp(App):
    """Main minitop application."""

    TITLE = "minitop"

    CSS = """
    Screen {
        layout: vertical;
    }

    #title {
        padding: 0 1;
        text-style: bold;
    }

    #top-label {
        padding: 0 2;
    }
    """

    BINDINGS = [
        Binding("ctrl+c", "quit", "Quit", priority=True),
        ("q", "quit", "Quit"),
    ]

    def __init__(self, monitor: SystemMonitor | None = None) -> None:
        """Initialize the MinitopApp."""
        super().__init__()
        self._monitor = monitor if monitor is not None else SystemMonitor()
        self._config: MonitorConfig = self._monitor.config
        self._signals: list[signal.Signals] = []

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield Static("minitop (Ctrl+C to quit)", id="title")
        yield GaugePanel(id="gauges")
        yield Static(f"Top {self._config.top_n} processes (CPU):", id="top-label")
        yield ProcessTable()

    def on_mount(self) -> None:
        """Draw the first tick right away, then refresh once per interval."""
        self.call_after_refresh(self.tick)
        self.set_interval(self._config.interval, self.tick)
        self._install_signal_handlers()

    def on_unmount(self) -> None:
        """Give the exit signals back to the event loop default."""
        loop = asyncio.get_running_loop()
        for sig in self._signals:
            loop.remove_signal_handler(sig)
        self._signals.clear()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in EXIT_SIGNALS:
            try:
                loop.add_signal_handler(sig, self.exit)
            except (NotImplementedError, RuntimeError, ValueError):
                # No loop signal support (Windows) or not on the main thread
                continue
            self._signals.append(sig)

    def tick(self) -> None:
        """Sample the system once and redraw."""
        snapshot = self._monitor.sample()
        self._update_ui(snapshot)

    def _update_ui(self, snapshot: SystemSnapshot) -> None:
        """Update the UI with the new system snapshot."""
        self.query_one("#gauges", GaugePanel).draw(build_gauges(snapshot, self._config.bar_width))
        self.query_one(ProcessTable).update_processes(snapshot.processes)


def main() -> None:
    """Entry point for minitop application."""
    logging.basicConfig(level=log_level_from_env(), handlers=[TextualHandler()])
    app = MinitopApp()
    try:
        app.run()
    except KeyboardInterrupt:
        pass
    raise SystemExit(app.return_code or 0)


if __name__ == "__main__":
    main()
