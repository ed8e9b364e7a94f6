"""Runtime constants for minitop."""

import logging
import os
from dataclasses import dataclass

LOG_LEVEL_ENV = "MINITOP_LOG_LEVEL"


@dataclass(slots=True, frozen=True)
class MonitorConfig:
    """Fixed settings for the monitor. There are no flags or config files."""

    interval: float = 1.0  # Seconds between ticks
    top_n: int = 5
    disk_path: str = "/"
    bar_width: int = 50


def log_level_from_env() -> int:
    """Return the logging level named by MINITOP_LOG_LEVEL, WARNING if unset or unknown."""
    name = os.environ.get(LOG_LEVEL_ENV, "WARNING").strip().upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.WARNING
