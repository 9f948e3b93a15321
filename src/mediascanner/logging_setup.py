"""Logging configuration: rich console output plus an optional rotating file."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.logging import RichHandler

# The observer thread and the sqlite worker thread log every event at DEBUG.
_THIRD_PARTY_LOGGERS = (
    "watchdog",
    "aiosqlite",
    "asyncio",
)

_FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(log_level: str, log_file: Path | None = None) -> None:
    """Configure the root logger.

    Args:
        log_level: Logging level string (e.g. "INFO", "DEBUG").
        log_file: Rotating log file for the long-running service. Parent
            directories are created if needed. None logs to the console only.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)

    # Remove any existing handlers to avoid duplicate output
    root.handlers.clear()

    third_party_level = max(level, logging.INFO)
    for name in _THIRD_PARTY_LOGGERS:
        logging.getLogger(name).setLevel(third_party_level)

    console = RichHandler(
        level=level,
        rich_tracebacks=True,
        show_path=False,
    )
    console.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(console)

    if log_file is None:
        return

    log_file.parent.mkdir(parents=True, exist_ok=True)
    # 10 MB, keep 3 backups
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=10 * 1024 * 1024,
        backupCount=3,
        encoding="utf-8",
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    root.addHandler(file_handler)
