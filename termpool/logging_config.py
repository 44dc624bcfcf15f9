"""Logging setup for termpool entry points.

The CLI (and any host embedding the tool server) calls
setup_process_logging() once; library modules only ever do

    logger = get_logger(__name__)

File logs go to {config_dir}/logs/{process}.log, rotated daily, plus a
size-capped {process}-current.log.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler, TimedRotatingFileHandler
from pathlib import Path

from .config import log_dir

LOG_RETENTION_DAYS = 14
MAX_LOG_BYTES = 5 * 1024 * 1024
LOG_BACKUPS = 5

# Set by setup_process_logging
_current_process: str | None = None


class FlushingStreamHandler(logging.StreamHandler):
    """StreamHandler that flushes after every emit."""

    def emit(self, record):
        super().emit(record)
        self.flush()


def _formatter(process_name: str, datefmt: str) -> logging.Formatter:
    return logging.Formatter(
        fmt=f"[%(asctime)s] [{process_name}] [%(levelname)s] %(name)s: %(message)s",
        datefmt=datefmt,
    )


def _file_handlers(logs: Path, process_name: str) -> list[logging.Handler]:
    daily = TimedRotatingFileHandler(
        logs / f"{process_name}.log",
        when="midnight",
        interval=1,
        backupCount=LOG_RETENTION_DAYS,
        encoding="utf-8",
    )
    daily.suffix = "%Y-%m-%d"
    # Caps a single day's file when a command floods its session with output
    capped = RotatingFileHandler(
        logs / f"{process_name}-current.log",
        maxBytes=MAX_LOG_BYTES,
        backupCount=LOG_BACKUPS,
        encoding="utf-8",
    )
    return [daily, capped]


def setup_process_logging(
    process_name: str,
    level: int = logging.INFO,
    console: bool = True,
    file: bool = True,
) -> logging.Logger:
    """
    Configure the root logger for this process, replacing existing handlers.

    Args:
        process_name: Tag included in every record (e.g. "cli", "mcp")
        level: Minimum log level
        console: Log to stderr
        file: Log to rotating files under config.log_dir() (requires config.init())

    Returns:
        The root logger
    """
    global _current_process
    _current_process = process_name

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    handlers: list[logging.Handler] = []
    if console:
        stderr_handler = FlushingStreamHandler(sys.stderr)
        stderr_handler.setFormatter(_formatter(process_name, "%H:%M:%S"))
        handlers.append(stderr_handler)

    if file:
        logs = log_dir()
        logs.mkdir(parents=True, exist_ok=True)
        file_fmt = _formatter(process_name, "%Y-%m-%d %H:%M:%S")
        for handler in _file_handlers(logs, process_name):
            handler.setFormatter(file_fmt)
            handlers.append(handler)

    for handler in handlers:
        handler.setLevel(level)
        root.addHandler(handler)
    return root


def current_process() -> str | None:
    """Name passed to setup_process_logging(), or None before setup."""
    return _current_process


def get_logger(name: str) -> logging.Logger:
    """Module logger; picks up the process handlers once setup has run."""
    return logging.getLogger(name)
