"""
Application logging.

Configures the root logger with a size-rotated log file plus the console,
and reads back the tail of the log file for the logs endpoint.
"""

import logging
from collections import deque
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .config import config

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging():
    """Configure the root logger from the application config."""
    log_formatter = logging.Formatter(LOG_FORMAT)
    handlers = []

    if config.log_enabled:
        # Rotating file handler (auto-compaction)
        config.log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            config.log_file,
            maxBytes=config.log_max_bytes,
            backupCount=config.log_backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(log_formatter)
        handlers.append(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(log_formatter)
    handlers.append(console_handler)

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        handlers=handlers,
        force=True,
    )


def read_log_lines(lines: int = 100, path=None) -> list[str]:
    """Return the last `lines` lines of the log file (all of them if lines <= 0)."""
    log_path = Path(path or config.log_file)
    if not log_path.exists():
        return []

    with open(log_path, encoding="utf-8", errors="replace") as f:
        if lines <= 0:
            return [line.rstrip("\n") for line in f]
        return [line.rstrip("\n") for line in deque(f, maxlen=lines)]
