#!/usr/bin/env python3
"""
logger.py

Centralized logging for hestiabackup: one rotating file per mode plus the console.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from hestiabackup.config import Settings

_LOGGER: Optional[logging.Logger] = None
STATUS_LEVEL = 25

LINE_FORMAT = "%(asctime)s [%(levelname)s] [%(threadName)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logger(settings: Settings, log_path: Optional[Path] = None) -> logging.Logger:
    """
    Initialize global logger once.

    Each mode appends to its own log file; without a log path only the console is used.
    """
    global _LOGGER
    if _LOGGER is not None:
        return _LOGGER

    logging.addLevelName(STATUS_LEVEL, "STATUS")

    def status(self, message, *args, **kwargs):
        if self.isEnabledFor(STATUS_LEVEL):
            self._log(STATUS_LEVEL, message, args, **kwargs)

    logging.Logger.status = status  # type: ignore[attr-defined]

    log = logging.getLogger("hestiabackup")
    log.setLevel(settings.log_level)
    log.propagate = False

    # Clear any default handlers
    for h in log.handlers[:]:
        log.removeHandler(h)

    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        # Append; rotate when file exceeds max_log_size
        file_handler = RotatingFileHandler(
            log_path, mode="a", maxBytes=settings.max_log_size, backupCount=settings.max_log_files,
            encoding="utf-8"
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(LINE_FORMAT, datefmt=DATE_FORMAT))
        log.addHandler(file_handler)

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s", datefmt=DATE_FORMAT))
    log.addHandler(console_handler)

    _LOGGER = log
    return log


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Retrieve a logger. If setup_logger() hasn't been called yet,
    return a temporary stderr-based logger.
    """
    global _LOGGER
    if _LOGGER is not None:
        return _LOGGER.getChild(name) if name else _LOGGER

    # Fallback: minimal stderr logger (safe for early imports)
    temp = logging.getLogger("hestiabackup.temp")
    if not temp.handlers:
        h = logging.StreamHandler(sys.stderr)
        h.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        temp.addHandler(h)
        temp.setLevel(logging.INFO)
    return temp.getChild(name) if name else temp
