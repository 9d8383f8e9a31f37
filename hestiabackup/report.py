#!/usr/bin/env python3

"""
report.py

Thread-safe run report for one backup or cleanup invocation.

Counters and per-account outcome rows live behind a single lock so the
per-account loops may run on several workers. Rows are append-only; a report
is built fresh for every run, emailed once and then discarded.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

from hestiabackup.logger import get_logger


class StatKey(Enum):
    PROCESSED = "Processed"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    BYTES_TRANSFERRED = "Bytes transferred"
    DELETED = "Deleted"
    BYTES_FREED = "Bytes freed"
    KEPT = "Kept"
    SKIPPED = "Skipped"
    DELETE_FAILED = "Delete failed"


class BackupStatus(Enum):
    SUCCESS = "✓ Success"
    COMMAND_FAILED = "✗ Backup Failed"
    FILE_NOT_FOUND = "✗ Backup File Not Found"
    UPLOAD_FAILED = "✗ S3 Upload Failed"
    ERROR = "✗ Error"

    @property
    def label(self) -> str:
        return self.value

    @property
    def ok(self) -> bool:
        return self is BackupStatus.SUCCESS


@dataclass(frozen=True)
class BackupRow:
    user: str
    status: BackupStatus
    size_bytes: Optional[int] = None
    duration: Optional[float] = None

    @property
    def size_display(self) -> str:
        return "-" if self.size_bytes is None else human_size(self.size_bytes)

    @property
    def duration_display(self) -> str:
        return "-" if self.duration is None else f"{int(self.duration)}s"


@dataclass(frozen=True)
class CleanupRow:
    user: str
    deleted: int = 0
    bytes_freed: int = 0
    kept: int = 0
    skipped: int = 0
    delete_failed: int = 0
    list_failed: bool = False

    @property
    def has_action(self) -> bool:
        return self.deleted > 0 or self.delete_failed > 0 or self.list_failed


Row = Union[BackupRow, CleanupRow]


def human_size(num_bytes: int) -> str:
    """Size in the style of `du -h`: 512B, 4.0K, 15M, 1.2G."""
    if num_bytes < 1024:
        return f"{max(0, num_bytes)}B"
    value = float(num_bytes)
    units = ("K", "M", "G", "T")
    for i, unit in enumerate(units):
        value /= 1024
        text = f"{value:.1f}"
        if float(text) >= 10:
            text = f"{value:.0f}"
        # Rounding can reach 1024 (1023.96K -> "1024K"); carry into the next unit
        if float(text) < 1024 or i == len(units) - 1:
            return f"{text}{unit}"


def format_gb(num_bytes: int) -> str:
    return f"{num_bytes / 1024 / 1024 / 1024:.2f}"


def format_mb(num_bytes: int) -> str:
    return f"{num_bytes // 1024 // 1024}MB"


class RunReport:
    """
    Counters plus an ordered list of per-account rows.

    Use record_backup()/record_cleanup() to add an account outcome; both update
    the counters and append the row under one lock, so PROCESSED always equals
    SUCCEEDED + FAILED for backup runs.
    """

    def __init__(self, mode: str):
        self.mode = mode
        self.started_at = time.time()
        self._counters: Dict[StatKey, int] = {}
        self._rows: List[Row] = []
        self._lock = threading.Lock()

    def get(self, key: StatKey, default: int = 0) -> int:
        with self._lock:
            return self._counters.get(key, default)

    def __getitem__(self, key: StatKey) -> int:
        return self.get(key, 0)

    def get_all(self) -> Dict[StatKey, int]:
        with self._lock:
            return dict(self._counters)

    @property
    def rows(self) -> Tuple[Row, ...]:
        with self._lock:
            return tuple(self._rows)

    def record_backup(self, row: BackupRow) -> None:
        with self._lock:
            self._bump(StatKey.PROCESSED)
            if row.status.ok:
                self._bump(StatKey.SUCCEEDED)
                self._bump(StatKey.BYTES_TRANSFERRED, row.size_bytes or 0)
            else:
                self._bump(StatKey.FAILED)
            self._rows.append(row)

    def record_cleanup(self, row: CleanupRow) -> None:
        with self._lock:
            self._bump(StatKey.PROCESSED)
            self._bump(StatKey.DELETED, row.deleted)
            self._bump(StatKey.BYTES_FREED, row.bytes_freed)
            self._bump(StatKey.KEPT, row.kept)
            self._bump(StatKey.SKIPPED, row.skipped)
            self._bump(StatKey.DELETE_FAILED, row.delete_failed)
            if row.list_failed:
                self._bump(StatKey.FAILED)
            self._rows.append(row)

    def _bump(self, key: StatKey, value: int = 1) -> None:
        # caller holds the lock
        self._counters[key] = self._counters.get(key, 0) + value

    def elapsed(self, now: Optional[float] = None) -> int:
        return int((now if now is not None else time.time()) - self.started_at)

    def format_status(self) -> str:
        snapshot = self.get_all()
        if self.mode == "backup":
            keys = [StatKey.PROCESSED, StatKey.SUCCEEDED, StatKey.FAILED]
            extra = f"Transferred: {format_gb(snapshot.get(StatKey.BYTES_TRANSFERRED, 0))} GB | "
        else:
            keys = [StatKey.PROCESSED, StatKey.DELETED, StatKey.KEPT, StatKey.SKIPPED,
                    StatKey.DELETE_FAILED, StatKey.FAILED]
            extra = f"Freed: {format_gb(snapshot.get(StatKey.BYTES_FREED, 0))} GB | "
        txt = " | "
        for key in keys:
            txt += f"{key.value}: {snapshot.get(key, 0)} | "
        return txt + extra


def log_status(report: RunReport, stage: str = ""):
    logger = get_logger(__name__)

    prefix = f"[{stage}] " if stage else ""
    # logger.status is registered at runtime by setup_logger
    fn = getattr(logger, "status", None)
    if callable(fn):
        fn(prefix + report.format_status())
    else:
        logger.info(prefix + report.format_status())
