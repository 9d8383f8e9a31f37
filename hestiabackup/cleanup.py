#!/usr/bin/env python3

"""
cleanup.py

Retention step, per hosting account:
- list remote archives named <user>.*
- determine each archive's age in whole days
- delete archives strictly older than the retention threshold

Age comes from the YYYY-MM-DD token in the filename (the HestiaCP naming
scheme, e.g. acme.2024-05-01_03-00-01.tar). With AGE_SOURCE=modtime the
object's modification time is used instead and the filename token is only a
fallback. Archives whose age cannot be determined are never deleted; they are
counted as skipped and logged as warnings so a naming change is visible.
"""

from __future__ import annotations

import datetime
import json
import re
from dataclasses import dataclass
from typing import List, Optional, Union

from hestiabackup.config import Settings
from hestiabackup.executor import create_managed_executor
from hestiabackup.logger import get_logger
from hestiabackup.rclone import rclone_deletefile, rclone_lsjson
from hestiabackup.report import CleanupRow, RunReport, format_mb

DATE_TOKEN_RE = re.compile(r"\d{4}-\d{2}-\d{2}")
# rclone emits RFC 3339 with up to nanosecond precision
RCLONE_TIME_RE = re.compile(
    r"^(?P<base>\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.(?P<frac>\d+))?(?P<tz>Z|[+-]\d{2}:\d{2})?$"
)


@dataclass(frozen=True)
class RemoteArchive:
    name: str
    size: int
    mod_time: Optional[datetime.datetime] = None


def parse_date_token(name: str) -> Optional[datetime.date]:
    """First YYYY-MM-DD token in `name`, or None if absent or not a real date."""
    m = DATE_TOKEN_RE.search(name)
    if not m:
        return None
    try:
        return datetime.datetime.strptime(m.group(0), "%Y-%m-%d").date()
    except ValueError:
        return None


def parse_rclone_time(value: Optional[str]) -> Optional[datetime.datetime]:
    if not value:
        return None
    m = RCLONE_TIME_RE.match(value.strip())
    if not m:
        return None
    frac = (m.group("frac") or "")[:6].ljust(6, "0")
    tz = m.group("tz") or "Z"
    if tz == "Z":
        tz = "+00:00"
    try:
        return datetime.datetime.fromisoformat(f"{m.group('base')}.{frac}{tz}")
    except ValueError:
        return None


def age_in_days(stamp: Union[datetime.date, datetime.datetime], now: datetime.datetime) -> int:
    """Whole days between `stamp` and `now`, truncated."""
    if isinstance(stamp, datetime.datetime):
        if stamp.tzinfo is None:
            stamp = stamp.replace(tzinfo=datetime.timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=datetime.timezone.utc)
        return (now - stamp) // datetime.timedelta(days=1)
    return (now.date() - stamp).days


def archive_age(archive: RemoteArchive, settings: Settings, now: datetime.datetime) -> Optional[int]:
    if settings.age_source == "modtime" and archive.mod_time is not None:
        return age_in_days(archive.mod_time, now)
    day = parse_date_token(archive.name)
    if day is None:
        return None
    return age_in_days(day, now)


def list_user_archives(settings: Settings, user: str) -> Optional[List[RemoteArchive]]:
    """Remote files named <user>.*; None when the listing itself fails."""
    logger = get_logger(__name__)
    prefix = f"{user}."
    res = rclone_lsjson(settings.remote_target, "--files-only", "--include", f"/{user}.*", check=False)
    if res.returncode != 0:
        logger.error(f"✗ Could not list {settings.remote_target} for user {user}")
        return None
    try:
        entries = json.loads(res.stdout or "[]")
    except json.JSONDecodeError as e:
        logger.error(f"✗ Unreadable listing of {settings.remote_target} for user {user}: {e}")
        return None

    archives: List[RemoteArchive] = []
    for entry in entries:
        name = entry.get("Name") or entry.get("Path") or ""
        if not name.startswith(prefix):
            continue
        archives.append(RemoteArchive(
            name=name,
            size=max(0, int(entry.get("Size") or 0)),
            mod_time=parse_rclone_time(entry.get("ModTime")),
        ))
    return archives


def cleanup_user(user: str, settings: Settings, report: RunReport,
                 now: Optional[datetime.datetime] = None) -> CleanupRow:
    logger = get_logger(__name__)
    now = now or datetime.datetime.now().astimezone()

    logger.info(f"Scanning backups for user: {user}")
    archives = list_user_archives(settings, user)
    if archives is None:
        row = CleanupRow(user, list_failed=True)
        report.record_cleanup(row)
        return row

    deleted = kept = skipped = delete_failed = 0
    freed = 0
    for archive in archives:
        age = archive_age(archive, settings, now)
        if age is None:
            logger.warning(f"  ? Skipping {archive.name}: no date token in filename")
            skipped += 1
            continue
        if age <= settings.retention_days:
            logger.debug(f"  Keeping {archive.name} (age: {age}d)")
            kept += 1
            continue

        logger.info(f"  → Deleting: {archive.name} (age: {age}d, size: {format_mb(archive.size)})")
        res = rclone_deletefile(f"{settings.remote_target}{archive.name}", check=False)
        if res.returncode == 0:
            deleted += 1
            freed += archive.size
        else:
            logger.error(f"  ✗ Failed to delete: {archive.name}")
            delete_failed += 1

    row = CleanupRow(user, deleted=deleted, bytes_freed=freed, kept=kept, skipped=skipped,
                     delete_failed=delete_failed)
    report.record_cleanup(row)
    return row


def run_cleanup(settings: Settings, users: List[str], report: RunReport,
                now: Optional[datetime.datetime] = None) -> None:
    logger = get_logger(__name__)
    now = now or datetime.datetime.now().astimezone()

    def _process_user(user: str):
        return cleanup_user(user, settings, report, now)

    with create_managed_executor(max_workers=settings.max_workers, name="Cleanup") as executor:
        executor.map(_process_user, users)
        if executor.is_interrupted():
            logger.error(f"Cleanup interrupted...")
            raise KeyboardInterrupt()
