#!/usr/bin/env python3

"""
backup.py

Backup step, per hosting account:
- run v-backup-user
- locate the newest <user>.*.tar in the backup directory
- upload it to <remote>:<bucket>/ via rclone
- delete the local archive, but only after the upload succeeded
- record exactly one outcome row for the account
"""

from __future__ import annotations

import time
from typing import List, Optional

from hestiabackup.config import Settings
from hestiabackup.executor import create_managed_executor
from hestiabackup.hestia import find_latest_archive, run_user_backup
from hestiabackup.logger import get_logger
from hestiabackup.rclone import rclone_copy
from hestiabackup.report import BackupRow, BackupStatus, RunReport, human_size


def backup_user(user: str, settings: Settings, report: RunReport) -> BackupStatus:
    logger = get_logger(__name__)
    start = time.monotonic()

    def finish(status: BackupStatus, size: Optional[int] = None) -> BackupStatus:
        if status.ok:
            row = BackupRow(user, status, size_bytes=size, duration=time.monotonic() - start)
        else:
            row = BackupRow(user, status)
        report.record_backup(row)
        return status

    logger.info(f"Starting backup for user: {user}")

    try:
        if not run_user_backup(settings, user):
            logger.error(f"✗ Backup command failed: {user}")
            return finish(BackupStatus.COMMAND_FAILED)

        archive = find_latest_archive(settings.backup_dir, user)
        if archive is None:
            logger.error(f"✗ Backup file not found: {user} (command succeeded, nothing in {settings.backup_dir})")
            return finish(BackupStatus.FILE_NOT_FOUND)

        size = archive.stat().st_size
        res = rclone_copy(archive, settings.remote_target, check=False)
        if res.returncode != 0:
            logger.error(f"✗ S3 upload failed: {user} (local archive kept: {archive})")
            return finish(BackupStatus.UPLOAD_FAILED)

        logger.info(f"✓ Backup successful: {user} (Size: {human_size(size)})")
        try:
            archive.unlink()
        except OSError as e:
            logger.error(f"✗ Uploaded but could not delete local archive {archive}: {e}")
            return finish(BackupStatus.ERROR)
        logger.info(f"✓ Local backup deleted: {user}")
        return finish(BackupStatus.SUCCESS, size)

    except (KeyboardInterrupt, InterruptedError):
        logger.error(f"Backup interrupted: {user}")
        raise
    except Exception as e:
        logger.exception(f"✗ Unexpected error backing up {user}: {e}")
        return finish(BackupStatus.ERROR)


def run_backup(settings: Settings, users: List[str], report: RunReport) -> None:
    """
    Back up every account, one outcome row each.

    Failures are per account and never stop the loop; there are no retries
    within a run, the next scheduled cycle picks failed accounts up again.
    """
    logger = get_logger(__name__)

    def _process_user(user: str):
        return backup_user(user, settings, report)

    with create_managed_executor(max_workers=settings.max_workers, name="Backup") as executor:
        executor.map(_process_user, users)
        if executor.is_interrupted():
            logger.error(f"Backup interrupted...")
            raise KeyboardInterrupt()
