#!/usr/bin/env python3
"""
orchestrator.py

Run dispatch for hestiabackup.
Checks prerequisites, enumerates accounts, runs the backup or cleanup loop
and emails the report.
"""

from __future__ import annotations

import datetime
from typing import Optional

from hestiabackup.backup import run_backup
from hestiabackup.cleanup import run_cleanup
from hestiabackup.config import ConfigError, Settings
from hestiabackup.hestia import hestia_command, list_users
from hestiabackup.logger import get_logger
from hestiabackup.notifier import send_backup_report, send_cleanup_report
from hestiabackup.rclone import rclone_config_show, rclone_lsf
from hestiabackup.report import RunReport, StatKey, format_gb, log_status
from hestiabackup.utils import require_tool

BANNER = "=========================================="
NO_USERS = "No users with domains found."


def preflight(settings: Settings) -> None:
    """Raise PreflightError unless rclone and the HestiaCP CLI are available."""
    require_tool("rclone")
    hestia_command(settings, "v-list-users")
    hestia_command(settings, "v-backup-user")


def remote_configured(settings: Settings) -> bool:
    return rclone_config_show(settings.rclone_remote, check=False).returncode == 0


def bucket_reachable(settings: Settings) -> bool:
    return rclone_lsf(settings.remote_target, "--max-depth", "1", check=False).returncode == 0


def check_remote(settings: Settings) -> bool:
    """
    Verify the rclone remote exists and the bucket answers.

    A missing rclone binary raises PreflightError and an undefined remote is a
    configuration error. An unreachable bucket is only a warning since
    credentials or network may be fixed later.
    """
    logger = get_logger(__name__)
    require_tool("rclone")
    if not remote_configured(settings):
        raise ConfigError(
            f"Rclone remote '{settings.rclone_remote}' not found. Configure it first: rclone config"
        )
    logger.info("Testing S3 connection...")
    if bucket_reachable(settings):
        logger.info("✓ S3 connection successful")
        return True
    logger.warning(f"✗ Cannot connect to S3 bucket {settings.remote_target}")
    return False


def run_backup_cycle(settings: Settings) -> RunReport:
    logger = get_logger(__name__)
    logger.info(BANNER)
    logger.info("Starting automated backup cycle")
    logger.info(BANNER)

    preflight(settings)
    users = list_users(settings)
    report = RunReport("backup")

    if not users:
        logger.info(f"{NO_USERS} Skipping backup cycle.")
    else:
        run_backup(settings, users, report)
        send_backup_report(settings, report)

    logger.info(BANNER)
    logger.info("Backup cycle complete")
    logger.info(f"Success: {report[StatKey.SUCCEEDED]} | Failed: {report[StatKey.FAILED]}")
    logger.info(BANNER)
    log_status(report, "backup")
    return report


def run_cleanup_cycle(settings: Settings, now: Optional[datetime.datetime] = None) -> RunReport:
    logger = get_logger(__name__)
    logger.info(BANNER)
    logger.info("Starting backup cleanup cycle")
    logger.info(BANNER)

    preflight(settings)
    users = list_users(settings)
    report = RunReport("cleanup")

    if not users:
        logger.info(f"{NO_USERS} Skipping cleanup cycle.")
    else:
        logger.info(f"Retention: {settings.retention_days} days | Accounts: {len(users)}")
        run_cleanup(settings, users, report, now)
        send_cleanup_report(settings, report)

    if report[StatKey.SKIPPED]:
        logger.warning(f"{report[StatKey.SKIPPED]} remote archives had no parsable date and were kept")

    logger.info(BANNER)
    logger.info("Cleanup cycle complete")
    logger.info(
        f"Total Deleted: {report[StatKey.DELETED]} | Space Freed: {format_gb(report[StatKey.BYTES_FREED])}GB"
    )
    logger.info(BANNER)
    log_status(report, "cleanup")
    return report


def run_mode(settings: Settings, mode: str) -> RunReport:
    if mode == "backup":
        return run_backup_cycle(settings)
    if mode == "cleanup":
        return run_cleanup_cycle(settings)
    raise ValueError(f"Unknown mode: {mode}")
