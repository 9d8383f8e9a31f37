#!/usr/bin/env python3

"""
validate.py

Functional check of the backup subsystem against the expected baseline:
- config and secret present, secret not readable by group/other
- rclone installed, remote defined, bucket reachable
- HestiaCP installed, every account keeps more than one local backup
- backup and cleanup logs show cycles that started and completed

Checks read state only; nothing is changed.
"""

from __future__ import annotations

import shutil
import stat
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple

from hestiabackup.config import Settings
from hestiabackup.hestia import list_users, read_backup_quota
from hestiabackup.logger import get_logger
from hestiabackup.orchestrator import bucket_reachable, remote_configured
from hestiabackup.utils import PreflightError, hostname

BACKUP_STARTED = "Starting automated backup cycle"
BACKUP_COMPLETED = "Backup cycle complete"
CLEANUP_STARTED = "Starting backup cleanup cycle"


class CheckStatus(Enum):
    PASS = "✅"
    FAIL = "❌"
    WARN = "⚠️"


@dataclass(frozen=True)
class CheckResult:
    name: str
    status: CheckStatus
    detail: str = ""


@dataclass
class ValidationReport:
    results: List[CheckResult] = field(default_factory=list)

    def add(self, name: str, status: CheckStatus, detail: str = "") -> CheckResult:
        result = CheckResult(name, status, detail)
        self.results.append(result)
        return result

    def count(self, status: CheckStatus) -> int:
        return sum(1 for r in self.results if r.status is status)

    @property
    def ok(self) -> bool:
        return self.count(CheckStatus.FAIL) == 0


def _last_match(path: Path, needle: str) -> Optional[Tuple[int, str]]:
    """(line number, line) of the last line containing `needle`."""
    found = None
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        for lineno, line in enumerate(f):
            if needle in line:
                found = (lineno, line.rstrip("\n"))
    return found


def check_files(settings: Settings, report: ValidationReport) -> None:
    if settings.config_path.is_file():
        report.add("Config file present", CheckStatus.PASS, str(settings.config_path))
    else:
        report.add("Config file present", CheckStatus.FAIL, f"{settings.config_path} not found")

    if not settings.secret_path.is_file():
        report.add("Secret file present", CheckStatus.FAIL, f"{settings.secret_path} not found")
    else:
        mode = stat.S_IMODE(settings.secret_path.stat().st_mode)
        if mode & 0o077:
            report.add("Secret file permissions", CheckStatus.FAIL, f"mode {mode:o}, expected 600")
        else:
            report.add("Secret file permissions", CheckStatus.PASS, f"mode {mode:o}")

    missing = settings.missing()
    if missing:
        report.add("Required settings", CheckStatus.FAIL, f"missing: {', '.join(missing)}")
    else:
        report.add("Required settings", CheckStatus.PASS, f"retention {settings.retention_days} days")


def check_rclone(settings: Settings, report: ValidationReport) -> None:
    if shutil.which("rclone") is None:
        report.add("rclone installed", CheckStatus.FAIL, "not on PATH")
        return
    report.add("rclone installed", CheckStatus.PASS)

    if not settings.rclone_remote:
        return
    if not remote_configured(settings):
        report.add("Rclone remote configured", CheckStatus.FAIL, f"'{settings.rclone_remote}' not defined")
        return
    report.add("Rclone remote configured", CheckStatus.PASS, settings.rclone_remote)

    if bucket_reachable(settings):
        report.add("Bucket reachable", CheckStatus.PASS, settings.remote_target)
    else:
        report.add("Bucket reachable", CheckStatus.WARN, f"cannot list {settings.remote_target}")


def check_accounts(settings: Settings, report: ValidationReport) -> None:
    try:
        users = list_users(settings)
    except PreflightError as e:
        report.add("HestiaCP installed", CheckStatus.FAIL, str(e))
        return
    report.add("HestiaCP installed", CheckStatus.PASS)

    if not users:
        report.add("Hosting accounts", CheckStatus.WARN, "no non-admin accounts found")
        return

    single = [u for u in users if read_backup_quota(settings, u) == "1"]
    if single:
        report.add("Backup quotas", CheckStatus.FAIL, f"BACKUPS='1' for: {', '.join(single)}")
    else:
        report.add("Backup quotas", CheckStatus.PASS, f"{len(users)} accounts checked")


def check_logs(settings: Settings, report: ValidationReport) -> None:
    backup_log = settings.backup_log
    if not backup_log.is_file() or backup_log.stat().st_size == 0:
        report.add("Backup log", CheckStatus.WARN, f"{backup_log} missing or empty (backups may not have run yet)")
    else:
        started = _last_match(backup_log, BACKUP_STARTED)
        if started is None:
            report.add("Backup log", CheckStatus.WARN, "no backup cycles found in log")
        else:
            completed = _last_match(backup_log, BACKUP_COMPLETED)
            # completion must follow the latest start
            if completed is None or completed[0] < started[0]:
                report.add("Last backup completed", CheckStatus.FAIL, f"started {started[1][:19]}, did not complete")
            else:
                report.add("Last backup completed", CheckStatus.PASS, completed[1][:19])

    cleanup_log = settings.cleanup_log
    if not cleanup_log.is_file() or cleanup_log.stat().st_size == 0:
        report.add("Cleanup log", CheckStatus.WARN, f"{cleanup_log} missing or empty")
    else:
        started = _last_match(cleanup_log, CLEANUP_STARTED)
        if started is None:
            report.add("Cleanup log", CheckStatus.WARN, "no cleanup cycles found in log")
        else:
            report.add("Last cleanup started", CheckStatus.PASS, started[1][:19])


def run_checks(settings: Settings) -> ValidationReport:
    report = ValidationReport()
    check_files(settings, report)
    check_rclone(settings, report)
    check_accounts(settings, report)
    check_logs(settings, report)
    return report


def log_report(report: ValidationReport, host: Optional[str] = None) -> None:
    logger = get_logger(__name__)
    logger.info(f"Backup system validation - {host or hostname()}")
    for r in report.results:
        line = f"{r.status.value} {r.name}" + (f": {r.detail}" if r.detail else "")
        if r.status is CheckStatus.FAIL:
            logger.error(line)
        elif r.status is CheckStatus.WARN:
            logger.warning(line)
        else:
            logger.info(line)
    logger.info(
        f"Passed: {report.count(CheckStatus.PASS)} | Failed: {report.count(CheckStatus.FAIL)} "
        f"| Warnings: {report.count(CheckStatus.WARN)}"
    )
