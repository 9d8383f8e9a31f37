#!/usr/bin/env python3

"""
notifier.py

Email run reports through a transactional-email HTTP API (Brevo by default).

Sending is best-effort: a failed POST is logged and reported back as False,
it never raises and is never retried. Delivery is not confirmed.
"""

from __future__ import annotations

import datetime
import html
from typing import Any, Dict, Optional

import requests

from hestiabackup.config import Settings
from hestiabackup.logger import get_logger
from hestiabackup.report import BackupRow, CleanupRow, RunReport, StatKey, format_gb, format_mb
from hestiabackup.utils import hostname

BACKUP_SENDER = "Backup Automation"
CLEANUP_SENDER = "Backup Cleanup"

TABLE_OPEN = '<table border="1" cellpadding="10">'


def _date_line(now: Optional[datetime.datetime] = None) -> str:
    now = now or datetime.datetime.now(datetime.timezone.utc)
    return now.astimezone(datetime.timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def _with_label(subject: str, settings: Settings) -> str:
    return f"{subject} [{settings.schedule_label}]" if settings.schedule_label else subject


def render_backup_html(report: RunReport, host: str, now: Optional[datetime.datetime] = None) -> str:
    esc = html.escape
    rows = "".join(
        f"<tr><td><strong>{esc(r.user)}</strong></td><td>{esc(r.status.label)}</td>"
        f"<td>{r.size_display}</td><td>{r.duration_display}</td></tr>"
        for r in report.rows if isinstance(r, BackupRow)
    )
    return (
        f"<html><body><h2>Automated Backup Report - {esc(host)}</h2>"
        f"<h3>Summary</h3><p>"
        f"<strong>Total Users Backed Up:</strong> {report[StatKey.SUCCEEDED]} / {report[StatKey.PROCESSED]}<br>"
        f"<strong>Failed Backups:</strong> {report[StatKey.FAILED]}<br>"
        f"<strong>Total Data Transferred:</strong> {format_gb(report[StatKey.BYTES_TRANSFERRED])} GB<br>"
        f"<strong>Duration:</strong> {report.elapsed()} s<br>"
        f"<strong>Date:</strong> {_date_line(now)}</p>"
        f"<h3>Detailed Results</h3>{TABLE_OPEN}"
        f"<tr><th>User</th><th>Status</th><th>Size</th><th>Duration</th></tr>{rows}</table>"
        f"</body></html>"
    )


def _cleanup_action(row: CleanupRow) -> str:
    if row.list_failed:
        return "✗ Listing Failed"
    action = f"Deleted: {row.deleted}"
    if row.delete_failed:
        action += f" (failed: {row.delete_failed})"
    return action


def render_cleanup_html(report: RunReport, settings: Settings, host: str,
                        now: Optional[datetime.datetime] = None) -> str:
    esc = html.escape
    rows = "".join(
        f"<tr><td><strong>{esc(r.user)}</strong></td><td>{esc(_cleanup_action(r))}</td>"
        f"<td>{format_mb(r.bytes_freed)}</td></tr>"
        for r in report.rows if isinstance(r, CleanupRow) and r.has_action
    )
    skipped = report[StatKey.SKIPPED]
    skipped_line = f"<br><strong>Skipped (no date):</strong> {skipped}" if skipped else ""
    return (
        f"<html><body><h2>Automated Backup Cleanup Report - {esc(host)}</h2>"
        f"<h3>Summary</h3><p>"
        f"<strong>Total Files Deleted:</strong> {report[StatKey.DELETED]}<br>"
        f"<strong>Total Space Freed:</strong> {format_gb(report[StatKey.BYTES_FREED])} GB<br>"
        f"<strong>Retention Policy:</strong> {settings.retention_days} days<br>"
        f"<strong>Duration:</strong> {report.elapsed()} s<br>"
        f"<strong>Date:</strong> {_date_line(now)}{skipped_line}</p>"
        f"<h3>Detailed Results</h3>{TABLE_OPEN}"
        f"<tr><th>User</th><th>Action</th><th>Space Freed</th></tr>{rows}</table>"
        f"</body></html>"
    )


def build_payload(settings: Settings, sender_name: str, subject: str, html_content: str) -> Dict[str, Any]:
    return {
        "sender": {"name": sender_name, "email": settings.from_email},
        "to": [{"email": settings.to_email}],
        "subject": subject,
        "htmlContent": html_content,
    }


def send_email(settings: Settings, sender_name: str, subject: str, html_content: str) -> bool:
    logger = get_logger(__name__)
    payload = build_payload(settings, sender_name, subject, html_content)
    headers = {
        "accept": "application/json",
        "content-type": "application/json",
        "api-key": settings.api_key,
    }
    try:
        response = requests.post(settings.email_api_url, json=payload, headers=headers,
                                 timeout=settings.email_timeout)
        response.raise_for_status()
    except requests.RequestException as e:
        logger.error(f"✗ Email send failed (run result unaffected): {e}")
        return False
    logger.info(f"Email report sent to: {settings.to_email}")
    return True


def send_backup_report(settings: Settings, report: RunReport, host: Optional[str] = None) -> bool:
    host = host or hostname()
    subject = _with_label(
        f"Backup Report - {host} - {report[StatKey.SUCCEEDED]}/{report[StatKey.PROCESSED]} Successful", settings
    )
    return send_email(settings, BACKUP_SENDER, subject, render_backup_html(report, host))


def send_cleanup_report(settings: Settings, report: RunReport, host: Optional[str] = None) -> bool:
    host = host or hostname()
    subject = _with_label(f"Cleanup Report - {host} - {report[StatKey.DELETED]} Files Removed", settings)
    return send_email(settings, CLEANUP_SENDER, subject, render_cleanup_html(report, settings, host))
