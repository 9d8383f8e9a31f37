#!/usr/bin/env python3
"""
Shared pytest fixtures and configuration for hestiabackup tests.
"""

import datetime
import subprocess
import sys
from pathlib import Path

import pytest

# Ensure repository root is in path for package imports
parent_dir = Path(__file__).parent.parent
sys.path.insert(0, str(parent_dir))

from hestiabackup import config, logger as hb_logger, rclone
from hestiabackup.executor import get_global_interrupt_manager

Settings = config.Settings

NOW = datetime.datetime(2025, 6, 15, 3, 0, 0, tzinfo=datetime.timezone.utc)


def completed(returncode=0, stdout="", stderr=""):
    """A CompletedProcess like run_cmd returns."""
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


def archive_name(user, days_old, now=NOW):
    """HestiaCP archive name dated `days_old` days before `now`."""
    day = now.date() - datetime.timedelta(days=days_old)
    return f"{user}.{day.isoformat()}_05-10-00.tar"


@pytest.fixture(autouse=True)
def reset_interrupts():
    get_global_interrupt_manager().reset()
    yield
    get_global_interrupt_manager().reset()


@pytest.fixture(autouse=True)
def reset_rclone_defaults():
    """Start every test from the same rclone command prefix."""
    rclone.set_rclone_defaults("INFO")
    yield
    rclone.set_rclone_defaults("INFO")


@pytest.fixture(autouse=True)
def reset_logger():
    """Drop the configured logger so caplog sees records through the fallback logger."""
    yield
    if hb_logger._LOGGER is not None:
        for h in hb_logger._LOGGER.handlers[:]:
            hb_logger._LOGGER.removeHandler(h)
            h.close()
    hb_logger._LOGGER = None


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def test_settings(tmp_path):
    """Create a Settings object with test paths."""
    backup_dir = tmp_path / "backup"
    backup_dir.mkdir()
    return Settings(
        rclone_remote="s3-test",
        rclone_bucket="backups.example",
        to_email="admin@example.com",
        from_email="noreply@example.com",
        api_key="test-api-key",
        email_api_url="https://api.example.test/v3/smtp/email",
        email_timeout=5,
        retention_days=42,
        schedule_label="",
        age_source="filename",
        max_workers=1,
        backup_dir=backup_dir,
        hestia_root=tmp_path / "hestia",
        home_dir=tmp_path / "home",
        admin_user="admin",
        require_web_content=False,
        backup_log=tmp_path / "logs" / "backup-automation.log",
        cleanup_log=tmp_path / "logs" / "cleanup-automation.log",
        log_level="INFO",
        max_log_size=1024 * 1024,
        max_log_files=2,
        rclone_log_level="INFO",
        config_path=tmp_path / "backup.conf",
        secret_path=tmp_path / "brevo.key",
    )


@pytest.fixture
def hestia_bin(test_settings):
    """Fake HestiaCP bin directory with the two commands present."""
    bin_dir = test_settings.hestia_bin
    bin_dir.mkdir(parents=True)
    for name in ("v-list-users", "v-backup-user"):
        tool = bin_dir / name
        tool.write_text("#!/bin/sh\n")
        tool.chmod(0o755)
    return bin_dir


@pytest.fixture
def mock_email(mocker):
    """Mock the HTTP POST used by the notifier."""
    response = mocker.Mock(status_code=201)
    response.raise_for_status.return_value = None
    return mocker.patch("hestiabackup.notifier.requests.post", return_value=response)
