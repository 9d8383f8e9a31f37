#!/usr/bin/env python3
"""
__main__.py

Top-level CLI for hestiabackup.

  hestiabackup            interactive setup on first run, usage error afterwards
  hestiabackup setup      (re)run interactive setup
  hestiabackup backup     back up every hosting account
  hestiabackup cleanup    delete remote archives past retention
  hestiabackup check      validate the backup system
"""

from __future__ import annotations

import argparse
import sys
import time
from pathlib import Path

from hestiabackup.config import ConfigError, is_configured, load_settings, prompt_settings, save_settings
from hestiabackup.executor import get_global_interrupt_manager
from hestiabackup.logger import setup_logger, get_logger
from hestiabackup.orchestrator import check_remote, run_mode
from hestiabackup.utils import PreflightError, install_signal_handlers
from hestiabackup.validate import log_report, run_checks

ACTIONS = ("backup", "cleanup", "setup", "check")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="hestiabackup",
        description="HestiaCP account backups to S3 via rclone, with retention cleanup and email reports",
    )
    p.add_argument("action", nargs="?", help=f"One of: {', '.join(ACTIONS)}")
    p.add_argument("--config", type=Path, help="Path to config file (default /etc/hestia/backup.conf)")
    p.add_argument("--secret", type=Path, help="Path to API key file (default /etc/hestia/brevo.key)")
    return p


def run_setup(config_path, secret_path) -> None:
    settings = load_settings(config_path if config_path and config_path.exists() else None, secret_path)
    if config_path is not None:
        settings.config_path = config_path
    setup_logger(settings)
    logger = get_logger(__name__)

    print("=== HestiaCP Backup Automation Setup ===")
    settings = prompt_settings(settings)
    check_remote(settings)

    logger.info("Configuration Summary:")
    logger.info(f"  Rclone Remote: {settings.rclone_remote}")
    logger.info(f"  S3 Bucket: {settings.rclone_bucket}")
    logger.info(f"  Retention: {settings.retention_days} days")
    logger.info(f"  Email to: {settings.to_email}")
    logger.info(f"  Schedule: {settings.schedule_label or '-'}")

    save_settings(settings)
    logger.info(f"✓ Configuration saved securely to {settings.config_path} and {settings.secret_path}")


def main():
    parser = build_parser()
    args = parser.parse_args()

    action = args.action
    if action is None:
        if is_configured(args.config, args.secret):
            parser.print_usage(sys.stderr)
            sys.exit(1)
        action = "setup"

    if action not in ACTIONS:
        parser.print_usage(sys.stderr)
        sys.stderr.write(f"hestiabackup: unknown action '{action}'\n")
        sys.exit(1)

    if action == "setup":
        try:
            run_setup(args.config, args.secret)
        except (ConfigError, PreflightError, FileNotFoundError) as e:
            get_logger(__name__).error(f"✗ {e}")
            sys.exit(1)
        except (KeyboardInterrupt, EOFError):
            sys.stderr.write("\nSetup aborted, nothing saved.\n")
            sys.exit(1)
        return

    try:
        settings = load_settings(args.config, args.secret)
        if action != "check":
            settings.require_complete()
    except (ConfigError, FileNotFoundError) as e:
        get_logger(__name__).error(str(e))
        sys.exit(2)

    log_path = {"backup": settings.backup_log, "cleanup": settings.cleanup_log}.get(action)
    setup_logger(settings, log_path)
    logger = get_logger(__name__)

    if action == "check":
        report = run_checks(settings)
        log_report(report)
        sys.exit(0 if report.ok else 1)

    interrupt_manager = get_global_interrupt_manager()

    def on_interrupt(signum, frame):
        logger.warning("Interrupt received. Stopping; accounts in progress are left as they are.")
        interrupt_manager.interrupt_all()
        sys.exit(1)

    install_signal_handlers(on_interrupt)

    start = time.time()
    try:
        run_mode(settings, action)
    except PreflightError as e:
        logger.error(f"✗ {e}")
        sys.exit(2)

    elapsed = time.time() - start
    logger.info(f"Action '{action}' completed in {elapsed:.1f}s")


if __name__ == "__main__":
    main()
