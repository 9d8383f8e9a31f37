#!/usr/bin/env python3

"""
hestiabackup
Backup and retention automation for HestiaCP hosting accounts via rclone.

Each run either uploads fresh account archives or prunes old remote ones,
then emails a report.
"""

__version__ = "0.1.0"

__all__ = [
    "config",
    "utils",
    "hestia",
    "rclone",
    "report",
    "backup",
    "cleanup",
    "notifier",
    "orchestrator",
    "validate",
    "executor",
    "logger",
]
