#!/usr/bin/env python3

"""
hestia.py

Adapter for the HestiaCP command line tools:
- enumerate hosting accounts (v-list-users)
- run a per-account backup (v-backup-user)
- locate the archive it produced
- read per-account backup quotas
"""

from __future__ import annotations

import glob
import re
import shutil
from pathlib import Path
from typing import List, Optional

from hestiabackup.config import Settings
from hestiabackup.logger import get_logger
from hestiabackup.utils import PreflightError, run_cmd

QUOTA_RE = re.compile(r"""^BACKUPS=['"]?([^'"\s]*)['"]?\s*$""", re.MULTILINE)


def hestia_command(settings: Settings, name: str) -> str:
    """Resolve a HestiaCP CLI tool, preferring the panel's own bin directory."""
    candidate = settings.hestia_bin / name
    if candidate.is_file():
        return str(candidate)
    found = shutil.which(name)
    if found:
        return found
    raise PreflightError(f"HestiaCP command '{name}' not found (is the control panel installed?)")


def has_web_content(settings: Settings, user: str) -> bool:
    web_dir = settings.home_dir / user / "web"
    return web_dir.is_dir() and any(web_dir.iterdir())


def list_users(settings: Settings) -> List[str]:
    """
    Return hosting account names in control-panel order, without the admin account.

    Raises PreflightError when the panel CLI is missing or the listing fails,
    since nothing can be backed up or cleaned without it.
    """
    logger = get_logger(__name__)
    cmd = hestia_command(settings, "v-list-users")
    res = run_cmd(cmd, "plain", check=False)
    if res.returncode != 0:
        raise PreflightError(f"'{cmd} plain' failed with exit code {res.returncode}")

    users: List[str] = []
    for line in (res.stdout or "").splitlines():
        parts = line.split()
        if not parts:
            continue
        user = parts[0]
        if user == settings.admin_user:
            continue
        if settings.require_web_content and not has_web_content(settings, user):
            logger.debug(f"Skipping {user}: no web content under {settings.home_dir / user / 'web'}")
            continue
        users.append(user)

    logger.debug(f"Enumerated {len(users)} accounts: {', '.join(users)}")
    return users


def run_user_backup(settings: Settings, user: str) -> bool:
    cmd = hestia_command(settings, "v-backup-user")
    res = run_cmd(cmd, user, check=False)
    return res.returncode == 0


def find_latest_archive(backup_dir: Path, user: str) -> Optional[Path]:
    """Most recently modified <user>.*.tar in backup_dir, or None."""
    candidates = [p for p in backup_dir.glob(f"{glob.escape(user)}.*.tar") if p.is_file()]
    if not candidates:
        return None
    return max(candidates, key=lambda p: p.stat().st_mtime)


def read_backup_quota(settings: Settings, user: str) -> Optional[str]:
    user_conf = settings.hestia_root / "data" / "users" / user / "user.conf"
    if not user_conf.is_file():
        return None
    m = QUOTA_RE.search(user_conf.read_text(encoding="utf-8", errors="replace"))
    return m.group(1) if m else None
