# hestiabackup/rclone.py
from __future__ import annotations

from pathlib import Path
from typing import Union

# Default arguments for all rclone calls
RCLONE_BASE = ["rclone", "--log-level", "INFO"]


def _run_rclone(*args: Union[str, Path], check: bool = True, log_output: bool = True):
    """Low-level helper that executes rclone with consistent defaults."""
    cmd = RCLONE_BASE + [str(a) for a in args]
    from hestiabackup.utils import run_cmd
    return run_cmd(*cmd, check=check, log_output=log_output)


def set_rclone_defaults(log_level="INFO"):
    global RCLONE_BASE
    RCLONE_BASE = [
        "rclone",
        f"--log-level={log_level}",
    ]


# --------------------------
# Core command wrappers
# --------------------------

def rclone_copy(src: Union[str, Path], dst: Union[str, Path], *extra: str, check: bool = True):
    """Copy directory or file to remote/local."""
    return _run_rclone("copy", str(src), str(dst), *extra, check=check)


def rclone_deletefile(remote_path: str, check: bool = True):
    """Delete a single remote file."""
    return _run_rclone("deletefile", remote_path, check=check)


def rclone_lsjson(remote_path: str, *extra: str, check: bool = True):
    """List remote files as JSON."""
    return _run_rclone("lsjson", remote_path, *extra, check=check)


def rclone_lsf(remote_path: str, *extra: str, check: bool = True):
    """List remote files as LSF."""
    return _run_rclone("lsf", remote_path, *extra, check=check)


def rclone_config_show(remote: str, check: bool = True):
    """Show the configuration of a named remote; fails if it is not defined."""
    # Output contains credentials; keep it out of the logs
    return _run_rclone("config", "show", remote, check=check, log_output=False)
