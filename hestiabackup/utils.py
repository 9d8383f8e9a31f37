#!/usr/bin/env python3

"""
utils.py

Utility helpers shared across the package:
- subprocess run wrapper
- pre-run tool checks
- signal handler installation
"""

from __future__ import annotations

import shutil
import signal
import socket
import subprocess
from typing import Union

from hestiabackup.executor import get_global_interrupt_manager
from hestiabackup.logger import get_logger


class PreflightError(RuntimeError):
    """A required external tool is missing; the run must abort before touching any account."""


INTERRUPT_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def _interrupted(returncode: int) -> bool:
    """A child ended by SIGINT/SIGTERM, or any signal once the run is stopping."""
    if returncode >= 0:
        return False
    return -returncode in INTERRUPT_SIGNALS or get_global_interrupt_manager().is_interrupted()


def run_cmd(*args: str, check: bool = True, log_output: bool = True) -> Union[
    subprocess.CompletedProcess, subprocess.CalledProcessError]:
    """
    Run a command and return CompletedProcess.
    Logs errors (and success at debug) so callers can rely on logs without repeating prints.

    A child stopped by SIGINT/SIGTERM raises KeyboardInterrupt. A child killed
    by any other signal (e.g. SIGKILL from the OOM killer) is returned as an
    ordinary failure so only the account it ran for fails.
    """
    local_logger = get_logger(__name__)
    local_logger.debug(f"Run command: {' '.join(args)}")
    try:
        cp: subprocess.CompletedProcess = subprocess.run(args, check=check, capture_output=True, text=True)
        if _interrupted(cp.returncode):
            local_logger.error(f"Command interrupted: {' '.join(args)}")
            raise KeyboardInterrupt()
        out = (cp.stdout or "") if log_output else "<output hidden>"
        if cp.returncode == 0:
            local_logger.debug(f"Command succeeded: {' '.join(args)} -> {out.strip()[:400]} | {cp.returncode}")
        elif cp.returncode < 0:
            local_logger.warning(f"Command killed by signal {-cp.returncode}: {' '.join(args)}")
        else:
            local_logger.debug(f"Command exited {cp.returncode}: {' '.join(args)} -> {(cp.stderr or '').strip()[:400]}")
        return cp
    except subprocess.CalledProcessError as e:
        if _interrupted(e.returncode):
            local_logger.error(f"Command interrupted: {' '.join(args)}")
            raise KeyboardInterrupt()
        local_logger.error(f"Command failed: {' '.join(args)} -> {(e.stderr or '').strip()}")
        return e


def require_tool(name: str) -> str:
    """Return the absolute path of an executable on PATH or raise PreflightError."""
    path = shutil.which(name)
    if path is None:
        raise PreflightError(f"Required tool '{name}' not found on PATH")
    return path


def hostname() -> str:
    return socket.gethostname()


def install_signal_handlers(on_interrupt):
    signal.signal(signal.SIGINT, on_interrupt)
    signal.signal(signal.SIGTERM, on_interrupt)
