#!/usr/bin/env python3

"""
config.py

Configuration store for the hestiabackup package.

Supports:
- shell-style key/value files (KEY="value"), the format of /etc/hestia/backup.conf.
  The file is parsed with shlex, never sourced or executed.
- TOML when the config path ends in .toml, using stdlib tomllib (Python 3.11+)
  or the third-party tomli package on older interpreters

The API key lives in a separate single-line secret file with mode 0600.

Precedence for both paths:
1. CLI --config <path> / --secret <path>
2. SECRET_FILE key inside the config file (secret only)
3. /etc/hestia/backup.conf and /etc/hestia/brevo.key
"""

from __future__ import annotations

import getpass
import os
import shlex
import socket
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

DEFAULT_CONFIG_PATH = Path("/etc/hestia/backup.conf")
DEFAULT_SECRET_PATH = Path("/etc/hestia/brevo.key")
DEFAULT_EMAIL_API_URL = "https://api.brevo.com/v3/smtp/email"
AGE_SOURCES = ("filename", "modtime")


class ConfigError(RuntimeError):
    """Required configuration is missing or invalid."""


@dataclass
class Settings:
    # Object storage
    rclone_remote: str
    rclone_bucket: str

    # Notification
    to_email: str
    from_email: str
    api_key: str = field(repr=False)
    email_api_url: str
    email_timeout: int

    # Behaviour
    retention_days: int
    schedule_label: str
    age_source: str
    max_workers: int

    # HestiaCP
    backup_dir: Path
    hestia_root: Path
    home_dir: Path
    admin_user: str
    require_web_content: bool

    # Logging
    backup_log: Path
    cleanup_log: Path
    log_level: str
    max_log_size: int
    max_log_files: int

    # rclone
    rclone_log_level: str

    # Sources
    config_path: Path
    secret_path: Path

    @property
    def remote_target(self) -> str:
        return f"{self.rclone_remote}:{self.rclone_bucket}/"

    @property
    def hestia_bin(self) -> Path:
        return self.hestia_root / "bin"

    def missing(self) -> List[str]:
        required = [
            ("RCLONE_REMOTE", self.rclone_remote),
            ("RCLONE_BUCKET", self.rclone_bucket),
            ("TO_EMAIL", self.to_email),
            ("API key", self.api_key),
        ]
        return [name for name, value in required if not value]

    def require_complete(self) -> None:
        missing = self.missing()
        if missing:
            raise ConfigError(
                f"Missing required configuration: {', '.join(missing)} "
                f"(config: {self.config_path}, secret: {self.secret_path}). Run 'hestiabackup setup'."
            )


def _load_toml(path: Path) -> Dict[str, Any]:
    # Prefer stdlib tomllib (3.11+), else fallback to third-party tomli if available.
    try:
        import tomllib  # type: ignore
        loader = tomllib.load
    except Exception:
        try:
            import tomli  # type: ignore
            loader = tomli.load
        except Exception:
            raise RuntimeError(
                f"TOML config {path} requested but no TOML parser available. "
                f"Install Python 3.11+ or the 'tomli' package, or use a key/value config."
            )

    with open(path, "rb") as f:
        data = loader(f)
    return data


def _load_keyvalue(path: Path) -> Dict[str, Any]:
    data: Dict[str, Any] = {}
    with open(path, "r", encoding="utf-8") as f:
        for lineno, raw in enumerate(f, start=1):
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            if line.startswith("export "):
                line = line[len("export "):].lstrip()
            key, sep, value = line.partition("=")
            if not sep or not key.strip().isidentifier():
                raise ConfigError(f"{path}:{lineno}: expected KEY=value, got {raw.rstrip()!r}")
            try:
                tokens = shlex.split(value, comments=True)
            except ValueError as e:
                raise ConfigError(f"{path}:{lineno}: {e}")
            data[key.strip()] = " ".join(tokens)
    return data


def _load_secret(path: Path) -> str:
    if not path.exists():
        return ""
    with open(path, "r", encoding="utf-8") as f:
        return f.readline().strip()


def _coerce_bool(v: Any, default: bool) -> bool:
    if v is None:
        return default
    if isinstance(v, bool):
        return v
    s = str(v).strip().lower()
    if s in ("1", "true", "yes", "on"):
        return True
    if s in ("0", "false", "no", "off"):
        return False
    return default


def _coerce_int(v: Any, default: int) -> int:
    if v is None or v == "":
        return default
    try:
        return int(v)
    except Exception:
        return default


def _default_from_email() -> str:
    return f"noreply@{socket.getfqdn()}"


def is_configured(config_path: Optional[Path] = None, secret_path: Optional[Path] = None) -> bool:
    config_path = config_path or DEFAULT_CONFIG_PATH
    if not config_path.exists():
        return False
    try:
        return not load_settings(config_path, secret_path).missing()
    except (ConfigError, OSError):
        return False


def load_settings(config_path: Optional[Path] = None, secret_path: Optional[Path] = None) -> Settings:
    data: Dict[str, Any] = {}

    if config_path is not None:
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        config_path = DEFAULT_CONFIG_PATH

    if config_path.exists():
        if config_path.suffix.lower() == ".toml":
            data = _load_toml(config_path)
        else:
            data = _load_keyvalue(config_path)

    # Shell-style files use upper-case keys, TOML uses lower-case; accept both
    data = {str(k).lower(): v for k, v in data.items()}

    def pick(key: str, default: Any = None) -> Any:
        value = data.get(key)
        return default if value is None else value

    if secret_path is None:
        secret_path = Path(pick("secret_file", DEFAULT_SECRET_PATH))
    api_key = _load_secret(secret_path)

    age_source = str(pick("age_source", "filename")).strip().lower()
    if age_source not in AGE_SOURCES:
        raise ConfigError(f"AGE_SOURCE must be one of {', '.join(AGE_SOURCES)}, got {age_source!r}")

    rclone_log_level = str(pick("rclone_log_level", "INFO"))

    from hestiabackup.rclone import set_rclone_defaults

    set_rclone_defaults(rclone_log_level)

    return Settings(
        rclone_remote=str(pick("rclone_remote", "")).strip(),
        rclone_bucket=str(pick("rclone_bucket", "")).strip().strip("/"),
        to_email=str(pick("to_email", "")).strip(),
        from_email=str(pick("from_email", "")).strip() or _default_from_email(),
        api_key=api_key,
        email_api_url=str(pick("email_api_url", DEFAULT_EMAIL_API_URL)),
        email_timeout=_coerce_int(pick("email_timeout"), 30),
        retention_days=_coerce_int(pick("retention_days"), 42),
        schedule_label=str(pick("schedule_label", "")),
        age_source=age_source,
        max_workers=max(1, _coerce_int(pick("max_workers"), 1)),
        backup_dir=Path(pick("backup_dir", "/backup")),
        hestia_root=Path(pick("hestia_root", "/usr/local/hestia")),
        home_dir=Path(pick("home_dir", "/home")),
        admin_user=str(pick("admin_user", "admin")),
        require_web_content=_coerce_bool(pick("require_web_content"), False),
        backup_log=Path(pick("backup_log", "/var/log/hestia/backup-automation.log")),
        cleanup_log=Path(pick("cleanup_log", "/var/log/hestia/cleanup-automation.log")),
        log_level=str(pick("log_level", "INFO")).upper(),
        max_log_size=_coerce_int(pick("max_log_size"), 10 * 1024 * 1024),
        max_log_files=_coerce_int(pick("max_log_files"), 5),
        rclone_log_level=rclone_log_level,
        config_path=config_path,
        secret_path=secret_path,
    )


# --------------------------
# Interactive setup
# --------------------------

def prompt_settings(
        current: Settings,
        input_fn: Callable[[str], str] = input,
        secret_fn: Callable[[str], str] = getpass.getpass,
) -> Settings:
    """
    Ask for every user-facing value, keeping the current one on empty input.
    The API key prompt does not echo.
    """

    def ask(label: str, value: str, required: bool = True) -> str:
        prompt = f"{label} (current: {value}): " if value else f"{label}: "
        answer = input_fn(prompt).strip()
        answer = answer or value
        if required and not answer:
            raise ConfigError(f"{label} is required")
        return answer

    remote = ask("Rclone remote name (e.g., s3-backups)", current.rclone_remote)
    bucket = ask("S3 bucket name", current.rclone_bucket).strip("/")
    to_email = ask("Email recipient", current.to_email)
    from_email = ask("From email address", current.from_email)
    retention = ask("Retention days (e.g., 42 for 6 weeks)", str(current.retention_days))
    if not retention.isdigit():
        raise ConfigError(f"Retention days must be a whole number, got {retention!r}")
    label = ask("Schedule label (optional, e.g., production)", current.schedule_label, required=False)

    hint = " (leave empty to keep current)" if current.api_key else ""
    api_key = secret_fn(f"Email API key{hint}: ").strip() or current.api_key
    if not api_key:
        raise ConfigError("Email API key is required")

    return replace(
        current,
        rclone_remote=remote,
        rclone_bucket=bucket,
        to_email=to_email,
        from_email=from_email,
        retention_days=int(retention),
        schedule_label=label,
        api_key=api_key,
    )


def write_private_text(path: Path, text: str) -> None:
    """Atomically write `text` to `path`, readable by the owner only (0600)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp, 0o600)
        os.replace(tmp, path)
    except Exception:
        # best-effort cleanup on failure
        try:
            if tmp.exists():
                tmp.unlink()
        except OSError:
            pass
        raise


def save_settings(settings: Settings) -> None:
    values = {
        "RCLONE_BUCKET": settings.rclone_bucket,
        "RCLONE_REMOTE": settings.rclone_remote,
        "TO_EMAIL": settings.to_email,
        "FROM_EMAIL": settings.from_email,
        "RETENTION_DAYS": str(settings.retention_days),
        "SCHEDULE_LABEL": settings.schedule_label,
    }
    if settings.secret_path != DEFAULT_SECRET_PATH:
        values["SECRET_FILE"] = str(settings.secret_path)

    if settings.config_path.suffix.lower() == ".toml":
        raise ConfigError(f"Interactive setup writes key/value files only, not {settings.config_path}")

    # Keep optional keys that were set by hand
    merged: Dict[str, str] = {}
    if settings.config_path.exists():
        merged = {k.upper(): str(v) for k, v in _load_keyvalue(settings.config_path).items()}
    merged.update(values)

    body = "".join(f"{k}={shlex.quote(v)}\n" for k, v in merged.items())
    write_private_text(settings.config_path, body)
    write_private_text(settings.secret_path, settings.api_key + "\n")
