#!/usr/bin/env python3
"""
Unit tests for config.py module.
"""

import os
import stat
from pathlib import Path

import pytest

from hestiabackup.config import (
    ConfigError,
    _coerce_bool,
    _coerce_int,
    _load_keyvalue,
    _load_toml,
    is_configured,
    load_settings,
    prompt_settings,
    save_settings,
    write_private_text,
)

SAMPLE_CONF = """# written by setup
RCLONE_BUCKET="backups.example"
RCLONE_REMOTE="s3-test"
TO_EMAIL="admin@example.com"
FROM_EMAIL="noreply@example.com"
RETENTION_DAYS="30"
SCHEDULE_LABEL="production"
"""


def write_config(tmp_path, body=SAMPLE_CONF, key="secret-key\n"):
    conf = tmp_path / "backup.conf"
    conf.write_text(body)
    secret = tmp_path / "brevo.key"
    if key is not None:
        secret.write_text(key)
    return conf, secret


class TestCoerceFunctions:
    """Tests for type coercion helper functions."""

    def test_coerce_bool_values(self):
        assert _coerce_bool("yes", False) is True
        assert _coerce_bool("ON", False) is True
        assert _coerce_bool("0", True) is False
        assert _coerce_bool("off", True) is False
        assert _coerce_bool(None, True) is True
        assert _coerce_bool("maybe", False) is False

    def test_coerce_int_values(self):
        assert _coerce_int("42", 0) == 42
        assert _coerce_int(7, 0) == 7
        assert _coerce_int(None, 42) == 42
        assert _coerce_int("", 42) == 42
        assert _coerce_int("six weeks", 42) == 42


class TestLoadKeyValue:
    """Tests for the shell-style key/value parser."""

    def test_quoted_and_bare_values(self, tmp_path):
        conf = tmp_path / "backup.conf"
        conf.write_text('A="quoted value"\nB=bare\nC=\'single\'\nexport D="exported"\n\n# comment\n')

        data = _load_keyvalue(conf)

        assert data == {"A": "quoted value", "B": "bare", "C": "single", "D": "exported"}

    def test_empty_value(self, tmp_path):
        conf = tmp_path / "backup.conf"
        conf.write_text('SCHEDULE_LABEL=""\n')

        assert _load_keyvalue(conf) == {"SCHEDULE_LABEL": ""}

    def test_commands_are_not_executed(self, tmp_path):
        marker = tmp_path / "pwned"
        conf = tmp_path / "backup.conf"
        conf.write_text(f'TO_EMAIL="$(touch {marker})"\n')

        data = _load_keyvalue(conf)

        assert not marker.exists()
        assert data["TO_EMAIL"] == f"$(touch {marker})"

    def test_malformed_line_raises(self, tmp_path):
        conf = tmp_path / "backup.conf"
        conf.write_text("this is not a setting\n")

        with pytest.raises(ConfigError, match="expected KEY=value"):
            _load_keyvalue(conf)

    def test_unbalanced_quote_raises(self, tmp_path):
        conf = tmp_path / "backup.conf"
        conf.write_text('TO_EMAIL="admin@example.com\n')

        with pytest.raises(ConfigError):
            _load_keyvalue(conf)


class TestLoadToml:
    """Tests for TOML configuration loading."""

    def test_load_toml_valid_file(self, tmp_path):
        toml_file = tmp_path / "backup.toml"
        toml_file.write_text('rclone_remote = "s3-test"\nretention_days = 14\n')

        data = _load_toml(toml_file)

        assert data["rclone_remote"] == "s3-test"
        assert data["retention_days"] == 14


class TestLoadSettings:
    """Tests for load_settings function."""

    def test_load_settings_from_keyvalue(self, tmp_path):
        conf, secret = write_config(tmp_path)

        settings = load_settings(conf, secret)

        assert settings.rclone_remote == "s3-test"
        assert settings.rclone_bucket == "backups.example"
        assert settings.to_email == "admin@example.com"
        assert settings.from_email == "noreply@example.com"
        assert settings.retention_days == 30
        assert settings.schedule_label == "production"
        assert settings.api_key == "secret-key"
        assert settings.remote_target == "s3-test:backups.example/"
        assert settings.missing() == []

    def test_load_settings_defaults(self, tmp_path):
        conf, secret = write_config(tmp_path, body='RCLONE_REMOTE="r"\n')

        settings = load_settings(conf, secret)

        assert settings.retention_days == 42
        assert settings.backup_dir == Path("/backup")
        assert settings.admin_user == "admin"
        assert settings.age_source == "filename"
        assert settings.max_workers == 1
        assert settings.hestia_bin == Path("/usr/local/hestia/bin")
        assert settings.from_email.startswith("noreply@")

    def test_load_settings_from_toml(self, tmp_path):
        toml_file = tmp_path / "backup.toml"
        toml_file.write_text(
            'rclone_remote = "s3-test"\nrclone_bucket = "bucket/"\nto_email = "a@b.c"\n'
            'retention_days = 7\nrequire_web_content = true\nmax_workers = 4\n'
        )
        secret = tmp_path / "brevo.key"
        secret.write_text("k\n")

        settings = load_settings(toml_file, secret)

        assert settings.rclone_bucket == "bucket"
        assert settings.retention_days == 7
        assert settings.require_web_content is True
        assert settings.max_workers == 4

    def test_secret_file_from_config(self, tmp_path):
        other_secret = tmp_path / "elsewhere.key"
        other_secret.write_text("from-config\n")
        conf, _ = write_config(tmp_path, body=SAMPLE_CONF + f'SECRET_FILE="{other_secret}"\n', key=None)

        settings = load_settings(conf)

        assert settings.secret_path == other_secret
        assert settings.api_key == "from-config"

    def test_missing_secret_reported(self, tmp_path):
        conf, secret = write_config(tmp_path, key=None)

        settings = load_settings(conf, secret)

        assert settings.missing() == ["API key"]
        with pytest.raises(ConfigError, match="API key"):
            settings.require_complete()

    def test_explicit_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_settings(tmp_path / "nope.conf")

    def test_invalid_age_source(self, tmp_path):
        conf, secret = write_config(tmp_path, body='AGE_SOURCE="ctime"\n')

        with pytest.raises(ConfigError, match="AGE_SOURCE"):
            load_settings(conf, secret)

    def test_api_key_not_in_repr(self, tmp_path):
        conf, secret = write_config(tmp_path)

        settings = load_settings(conf, secret)

        assert "secret-key" not in repr(settings)


class TestIsConfigured:

    def test_complete_config(self, tmp_path):
        conf, secret = write_config(tmp_path)
        assert is_configured(conf, secret) is True

    def test_no_config_file(self, tmp_path):
        assert is_configured(tmp_path / "absent.conf", tmp_path / "absent.key") is False

    def test_incomplete_config(self, tmp_path):
        conf, secret = write_config(tmp_path, key=None)
        assert is_configured(conf, secret) is False


class TestPromptSettings:
    """Tests for interactive setup prompts."""

    def test_prompts_fill_values(self, test_settings):
        answers = iter(["s3-new", "new-bucket/", "ops@example.com", "", "14", "staging"])
        test_settings.rclone_remote = ""

        result = prompt_settings(
            test_settings,
            input_fn=lambda prompt: next(answers),
            secret_fn=lambda prompt: "new-key",
        )

        assert result.rclone_remote == "s3-new"
        assert result.rclone_bucket == "new-bucket"
        assert result.to_email == "ops@example.com"
        assert result.from_email == "noreply@example.com"  # kept current
        assert result.retention_days == 14
        assert result.schedule_label == "staging"
        assert result.api_key == "new-key"

    def test_empty_answers_keep_current(self, test_settings):
        result = prompt_settings(test_settings, input_fn=lambda prompt: "", secret_fn=lambda prompt: "")

        assert result.rclone_remote == test_settings.rclone_remote
        assert result.retention_days == 42
        assert result.api_key == "test-api-key"

    def test_current_value_shown_in_prompt(self, test_settings):
        prompts = []

        def record(prompt):
            prompts.append(prompt)
            return ""

        prompt_settings(test_settings, input_fn=record, secret_fn=lambda prompt: "")

        assert "(current: s3-test)" in prompts[0]

    def test_required_value_missing(self, test_settings):
        test_settings.rclone_remote = ""

        with pytest.raises(ConfigError, match="required"):
            prompt_settings(test_settings, input_fn=lambda prompt: "", secret_fn=lambda prompt: "")

    def test_retention_must_be_numeric(self, test_settings):
        answers = iter(["", "", "", "", "six weeks", ""])

        with pytest.raises(ConfigError, match="whole number"):
            prompt_settings(test_settings, input_fn=lambda prompt: next(answers), secret_fn=lambda p: "")

    def test_api_key_required(self, test_settings):
        test_settings.api_key = ""

        with pytest.raises(ConfigError, match="API key"):
            prompt_settings(test_settings, input_fn=lambda prompt: "", secret_fn=lambda prompt: "")


class TestSaveSettings:
    """Tests for persisting configuration."""

    def test_save_and_reload(self, test_settings):
        test_settings.schedule_label = "prod east"

        save_settings(test_settings)
        reloaded = load_settings(test_settings.config_path, test_settings.secret_path)

        assert reloaded.rclone_remote == "s3-test"
        assert reloaded.rclone_bucket == "backups.example"
        assert reloaded.schedule_label == "prod east"
        assert reloaded.retention_days == 42
        assert reloaded.api_key == "test-api-key"

    def test_files_are_owner_only(self, test_settings):
        save_settings(test_settings)

        for path in (test_settings.config_path, test_settings.secret_path):
            assert stat.S_IMODE(os.stat(path).st_mode) == 0o600

    def test_existing_loose_permissions_tightened(self, test_settings):
        test_settings.secret_path.write_text("old\n")
        test_settings.secret_path.chmod(0o644)

        save_settings(test_settings)

        assert stat.S_IMODE(os.stat(test_settings.secret_path).st_mode) == 0o600
        assert test_settings.secret_path.read_text() == "test-api-key\n"

    def test_optional_keys_preserved(self, test_settings):
        test_settings.config_path.write_text('BACKUP_DIR="/srv/backup"\nRCLONE_REMOTE="old"\n')

        save_settings(test_settings)
        data = _load_keyvalue(test_settings.config_path)

        assert data["BACKUP_DIR"] == "/srv/backup"
        assert data["RCLONE_REMOTE"] == "s3-test"

    def test_toml_target_rejected(self, test_settings, tmp_path):
        test_settings.config_path = tmp_path / "backup.toml"

        with pytest.raises(ConfigError):
            save_settings(test_settings)


class TestWritePrivateText:

    def test_creates_parent_and_leaves_no_tmp(self, tmp_path):
        target = tmp_path / "etc" / "hestia" / "brevo.key"

        write_private_text(target, "abc\n")

        assert target.read_text() == "abc\n"
        assert not target.with_suffix(".key.tmp").exists()
