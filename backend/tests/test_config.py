"""Tests for settings/secrets loading."""

import logging
from pathlib import Path

import pytest
from pydantic import ValidationError

from taskportal.config import AppSettings, get_config, load_config, set_config


def test_missing_files_fall_back_to_defaults(tmp_path):
    cfg = load_config(settings_path=tmp_path / "taskportal.settings.yaml")

    assert cfg.server.port == 5000
    assert cfg.database.query_timeout_seconds == 5.0
    assert cfg.messaging.allow_self_messages is False
    assert cfg.secrets.session.cookie_name == "taskportal.sid"
    assert Path(cfg.database.path) == (tmp_path / "messages.duckdb").resolve()


def test_settings_and_secrets_are_merged(tmp_path):
    settings_file = tmp_path / "taskportal.settings.yaml"
    settings_file.write_text(
        "server:\n"
        "  port: 8080\n"
        "  allowed_origins:\n"
        "    - https://portal.example.com\n"
        "messaging:\n"
        "  allow_self_messages: true\n"
        "logging:\n"
        "  level: debug\n",
        encoding="utf-8",
    )
    (tmp_path / "taskportal.secrets.yaml").write_text(
        "session:\n"
        "  secret_key: s3cret\n"
        "  https_only: true\n",
        encoding="utf-8",
    )

    cfg = load_config(settings_path=settings_file)

    assert cfg.server.port == 8080
    assert cfg.server.allowed_origins == ["https://portal.example.com"]
    assert cfg.messaging.allow_self_messages is True
    assert cfg.logging.level == "debug"
    assert cfg.secrets.session.secret_key == "s3cret"
    assert cfg.secrets.session.https_only is True
    assert cfg.secrets.session.cookie_name == "taskportal.sid"


def test_explicit_secrets_path(tmp_path):
    secrets_file = tmp_path / "elsewhere" / "portal.secrets.yaml"
    secrets_file.parent.mkdir()
    secrets_file.write_text("session:\n  cookie_name: other.sid\n", encoding="utf-8")

    cfg = load_config(
        settings_path=tmp_path / "taskportal.settings.yaml",
        secrets_path=secrets_file,
    )
    assert cfg.secrets.session.cookie_name == "other.sid"


def test_database_path_relative_to_settings_dir(tmp_path):
    settings_file = tmp_path / "taskportal.settings.yaml"
    settings_file.write_text("database:\n  path: data/messages.duckdb\n", encoding="utf-8")

    cfg = load_config(settings_path=settings_file)
    assert Path(cfg.database.path) == (tmp_path / "data" / "messages.duckdb").resolve()


def test_database_path_absolute_remains_unchanged(tmp_path):
    absolute_path = tmp_path / "absolute" / "messages.duckdb"
    settings_file = tmp_path / "taskportal.settings.yaml"
    settings_file.write_text(f"database:\n  path: {absolute_path}\n", encoding="utf-8")

    cfg = load_config(settings_path=settings_file)
    assert Path(cfg.database.path) == absolute_path


def test_in_memory_database_untouched(tmp_path):
    settings_file = tmp_path / "taskportal.settings.yaml"
    settings_file.write_text('database:\n  path: ":memory:"\n', encoding="utf-8")

    cfg = load_config(settings_path=settings_file)
    assert cfg.database.path == ":memory:"


@pytest.mark.parametrize("field", ["query_timeout_seconds", "write_timeout_seconds"])
@pytest.mark.parametrize("timeout", [0, -1.5])
def test_non_positive_timeout_rejected(tmp_path, field, timeout):
    settings_file = tmp_path / "taskportal.settings.yaml"
    settings_file.write_text(
        f"database:\n  {field}: {timeout}\n", encoding="utf-8"
    )

    with pytest.raises(ValidationError):
        load_config(settings_path=settings_file)


def test_get_config_is_cached_until_replaced():
    custom = AppSettings()
    custom.server.port = 9999
    set_config(custom)

    assert get_config() is custom
    assert get_config().server.port == 9999


def test_socket_and_write_defaults(tmp_path):
    cfg = load_config(settings_path=tmp_path / "taskportal.settings.yaml")

    assert cfg.messaging.allow_unauthenticated_sockets is False
    assert cfg.database.write_timeout_seconds > cfg.database.query_timeout_seconds


def test_default_secret_key_warns(tmp_path, caplog):
    with caplog.at_level(logging.WARNING, logger="taskportal.config"):
        load_config(settings_path=tmp_path / "taskportal.settings.yaml")

    assert any("default key" in r.getMessage() for r in caplog.records)


def test_configured_secret_key_does_not_warn(tmp_path, caplog):
    settings_file = tmp_path / "taskportal.settings.yaml"
    settings_file.write_text("server:\n  port: 5000\n", encoding="utf-8")
    (tmp_path / "taskportal.secrets.yaml").write_text(
        "session:\n  secret_key: a-real-key\n", encoding="utf-8"
    )

    with caplog.at_level(logging.WARNING, logger="taskportal.config"):
        load_config(settings_path=settings_file)

    assert not any("default key" in r.getMessage() for r in caplog.records)
