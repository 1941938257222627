"""Task Portal application configuration.

Loads settings from two YAML files:
  * taskportal.settings.yaml: non-secret configuration
  * taskportal.secrets.yaml: secrets (never committed)

Both files are optional; missing files fall back to model defaults.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("taskportal.settings.yaml")
SECRETS_FILE  = Path("taskportal.secrets.yaml")


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Secrets models
# ---------------------------------------------------------------------------


DEFAULT_SECRET_KEY = "change-me-in-production"


class SessionSecrets(BaseModel):
    """Signed-cookie session shared with the auth service."""
    secret_key:      str  = DEFAULT_SECRET_KEY
    cookie_name:     str  = "taskportal.sid"
    max_age_seconds: int  = 24 * 60 * 60
    https_only:      bool = False


class Secrets(BaseModel):
    session: SessionSecrets = Field(default_factory=SessionSecrets)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str       = "0.0.0.0"
    port:            int       = 5000
    allowed_origins: List[str] = Field(
        default_factory=lambda: ["http://localhost:5173"]
    )


class DatabaseSettings(BaseModel):
    path:                  str   = "messages.duckdb"
    query_timeout_seconds: float = 5.0
    # Writes get longer: a timed-out append may still commit afterwards
    write_timeout_seconds: float = 30.0

    @field_validator("query_timeout_seconds", "write_timeout_seconds")
    @classmethod
    def _positive_timeout(cls, value: float, info) -> float:
        if value <= 0:
            raise ValueError(f"{info.field_name} must be positive")
        return value


class MessagingSettings(BaseModel):
    allow_self_messages:           bool = False
    allow_unauthenticated_sockets: bool = False


class LoggingSettings(BaseModel):
    level: str = "info"


class AppSettings(BaseModel):
    server:    ServerSettings    = Field(default_factory=ServerSettings)
    database:  DatabaseSettings  = Field(default_factory=DatabaseSettings)
    messaging: MessagingSettings = Field(default_factory=MessagingSettings)
    logging:   LoggingSettings   = Field(default_factory=LoggingSettings)
    secrets:   Secrets           = Field(default_factory=Secrets)


# ---------------------------------------------------------------------------
# Path resolution
# ---------------------------------------------------------------------------


def _resolve_database_path(settings: AppSettings, settings_path: Path) -> None:
    """Resolve a relative database path against the settings file directory.

    ``:memory:`` and absolute paths are left untouched.
    """
    raw = settings.database.path
    if raw == ":memory:" or Path(raw).is_absolute():
        return
    settings.database.path = str(settings_path.resolve().parent / raw)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(
    settings_path: Optional[Path] = None,
    secrets_path: Optional[Path] = None,
) -> AppSettings:
    """Load and merge settings + secrets into a single *AppSettings* object."""
    settings_path = Path(settings_path) if settings_path else SETTINGS_FILE
    if secrets_path is None:
        secrets_path = settings_path.parent / SECRETS_FILE.name
    settings_data = _load_yaml(settings_path)
    secrets_data  = _load_yaml(Path(secrets_path))

    # Merge: secrets live under the "secrets" key in AppSettings
    settings_data["secrets"] = secrets_data

    app_settings = AppSettings(**settings_data)
    _resolve_database_path(app_settings, settings_path)
    if app_settings.secrets.session.secret_key == DEFAULT_SECRET_KEY:
        logger.warning(
            "Session cookies are signed with the built-in default key; "
            "set session.secret_key in %s",
            secrets_path,
        )
    logger.info(
        "Settings loaded (server=%s:%s, database=%s, allow_self_messages=%s)",
        app_settings.server.host,
        app_settings.server.port,
        app_settings.database.path,
        app_settings.messaging.allow_self_messages,
    )
    return app_settings


_config: Optional[AppSettings] = None


def get_config() -> AppSettings:
    """Return the process-wide settings, loading them on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: Optional[AppSettings]) -> None:
    """Replace (or clear, with None) the cached settings."""
    global _config
    _config = config
