"""Huddle application configuration.

Loads settings from two YAML files:
  * huddle.settings.yaml  - non-secret configuration
  * huddle.secrets.yaml   - secrets (never committed)

Both paths can be overridden with the HUDDLE_SETTINGS_FILE and
HUDDLE_SECRETS_FILE environment variables. Missing files fall back to the
model defaults.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("huddle.settings.yaml")
SECRETS_FILE  = Path("huddle.secrets.yaml")


def _settings_path() -> Path:
    return Path(os.environ.get("HUDDLE_SETTINGS_FILE", SETTINGS_FILE))


def _secrets_path() -> Path:
    return Path(os.environ.get("HUDDLE_SECRETS_FILE", SECRETS_FILE))


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Secrets models
# ---------------------------------------------------------------------------


class JWTSecrets(BaseModel):
    secret_key: str = "change-me-in-production"
    algorithm:  str = "HS256"


class SentimentSecrets(BaseModel):
    api_key: Optional[str] = None


class Secrets(BaseModel):
    jwt:       JWTSecrets       = Field(default_factory=JWTSecrets)
    sentiment: SentimentSecrets = Field(default_factory=SentimentSecrets)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:         str  = "0.0.0.0"
    port:         int  = 8000
    debug:        bool = False
    reload:       bool = False
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])


class LoggingSettings(BaseModel):
    level: str = "INFO"

    @field_validator("level")
    @classmethod
    def _upper(cls, value: str) -> str:
        return value.upper()


class StorageSettings(BaseModel):
    """DuckDB location. ``:memory:`` keeps everything in process."""
    db_path: str = "huddle.duckdb"


class AuthSettings(BaseModel):
    issuer:   Optional[str] = None
    audience: Optional[str] = None


class ChatSettings(BaseModel):
    recent_messages_page_size: int  = Field(default=20, ge=1, le=200)
    max_message_length:        int  = Field(default=4000, ge=1)
    announce_disconnect:       bool = True


class SentimentSettings(BaseModel):
    enabled:         bool          = True
    endpoint:        Optional[str] = None
    language:        str           = "en"
    timeout_seconds: float         = Field(default=3.0, gt=0)


class AppSettings(BaseModel):
    server:    ServerSettings    = Field(default_factory=ServerSettings)
    logging:   LoggingSettings   = Field(default_factory=LoggingSettings)
    storage:   StorageSettings   = Field(default_factory=StorageSettings)
    auth:      AuthSettings      = Field(default_factory=AuthSettings)
    chat:      ChatSettings      = Field(default_factory=ChatSettings)
    sentiment: SentimentSettings = Field(default_factory=SentimentSettings)
    secrets:   Secrets           = Field(default_factory=Secrets)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_settings(
    settings_file: Optional[Path] = None,
    secrets_file: Optional[Path] = None,
) -> AppSettings:
    """Load and merge settings + secrets into a single *AppSettings* object."""
    settings_data = _load_yaml(settings_file or _settings_path())
    secrets_data  = _load_yaml(secrets_file or _secrets_path())

    # Merge: secrets live under the "secrets" key in AppSettings
    settings_data["secrets"] = secrets_data

    app_settings = AppSettings(**settings_data)
    logger.info(
        "Settings loaded (server=%s:%s, storage=%s, sentiment.enabled=%s)",
        app_settings.server.host,
        app_settings.server.port,
        app_settings.storage.db_path,
        app_settings.sentiment.enabled,
    )
    return app_settings


_config: Optional[AppSettings] = None


def get_config() -> AppSettings:
    """Return the process-wide settings, loading them on first use."""
    global _config
    if _config is None:
        _config = load_settings()
    return _config


def set_config(settings: Optional[AppSettings]) -> None:
    """Replace (or with ``None``, reset) the process-wide settings."""
    global _config
    _config = settings
