"""Relay Chat application configuration.

Loads settings from two YAML files:
  * relaychat.settings.yaml: non-secret configuration
  * relaychat.secrets.yaml: secrets (never committed)

Both are looked up in the working directory first, then in ``./config/``.
Missing files are not an error; every setting has a default.
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

SETTINGS_FILENAME = "relaychat.settings.yaml"
SECRETS_FILENAME  = "relaychat.secrets.yaml"

# In-memory DuckDB marker; never resolved against a directory.
MEMORY_DB = ":memory:"


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


def _find_config_file(filename: str) -> Path:
    """Return ``./<filename>`` if present, else ``./config/<filename>``."""
    local = Path(filename)
    if local.exists():
        return local
    return Path("config") / filename


def _base_dir_for(settings_path: Path) -> Path:
    """Directory that relative paths in the settings file resolve from.

    A settings file kept in a ``config/`` directory resolves from the project
    root (its parent); any other layout resolves from the file's own directory.
    """
    parent = settings_path.resolve().parent
    if parent.name == "config":
        return parent.parent
    return parent


# ---------------------------------------------------------------------------
# Secrets models
# ---------------------------------------------------------------------------


class JWTSecrets(BaseModel):
    secret_key: str = "change-me-in-production"
    algorithm:  str = "HS256"


class Secrets(BaseModel):
    jwt: JWTSecrets = Field(default_factory=JWTSecrets)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str       = "0.0.0.0"
    port:            int       = 5000
    allowed_origins: List[str] = Field(default_factory=lambda: ["http://localhost:3000"])


class LoggingSettings(BaseModel):
    level: str = "info"


class ChatSettings(BaseModel):
    """Room, history and directory limits."""
    default_room:       str = "general"
    page_size:          int = Field(default=20, ge=1)
    max_page_size:      int = Field(default=100, ge=1)
    directory_limit:    int = Field(default=50, ge=1)
    max_content_length: int = Field(default=5000, ge=1)


class RateLimitSettings(BaseModel):
    """Fixed-window send throttle, applied per user."""
    max_messages:   int   = Field(default=30, ge=1)
    window_seconds: float = Field(default=60.0, gt=0)


class PresenceSettings(BaseModel):
    # Follow each incremental presence event with a full directory snapshot
    # to every connection (after authenticate and logout/disconnect only).
    reconcile_snapshots: bool = False


class StorageSettings(BaseModel):
    messages_db: str = "data/messages.duckdb"
    users_db:    str = "data/users.duckdb"


class AuthSettings(BaseModel):
    token_expire_minutes: int = Field(default=60 * 24, ge=1)


class UploadSettings(BaseModel):
    upload_dir:         str       = "uploads"
    max_size_bytes:     int       = 5 * 1024 * 1024
    allowed_extensions: List[str] = Field(
        default_factory=lambda: ["jpeg", "jpg", "png", "gif", "pdf", "doc", "docx", "txt"]
    )

    @field_validator("allowed_extensions")
    @classmethod
    def _normalise_extensions(cls, value: List[str]) -> List[str]:
        return [ext.lower().lstrip(".") for ext in value]


class AppConfig(BaseModel):
    server:     ServerSettings    = Field(default_factory=ServerSettings)
    logging:    LoggingSettings   = Field(default_factory=LoggingSettings)
    chat:       ChatSettings      = Field(default_factory=ChatSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    presence:   PresenceSettings  = Field(default_factory=PresenceSettings)
    storage:    StorageSettings   = Field(default_factory=StorageSettings)
    auth:       AuthSettings      = Field(default_factory=AuthSettings)
    uploads:    UploadSettings    = Field(default_factory=UploadSettings)
    secrets:    Secrets           = Field(default_factory=Secrets)


# ---------------------------------------------------------------------------
# Path resolution
# ---------------------------------------------------------------------------


def _resolve_path(value: str, base_dir: Path) -> str:
    if value == MEMORY_DB:
        return value
    path = Path(value)
    if path.is_absolute():
        return str(path)
    return str(base_dir / path)


def _resolve_paths(config: AppConfig, base_dir: Path) -> None:
    config.storage.messages_db = _resolve_path(config.storage.messages_db, base_dir)
    config.storage.users_db    = _resolve_path(config.storage.users_db, base_dir)
    config.uploads.upload_dir  = _resolve_path(config.uploads.upload_dir, base_dir)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(
    settings_path: Optional[Path] = None,
    secrets_path: Optional[Path] = None,
) -> AppConfig:
    """Load and merge settings + secrets into a single *AppConfig* object."""
    settings_path = Path(settings_path) if settings_path else _find_config_file(SETTINGS_FILENAME)
    if secrets_path is None:
        secrets_path = settings_path.with_name(SECRETS_FILENAME)

    settings_data = _load_yaml(settings_path)
    secrets_data  = _load_yaml(Path(secrets_path))

    # Merge: secrets live under the "secrets" key in AppConfig
    settings_data["secrets"] = secrets_data

    config = AppConfig(**settings_data)
    _resolve_paths(config, _base_dir_for(settings_path))

    if config.secrets.jwt.secret_key == JWTSecrets().secret_key:
        logger.warning("Using the default JWT secret; set jwt.secret_key in %s", SECRETS_FILENAME)

    logger.info(
        "Settings loaded (server=%s:%s, page_size=%d, rate_limit=%d/%ss)",
        config.server.host,
        config.server.port,
        config.chat.page_size,
        config.rate_limit.max_messages,
        config.rate_limit.window_seconds,
    )
    return config


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Return the process-wide config, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: Optional[AppConfig]) -> None:
    """Replace (or clear, with ``None``) the process-wide config."""
    global _config
    _config = config
