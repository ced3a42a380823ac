"""Marketplace chat application configuration.

Loads settings from a single YAML file:
  * chat.settings.yaml: non-secret configuration

The file is looked up at ``$CHAT_SETTINGS_PATH`` first, then in the current
working directory. A missing file is not an error; every field has a default.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("chat.settings.yaml")
SETTINGS_ENV_VAR = "CHAT_SETTINGS_PATH"


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str       = "0.0.0.0"
    port:            int       = 5000
    allowed_origins: List[str] = Field(default_factory=lambda: ["http://localhost:3000"])


class LoggingSettings(BaseModel):
    level: str = "info"


class StoreSettings(BaseModel):
    """Durable message store (DuckDB file, or ``:memory:``)."""
    db_path: str = "messages.duckdb"


class AuthSettings(BaseModel):
    """Identity is issued elsewhere; requests carry the caller's id in a header."""
    identity_header: str = "X-User-Id"


class ClientSettings(BaseModel):
    """Defaults for the realtime client library."""
    base_url:            str   = "http://localhost:5000"
    ws_url:              str   = "ws://localhost:5000/ws/chat"
    reconnect_attempts:  int   = 5
    reconnect_delay:     float = 1.0
    reconnect_delay_max: float = 5.0
    typing_timeout:      float = 1.0
    popup_timeout:       float = 5.0


class AppConfig(BaseModel):
    server:  ServerSettings  = Field(default_factory=ServerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    store:   StoreSettings   = Field(default_factory=StoreSettings)
    auth:    AuthSettings    = Field(default_factory=AuthSettings)
    client:  ClientSettings  = Field(default_factory=ClientSettings)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def _resolve_db_path(config: AppConfig, settings_dir: Path) -> None:
    db_path = config.store.db_path
    if db_path == ":memory:" or Path(db_path).is_absolute():
        return
    config.store.db_path = str(settings_dir / db_path)


def load_config(settings_path: Optional[Path] = None) -> AppConfig:
    """Load settings into a single *AppConfig* object.

    Relative ``store.db_path`` values are resolved against the directory
    holding the settings file.
    """
    if settings_path is None:
        env_path = os.environ.get(SETTINGS_ENV_VAR)
        settings_path = Path(env_path) if env_path else SETTINGS_FILE
    settings_path = Path(settings_path)

    config = AppConfig(**_load_yaml(settings_path))
    _resolve_db_path(config, settings_path.resolve().parent)

    logger.info(
        "Settings loaded (server=%s:%s, store=%s)",
        config.server.host,
        config.server.port,
        config.store.db_path,
    )
    return config


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Return the process-wide configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: AppConfig) -> None:
    global _config
    _config = config


def reset_config() -> None:
    """Drop the cached configuration (used by tests)."""
    global _config
    _config = None
