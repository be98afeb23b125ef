"""Configuration settings for the local S3 stand-in."""

import json
import os
import tempfile
from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv
from functools import lru_cache
import logging

load_dotenv()

logger = logging.getLogger(__name__)


def _default_prefix() -> str:
    return os.path.join(tempfile.gettempdir(), "mox")


# ----------------------------------------------------------------------
# STORAGE CONFIGURATION
# ----------------------------------------------------------------------

class StorageConfig(BaseSettings):
    """
    Where objects live on disk and how responses are stamped.

    `bucket` may be left empty here; the client refuses to start without one.
    """
    model_config = SettingsConfigDict(env_prefix="LOCAL_S3_", extra="ignore")

    bucket: Optional[str] = None
    prefix: str = Field(default_factory=_default_prefix)

    # fixed identifier stamped into the `server` header of every response
    server_name: str = "Mox"

    # read size for streamed GET bodies
    chunk_size: int = 64 * 1024


# ----------------------------------------------------------------------
# LOGGING CONFIGURATION
# ----------------------------------------------------------------------

class LoggingConfig(BaseSettings):
    """Logging configuration."""
    model_config = SettingsConfigDict(env_prefix="LOG_", extra="ignore")

    level: str = "INFO"
    format: str = "%(asctime)s [%(levelname)s] %(message)s"


# ----------------------------------------------------------------------
# APP SETTINGS
# ----------------------------------------------------------------------

class Settings(BaseSettings):
    """Main application settings."""
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    env: str = Field(default="local")

    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# ----------------------------------------------------------------------
# Options file (awsauth.json style)
# ----------------------------------------------------------------------

def load_options_file(path: str) -> StorageConfig:
    """
    Build a StorageConfig from a JSON options file.

    The file carries `key`, `secret` and `bucket` (plus an optional `prefix`).
    Credentials are accepted for compatibility with real-client option files
    and otherwise ignored.
    """
    with open(path, "r", encoding="utf-8") as f:
        options = json.load(f)

    if not isinstance(options, dict):
        raise ValueError(f"Options file {path} must contain a JSON object")

    overrides = {k: v for k, v in options.items() if k in StorageConfig.model_fields and v}
    logger.debug(f"Loaded options file {path} (bucket={overrides.get('bucket')})")
    return get_storage_config().model_copy(update=overrides)


# ----------------------------------------------------------------------
# Lazy accessors (cached singletons)
# ----------------------------------------------------------------------

@lru_cache()
def get_config() -> Settings:
    """Return global app configuration."""
    return Settings()


@lru_cache()
def get_storage_config() -> StorageConfig:
    """Return storage configuration."""
    return get_config().storage


@lru_cache()
def get_logging_config() -> LoggingConfig:
    """Return logging configuration."""
    return get_config().logging
