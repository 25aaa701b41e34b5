"""
Configuration management for nutdash.

This module uses Pydantic's BaseSettings to manage configuration
through environment variables. It provides a centralized and typed
way to handle application settings.
"""
from typing import Any, Dict, List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings.

    These settings are loaded from environment variables.
    """

    # NUT protocol defaults
    NUT_PORT: int = 3493
    CONNECT_TIMEOUT: float = 5.0  # seconds
    COMMAND_TIMEOUT: float = 10.0  # seconds, per command write/read
    READ_LIMIT: int = 1024 * 1024  # bytes, longest reply line accepted

    # Variable fetch retry on "communication still running"
    FETCH_RETRY_ATTEMPTS: int = 3
    FETCH_RETRY_DELAY: float = 0.5  # seconds

    # Max concurrent per-device fetches on one server
    DEVICE_CONCURRENCY: int = 8

    # Static server list, used when no database is configured.
    # e.g. NUTDASH_SERVERS='[{"host": "nas.local", "port": 3493}]'
    SERVERS: List[Dict[str, Any]] = []

    # Persistence
    DB_PATH: str | None = None
    HISTORY_MIN_INTERVAL_SECONDS: int = 300
    HISTORY_RETENTION_DAYS: int = 7

    # HTTP
    ALLOWED_ORIGINS: list[str] = []

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        env_prefix="NUTDASH_",
    )


settings = Settings()
