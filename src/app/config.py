"""Application configuration via Pydantic BaseSettings."""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    development = "development"
    staging = "staging"
    production = "production"


class StorageBackend(str, Enum):
    memory = "memory"
    sql = "sql"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./deal_room.db"

    # Storage backend for the deal room stores
    STORAGE_BACKEND: StorageBackend = StorageBackend.memory

    # Environment
    ENVIRONMENT: Environment = Environment.development

    # Logging
    LOG_LEVEL: str = "INFO"

    # CORS
    CORS_ALLOWED_ORIGINS: str = "*"

    # Monitoring
    SENTRY_DSN: str = ""

    # Drafts
    DRAFT_RETENTION_HOURS: int = 24
    DRAFT_CLEANUP_INTERVAL_SECONDS: int = 60 * 60
    AUTOSAVE_DEBOUNCE_SECONDS: float = 2.0

    # Version history
    VERSION_HISTORY_LIMIT: int = 10


@lru_cache
def get_settings() -> Settings:
    """Singleton settings instance."""
    return Settings()
