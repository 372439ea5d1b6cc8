"""Server configuration using pydantic-settings."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DATABASE_FILE = "unisocial.db"
LEGACY_JDBC_PREFIX = "jdbc:sqlite:"
ASYNC_SQLITE_SCHEME = "sqlite+aiosqlite://"


def normalize_database_url(raw_url: str) -> str:
    """Return an async SQLAlchemy URL for a URL, file path or legacy JDBC string."""
    url = raw_url.strip()
    if not url:
        raise ValueError("database url must not be empty")
    if url.startswith(LEGACY_JDBC_PREFIX):
        url = url[len(LEGACY_JDBC_PREFIX):]
    if url.startswith("sqlite://"):
        return ASYNC_SQLITE_SCHEME + url[len("sqlite://"):]
    if "://" in url:
        return url
    if url == ":memory:":
        return f"{ASYNC_SQLITE_SCHEME}/:memory:"
    return f"{ASYNC_SQLITE_SCHEME}/{url}"


class Settings(BaseSettings):
    """Settings loaded from ``UNISOCIAL_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="UNISOCIAL_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=8080, ge=0, le=65535)
    max_clients: int = Field(default=100, ge=1)
    server_version: str = "1.0"
    read_timeout_seconds: float = Field(default=60.0, gt=0)
    shutdown_grace_seconds: float = Field(default=5.0, ge=0)
    # A base64 encoded 5 MiB avatar plus envelope fits comfortably.
    max_line_bytes: int = Field(default=8 * 1024 * 1024, ge=1024)

    # Database
    database_url: str = f"{ASYNC_SQLITE_SCHEME}/{DEFAULT_DATABASE_FILE}"
    db_busy_timeout_seconds: float = Field(default=30.0, gt=0)

    # Avatars
    upload_dir: Path = Path("uploads/avatars")
    avatar_url_prefix: str = "/avatars/"
    max_avatar_bytes: int = Field(default=5 * 1024 * 1024, ge=1)

    # Password hashing (argon2id)
    password_time_cost: int = Field(default=3, ge=1)
    password_memory_cost: int = Field(default=65536, ge=8)
    password_parallelism: int = Field(default=4, ge=1)

    # Logging
    log_level: str = "INFO"

    @field_validator("database_url")
    @classmethod
    def _normalize_database_url(cls, value: str) -> str:
        return normalize_database_url(value)

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        return value.strip().upper()


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
