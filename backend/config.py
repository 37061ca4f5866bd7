"""Configuration management using Pydantic settings."""

from datetime import date, datetime
import logging
import os
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings


def to_iso8601(dt: datetime | date | None) -> str | None:
    """
    Format datetime/date to ISO8601 string for JSON responses.

    All datetimes are assumed to be UTC and get 'Z' suffix.
    Date-only values get no timezone suffix.

    Usage:
        "created_at": to_iso8601(self.created_at)
    """
    if dt is None:
        return None
    if isinstance(dt, datetime):
        return f"{dt.replace(tzinfo=None).isoformat()}Z"
    # date only - no timezone
    return dt.isoformat()

# Find .env file - check current dir, then parent (for when running from backend/)
_env_file = Path(".env")
if not _env_file.exists():
    _env_file = Path("../.env")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./prism_reports.db"

    # Redis (report lifecycle events); events are kept in memory when unset
    REDIS_URL: Optional[str] = None

    # App
    ENVIRONMENT: str = "development"
    FRONTEND_URL: str = "http://localhost:5173"
    LOG_LEVEL: str = "INFO"

    # Artifact storage
    STORAGE_DIR: str = "storage"
    REPORT_STORAGE_DIR: Optional[str] = None  # Extra root searched on download
    ARTIFACT_EXTENSION: str = ".pdf"
    # Fallback download search accepts files modified this recently; 0 disables it
    ARTIFACT_RECENCY_MINUTES: int = 60

    # Upstream fetching
    FETCH_MAX_ATTEMPTS: int = 3
    FETCH_BASE_DELAY_SECONDS: float = 1.0
    FETCH_TIMEOUT_SECONDS: float = 10.0

    # Report pipeline
    REPORT_STAGE_TIMEOUT_SECONDS: float = 300.0

    class Config:
        env_file = str(_env_file)
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra env vars from shared .env files


settings = Settings()

EXPECTED_ENV_VARS: tuple[str, ...] = (
    "DATABASE_URL",
    "REDIS_URL",
    "ENVIRONMENT",
    "FRONTEND_URL",
    "STORAGE_DIR",
)


def log_missing_env_vars(logger: logging.Logger) -> None:
    """Log debug warnings for expected environment variables that are unset."""
    for var_name in EXPECTED_ENV_VARS:
        value = os.environ.get(var_name)
        if value is None or value == "":
            logger.debug(
                "Warning: expected environment variable %s is not set.",
                var_name,
            )


def get_redis_connection_kwargs(decode_responses: bool = False) -> dict[str, object]:
    """Shared keyword arguments for redis.from_url clients."""
    return {
        "decode_responses": decode_responses,
        "socket_connect_timeout": 5,
        "health_check_interval": 30,
    }
