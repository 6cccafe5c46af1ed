"""
Configuration and settings for the subscription tracker.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    api_prefix: str = Field(default="/api")

    # Database (Postgres expected, any SQLAlchemy URL works)
    database_url: Optional[str] = Field(default=None)

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False, validation_alias="SUBTRACKER_USE_IN_MEMORY_BACKENDS"
    )

    # Web Push (VAPID)
    vapid_public_key: Optional[str] = Field(default=None)
    vapid_private_key: Optional[str] = Field(default=None)
    vapid_contact_email: Optional[str] = Field(default=None)
    push_max_workers: int = Field(default=8, ge=1)
    push_ttl_seconds: int = Field(default=86400, ge=0)
    push_timeout_seconds: float = Field(default=10.0, gt=0)

    # Due-date checks
    due_soon_days: int = Field(default=7, ge=0)
    due_check_dedupe: bool = Field(default=True)
    timezone: str = Field(
        default="Africa/Johannesburg", validation_alias="SUBTRACKER_TIMEZONE"
    )

    log_level: str = Field(default="INFO")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
