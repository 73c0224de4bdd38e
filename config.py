"""
Configuration settings for the activity engine command line.

Uses Pydantic Settings for environment variable management with .env file support.
Variables are prefixed with ACTIVITY_ (e.g. ACTIVITY_LOG_LEVEL=DEBUG).
"""
from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="ACTIVITY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="WARNING",
        description="Minimum level written to stderr",
    )

    # ========================================
    # Attempts
    # ========================================
    default_variant: int = Field(
        default=1,
        ge=0,
        description="Activity variant index used when none is given",
    )
    initial_question_counter: int = Field(
        default=1,
        ge=0,
        description="Number given to the first question of an activity",
    )

    # ========================================
    # Persistence
    # ========================================
    clear_doc_state_on_save: bool = Field(
        default=False,
        description="Drop document state pointers from saved activity state",
    )
    json_indent: int | None = Field(
        default=2,
        description="Indentation of written state files (None for compact)",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
