"""
Configuration settings for the lexicard vocabulary service.

Uses Pydantic Settings for environment variable management with .env file support.
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Local Replica
    # ========================================
    data_dir: Path = Field(
        default=Path.home() / ".lexicard",
        description="Directory holding the local replica database",
    )
    local_database_url: str | None = Field(
        default=None,
        description="SQLAlchemy URL for the local replica (defaults to SQLite in data_dir)",
    )

    # ========================================
    # Remote Replica (per-user document store)
    # ========================================
    remote_api_url: str | None = Field(
        default=None,
        description="Base URL of the remote document store (unset disables sign-in sync)",
    )
    remote_api_token: str | None = Field(
        default=None,
        description="Bearer token sent to the remote document store",
    )
    remote_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout applied to every remote request",
    )
    remote_retry_attempts: int = Field(
        default=3,
        description="Attempts per remote request on timeouts and 5xx responses",
    )
    remote_retry_backoff_seconds: float = Field(
        default=0.5,
        description="Base delay for exponential backoff between retries",
    )
    remote_batch_size: int = Field(
        default=500,
        description="Maximum documents per batched remote write",
    )

    # ========================================
    # Reconciliation
    # ========================================
    recent_list_threshold_seconds: float = Field(
        default=30.0,
        description="Local-only lists younger than this survive a merge",
    )

    # ========================================
    # Spaced Repetition
    # ========================================
    srs_initial_ease: float = Field(default=2.5, description="Ease factor for new cards")
    srs_minimum_ease: float = Field(
        default=1.3, ge=1.3, description="Hard floor for the ease factor"
    )
    srs_learning_steps_minutes: list[float] = Field(
        default_factory=lambda: [1.0, 10.0],
        description="Learning steps for new and lapsed cards (minutes)",
    )
    srs_graduating_interval_days: float = Field(
        default=1.0,
        description="First review interval after leaving the learning phase",
    )
    srs_easy_bonus: float = Field(default=1.3, description="Interval multiplier on 'easy'")
    srs_hard_interval_multiplier: float = Field(
        default=1.2,
        description="Interval multiplier on 'hard' in the review phase",
    )
    srs_mature_interval_days: float = Field(
        default=21.0,
        description="Interval at which a card counts as mature",
    )

    # ========================================
    # User Defaults
    # ========================================
    default_source_lang: str = Field(default="en", description="Default source language")
    default_target_lang: str = Field(default="es", description="Default target language")

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging verbosity level",
    )
    log_file: str | None = Field(
        default=None,
        description="Log file path (None for stderr only)",
    )

    @property
    def resolved_database_url(self) -> str:
        """Local replica URL, falling back to a SQLite file in data_dir."""
        if self.local_database_url:
            return self.local_database_url
        return f"sqlite:///{self.data_dir / 'local.db'}"

    @property
    def remote_enabled(self) -> bool:
        """True when a remote document store is configured."""
        return bool(self.remote_api_url)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
