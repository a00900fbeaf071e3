"""
Configuration settings for the review scheduler service.

Uses Pydantic Settings for environment variable management with .env file support.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Any, Literal

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
    # Database
    # ========================================
    database_url: str = Field(
        default="sqlite:///./review_scheduler.db",
        description="SQLAlchemy connection string (SQLite or PostgreSQL)",
    )

    # ========================================
    # API Server
    # ========================================
    api_host: str = Field(default="127.0.0.1", description="API bind host")
    api_port: int = Field(default=8100, description="API bind port")

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Minimum log level for the stderr sink",
    )
    log_file: str | None = Field(
        default=None,
        description="Optional log file path (rotated at 10 MB)",
    )

    # ========================================
    # SM-2 Algorithm
    # ========================================
    sm2_initial_ease: float = Field(default=2.5, ge=1.3, description="Ease factor for new cards")
    sm2_minimum_ease: float = Field(default=1.3, ge=1.3, description="Hard floor for the ease factor")
    sm2_first_interval: int = Field(default=1, ge=1, description="Days after the first pass")
    sm2_second_interval: int = Field(default=6, ge=1, description="Days after the second pass")
    sm2_pass_threshold: int = Field(
        default=3,
        ge=1,
        le=5,
        description="Lowest grade (0-5) that counts as a successful recall",
    )

    # ========================================
    # Due Queue
    # ========================================
    queue_default_limit: int = Field(default=20, ge=1, description="Cards per session by default")
    queue_max_limit: int = Field(default=100, ge=1, description="Largest accepted session size")

    # ========================================
    # Concurrency
    # ========================================
    lock_timeout_ms: int = Field(
        default=300,
        ge=0,
        description="Bounded wait for the per-card review lock before answering Busy",
    )

    # ========================================
    # Statistics / Streaks
    # ========================================
    mastered_interval_days: int = Field(
        default=21,
        ge=1,
        description="Interval (days) from which a card counts as mastered",
    )
    streak_notify_workers: int = Field(
        default=2,
        ge=1,
        description="Worker threads delivering review notifications to the streak aggregator",
    )
    streak_replay_days: int = Field(
        default=400,
        ge=1,
        description="Days of review history replayed into the streak aggregator on startup",
    )

    def get_sm2_config(self) -> dict[str, Any]:
        """Get SM-2 algorithm configuration."""
        return {
            "initial_easiness": self.sm2_initial_ease,
            "minimum_easiness": self.sm2_minimum_ease,
            "first_interval": self.sm2_first_interval,
            "second_interval": self.sm2_second_interval,
            "pass_threshold": self.sm2_pass_threshold,
        }

    def get_queue_config(self) -> dict[str, int]:
        """Get due queue configuration."""
        return {
            "default_limit": self.queue_default_limit,
            "max_limit": max(self.queue_max_limit, self.queue_default_limit),
        }

    @property
    def lock_timeout_seconds(self) -> float:
        return self.lock_timeout_ms / 1000.0


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
