"""
Configuration settings for StudyBlocks.

Uses Pydantic Settings for environment variable management with .env file support.
Every key can be overridden with a STUDYBLOCKS_ prefixed environment variable.
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DB_PATH = Path.home() / ".studyblocks" / "studyblocks.db"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="STUDYBLOCKS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Database
    # ========================================
    database_url: str = Field(
        default=f"sqlite:///{DEFAULT_DB_PATH}",
        description="SQLAlchemy connection string for the block store",
    )
    database_echo: bool = Field(
        default=False,
        description="Echo SQL statements (debugging only)",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="WARNING",
        description="Logging verbosity level",
    )

    # ========================================
    # Users & Concurrency
    # ========================================
    default_user_id: str = Field(
        default="local",
        description="User id used by the CLI when none is given",
    )
    lock_timeout_seconds: float = Field(
        default=5.0,
        description="How long a writer waits for the per-user lock before retrying",
    )

    # ========================================
    # Schedule defaults
    # ========================================
    default_horizon_days: int = Field(default=21, ge=7, le=28)
    default_blocks_per_weekday: int = Field(default=3, ge=1)
    default_blocks_per_weekend: int = Field(default=2, ge=0)
    default_block_duration_minutes: int = Field(default=60, gt=0)

    # ========================================
    # Progression (tunable policy, not derived)
    # ========================================
    base_xp_per_hour: int = Field(
        default=100,
        description="XP granted for one hour of study before the confidence multiplier",
    )
    low_confidence_bonus: float = Field(
        default=0.05,
        description="Extra XP fraction per confidence point below 10",
    )
    subject_curve_base: float = Field(default=100.0)
    subject_curve_growth: float = Field(default=1.5)
    subject_curve_exponent: float = Field(default=1.2)
    global_curve_base: float = Field(default=200.0)
    global_curve_growth: float = Field(default=1.8)
    global_curve_exponent: float = Field(default=1.3)

    def get_progression_config(self) -> dict:
        """Return the XP and level curve tunables."""
        return {
            "base_xp_per_hour": self.base_xp_per_hour,
            "low_confidence_bonus": self.low_confidence_bonus,
            "subject_curve": (
                self.subject_curve_base,
                self.subject_curve_growth,
                self.subject_curve_exponent,
            ),
            "global_curve": (
                self.global_curve_base,
                self.global_curve_growth,
                self.global_curve_exponent,
            ),
        }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
