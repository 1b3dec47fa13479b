"""
GoalGrid Engine — Centralized configuration.

Loads settings from .env / environment variables and validates them.
Engines take their inputs explicitly; only the stores and services fall back
to these values when the caller does not pass one.
"""

from __future__ import annotations

import os
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (one level up from goalgrid/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # SQLite
    DATABASE_PATH: str = "data/goalgrid.db"

    # Used when a user record carries no timezone
    DEFAULT_TIMEZONE: str = "America/Chicago"

    # Trailing window for consistency % and recent completions
    CONSISTENCY_WINDOW_DAYS: int = 30

    # Group challenges
    DEFAULT_CHALLENGE_THRESHOLD: int = 90
    DEFAULT_CHALLENGE_DURATION_DAYS: int = 7

    # Historical backfill
    MAX_BULK_LOG_DAYS: int = 365

    @field_validator("DEFAULT_TIMEZONE")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {v!r}") from exc
        return v

    @field_validator(
        "CONSISTENCY_WINDOW_DAYS",
        "DEFAULT_CHALLENGE_DURATION_DAYS",
        "MAX_BULK_LOG_DAYS",
        mode="before",
    )
    @classmethod
    def parse_positive_int(cls, v: str | int) -> int:
        value = int(v)
        if value < 1:
            raise ValueError(f"Must be a positive integer, got {value}")
        return value

    @field_validator("DEFAULT_CHALLENGE_THRESHOLD", mode="before")
    @classmethod
    def parse_threshold(cls, v: str | int) -> int:
        value = int(v)
        if not 0 <= value <= 100:
            raise ValueError(f"Threshold must be within 0-100, got {value}")
        return value


def _load_settings() -> Settings:
    """Load settings from environment."""
    return Settings(
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/goalgrid.db"),
        DEFAULT_TIMEZONE=os.getenv("DEFAULT_TIMEZONE", "America/Chicago"),
        CONSISTENCY_WINDOW_DAYS=os.getenv("CONSISTENCY_WINDOW_DAYS", "30"),
        DEFAULT_CHALLENGE_THRESHOLD=os.getenv("DEFAULT_CHALLENGE_THRESHOLD", "90"),
        DEFAULT_CHALLENGE_DURATION_DAYS=os.getenv("DEFAULT_CHALLENGE_DURATION_DAYS", "7"),
        MAX_BULK_LOG_DAYS=os.getenv("MAX_BULK_LOG_DAYS", "365"),
    )


# Singleton — imported by other modules as:
#   from goalgrid.config import settings
settings = _load_settings()
