"""
Recurring Events — Centralized configuration.

Loads all settings from .env and validates them.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from src/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # SQLite
    DATABASE_PATH: str = "data/events.db"

    # Reconciliation policy
    LOOKAHEAD_DAYS: int = 14
    MATCH_TOLERANCE_MINUTES: int = 5
    MAX_INSTANCES: int = 50

    # Scheduler driver
    PROCESS_INTERVAL_MINUTES: int = 60
    MAX_CONCURRENT_TEMPLATES: int = 4

    LOG_LEVEL: str = "INFO"

    @field_validator(
        "LOOKAHEAD_DAYS",
        "MATCH_TOLERANCE_MINUTES",
        "MAX_INSTANCES",
        "PROCESS_INTERVAL_MINUTES",
        "MAX_CONCURRENT_TEMPLATES",
        mode="before",
    )
    @classmethod
    def parse_positive_int(cls, v: str | int) -> int:
        value = int(v)
        if value < 1:
            raise ValueError(f"must be a positive integer, got {value}")
        return value

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def parse_log_level(cls, v: str) -> str:
        return str(v).strip().upper() or "INFO"


def _load_settings() -> Settings:
    """Load settings from environment."""
    return Settings(
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/events.db"),
        LOOKAHEAD_DAYS=os.getenv("LOOKAHEAD_DAYS", "14"),
        MATCH_TOLERANCE_MINUTES=os.getenv("MATCH_TOLERANCE_MINUTES", "5"),
        MAX_INSTANCES=os.getenv("MAX_INSTANCES", "50"),
        PROCESS_INTERVAL_MINUTES=os.getenv("PROCESS_INTERVAL_MINUTES", "60"),
        MAX_CONCURRENT_TEMPLATES=os.getenv("MAX_CONCURRENT_TEMPLATES", "4"),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
    )


# Singleton — imported by all other modules as:
#   from src.config import settings
settings = _load_settings()
