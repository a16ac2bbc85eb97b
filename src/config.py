"""
Ticky Assistant — Centralized configuration.

Loads all settings from .env and validates required keys.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from src/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram
    TELEGRAM_BOT_TOKEN: str

    # LLM — provider-agnostic (gemini, anthropic, openai, cohere)
    LLM_PROVIDER: str = "openai"
    LLM_MODEL: str = ""          # empty → smart default per provider
    LLM_API_KEY: str

    # SQLite
    DATABASE_PATH: str = "data/ticky.db"

    # Admins bypass every usage limit
    ADMIN_USER_IDS: list[int] = []

    # Server-local timezone: quota day boundary, dependency-support sweeps,
    # habit reminder crons
    TIMEZONE: str = "Europe/Moscow"

    # Broadcast occasions (user-local wall clock)
    MORNING_HOUR: int = 9
    EVENING_HOUR: int = 21
    SEND_WINDOW_MINUTES: int = 10

    # Habit reminders
    HABIT_REMINDERS_ENABLED: bool = True
    REMINDER_DEDUP_MINUTES: int = 30

    # Per-call budget for the AI and messaging collaborators
    COLLABORATOR_TIMEOUT_SECONDS: float = 30.0

    TRIAL_DAYS: int = 7

    @field_validator("ADMIN_USER_IDS", mode="before")
    @classmethod
    def parse_user_ids(cls, v: str | list[int]) -> list[int]:
        if isinstance(v, list):
            return v
        if isinstance(v, str) and v.strip():
            return [int(uid.strip()) for uid in v.split(",") if uid.strip()]
        return []

    @field_validator("HABIT_REMINDERS_ENABLED", mode="before")
    @classmethod
    def parse_flag(cls, v: str | bool) -> bool:
        if isinstance(v, bool):
            return v
        return str(v).strip().lower() in ("1", "true", "yes", "on")


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    token = os.getenv("TELEGRAM_BOT_TOKEN", "")
    llm_api_key = os.getenv("LLM_API_KEY", "")

    if not token or token.startswith("your-"):
        print("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    if not llm_api_key or llm_api_key.startswith("your-"):
        print("ERROR: LLM_API_KEY is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    return Settings(
        TELEGRAM_BOT_TOKEN=token,
        LLM_PROVIDER=os.getenv("LLM_PROVIDER", "openai"),
        LLM_MODEL=os.getenv("LLM_MODEL", ""),
        LLM_API_KEY=llm_api_key,
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/ticky.db"),
        ADMIN_USER_IDS=os.getenv("ADMIN_USER_IDS", ""),
        TIMEZONE=os.getenv("TIMEZONE", "Europe/Moscow"),
        MORNING_HOUR=os.getenv("MORNING_HOUR", "9"),
        EVENING_HOUR=os.getenv("EVENING_HOUR", "21"),
        SEND_WINDOW_MINUTES=os.getenv("SEND_WINDOW_MINUTES", "10"),
        HABIT_REMINDERS_ENABLED=os.getenv("HABIT_REMINDERS_ENABLED", "true"),
        REMINDER_DEDUP_MINUTES=os.getenv("REMINDER_DEDUP_MINUTES", "30"),
        COLLABORATOR_TIMEOUT_SECONDS=os.getenv("COLLABORATOR_TIMEOUT_SECONDS", "30"),
        TRIAL_DAYS=os.getenv("TRIAL_DAYS", "7"),
    )


# Singleton — imported by all other modules as:
#   from src.config import settings
settings = _load_settings()
