"""
StayVia Reminders — Centralized configuration.

Loads all settings from .env and validates required keys.
Every other module reads its knobs from the `settings` singleton below.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from stayvia/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)

_POLICIES = {"skip", "fire_now"}


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram: delivery platform for reminders
    TELEGRAM_BOT_TOKEN: str

    # Calendar provider: "google" | "caldav"
    CALENDAR_PROVIDER: str = "google"
    CALENDAR_NAME: str = "StayVia Payments"

    # Google Calendar (only needed when CALENDAR_PROVIDER=google)
    GOOGLE_CREDENTIALS_PATH: str = "credentials.json"
    GOOGLE_TOKEN_PATH: str = "token.json"

    # CalDAV (only needed when CALENDAR_PROVIDER=caldav)
    CALDAV_URL: str = ""
    CALDAV_USERNAME: str = ""
    CALDAV_PASSWORD: str = ""

    # SQLite
    DATABASE_PATH: str = "data/stayvia.db"

    # Security: empty list means anyone may register
    ALLOWED_USER_IDS: list[int] = []

    # Reminders
    TIMEZONE: str = "Asia/Manila"
    REMINDER_HOUR: int = 9
    CURRENCY_SYMBOL: str = "₱"
    POLL_INTERVAL_MINUTES: int = 60
    POLL_STARTUP_DELAY_SECONDS: int = 3
    RATING_REMINDER_DELAY_DAYS: int = 7
    PAYMENT_PAST_DUE_POLICY: str = "skip"
    RATING_PAST_DUE_POLICY: str = "fire_now"

    # Calendar sync
    SYNC_LOOKAHEAD_DAYS: int = 365

    @field_validator("ALLOWED_USER_IDS", mode="before")
    @classmethod
    def parse_user_ids(cls, v: str | list[int]) -> list[int]:
        if isinstance(v, list):
            return v
        if isinstance(v, str) and v.strip():
            return [int(uid.strip()) for uid in v.split(",") if uid.strip()]
        return []

    @field_validator(
        "REMINDER_HOUR",
        "POLL_INTERVAL_MINUTES",
        "POLL_STARTUP_DELAY_SECONDS",
        "RATING_REMINDER_DELAY_DAYS",
        "SYNC_LOOKAHEAD_DAYS",
        mode="before",
    )
    @classmethod
    def parse_int(cls, v: str | int) -> int:
        return int(v)

    @field_validator("REMINDER_HOUR")
    @classmethod
    def check_hour(cls, v: int) -> int:
        if not 0 <= v <= 23:
            raise ValueError(f"REMINDER_HOUR must be 0-23, got {v}")
        return v

    @field_validator("PAYMENT_PAST_DUE_POLICY", "RATING_PAST_DUE_POLICY")
    @classmethod
    def check_policy(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in _POLICIES:
            raise ValueError(f"Past-due policy must be one of {sorted(_POLICIES)}, got {v!r}")
        return v


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    token = os.getenv("TELEGRAM_BOT_TOKEN", "")

    if not token or token.startswith("your-"):
        print("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    return Settings(
        TELEGRAM_BOT_TOKEN=token,
        CALENDAR_PROVIDER=os.getenv("CALENDAR_PROVIDER", "google"),
        CALENDAR_NAME=os.getenv("CALENDAR_NAME", "StayVia Payments"),
        GOOGLE_CREDENTIALS_PATH=os.getenv("GOOGLE_CREDENTIALS_PATH", "credentials.json"),
        GOOGLE_TOKEN_PATH=os.getenv("GOOGLE_TOKEN_PATH", "token.json"),
        CALDAV_URL=os.getenv("CALDAV_URL", ""),
        CALDAV_USERNAME=os.getenv("CALDAV_USERNAME", ""),
        CALDAV_PASSWORD=os.getenv("CALDAV_PASSWORD", ""),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/stayvia.db"),
        ALLOWED_USER_IDS=os.getenv("ALLOWED_USER_IDS", ""),
        TIMEZONE=os.getenv("TIMEZONE", "Asia/Manila"),
        REMINDER_HOUR=os.getenv("REMINDER_HOUR", "9"),
        CURRENCY_SYMBOL=os.getenv("CURRENCY_SYMBOL", "₱"),
        POLL_INTERVAL_MINUTES=os.getenv("POLL_INTERVAL_MINUTES", "60"),
        POLL_STARTUP_DELAY_SECONDS=os.getenv("POLL_STARTUP_DELAY_SECONDS", "3"),
        RATING_REMINDER_DELAY_DAYS=os.getenv("RATING_REMINDER_DELAY_DAYS", "7"),
        PAYMENT_PAST_DUE_POLICY=os.getenv("PAYMENT_PAST_DUE_POLICY", "skip"),
        RATING_PAST_DUE_POLICY=os.getenv("RATING_PAST_DUE_POLICY", "fire_now"),
        SYNC_LOOKAHEAD_DAYS=os.getenv("SYNC_LOOKAHEAD_DAYS", "365"),
    )


# Singleton, imported by all other modules as:
#   from stayvia.config import settings
settings = _load_settings()
