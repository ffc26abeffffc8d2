"""
Tama Assistant — Centralized configuration.

Loads all settings from .env and validates required keys.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from tama/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram
    TELEGRAM_BOT_TOKEN: str

    # LLM — provider-agnostic (openai, anthropic, gemini, cohere)
    LLM_PROVIDER: str = "openai"
    LLM_MODEL: str = ""          # empty → smart default per provider
    LLM_API_KEY: str
    LLM_TIMEOUT_SECONDS: float = 20.0

    # Audio — OpenAI Whisper (transcription only)
    OPENAI_API_KEY: str = ""

    # Key-value store: "redis" | "sqlite"
    STORE_BACKEND: str = "redis"
    REDIS_URL: str = "redis://localhost:6379/0"
    DATABASE_PATH: str = "data/tama.db"

    # QStash delayed delivery
    QSTASH_TOKEN: str = ""
    QSTASH_CURRENT_SIGNING_KEY: str = ""
    QSTASH_NEXT_SIGNING_KEY: str = ""
    BASE_URL: str = ""           # public URL the scheduler calls back into

    # One timezone per deployment
    TIMEZONE: str = "America/Los_Angeles"

    # Security (empty → everyone may talk to the bot)
    ALLOWED_USER_IDS: list[int] = []

    # HTTP server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    @field_validator("ALLOWED_USER_IDS", mode="before")
    @classmethod
    def parse_user_ids(cls, v: str | list[int]) -> list[int]:
        if isinstance(v, list):
            return v
        if isinstance(v, str) and v.strip():
            return [int(uid.strip()) for uid in v.split(",") if uid.strip()]
        return []

    @field_validator("STORE_BACKEND", "LLM_PROVIDER", mode="before")
    @classmethod
    def lowercase(cls, v: str) -> str:
        return v.strip().lower()

    @property
    def notify_url(self) -> str:
        """Callback endpoint handed to the scheduler."""
        return f"{self.BASE_URL.rstrip('/')}/api/notify"


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
        LLM_TIMEOUT_SECONDS=os.getenv("LLM_TIMEOUT_SECONDS", "20"),
        OPENAI_API_KEY=os.getenv("OPENAI_API_KEY", ""),
        STORE_BACKEND=os.getenv("STORE_BACKEND", "redis"),
        REDIS_URL=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/tama.db"),
        QSTASH_TOKEN=os.getenv("QSTASH_TOKEN", ""),
        QSTASH_CURRENT_SIGNING_KEY=os.getenv("QSTASH_CURRENT_SIGNING_KEY", ""),
        QSTASH_NEXT_SIGNING_KEY=os.getenv("QSTASH_NEXT_SIGNING_KEY", ""),
        BASE_URL=os.getenv("BASE_URL", ""),
        TIMEZONE=os.getenv("TIMEZONE", "America/Los_Angeles"),
        ALLOWED_USER_IDS=os.getenv("ALLOWED_USER_IDS", ""),
        HOST=os.getenv("HOST", "0.0.0.0"),
        PORT=os.getenv("PORT", "8000"),
    )


# Singleton — imported by all other modules as:
#   from tama.config import settings
settings = _load_settings()
