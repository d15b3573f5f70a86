"""Configuration management for the resale listing toolkit."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


class Settings:
    """Application settings loaded from environment variables."""

    # eBay API
    EBAY_CLIENT_ID: Optional[str] = os.getenv("EBAY_CLIENT_ID")
    EBAY_CLIENT_SECRET: Optional[str] = os.getenv("EBAY_CLIENT_SECRET")
    EBAY_APP_ID: Optional[str] = os.getenv("EBAY_APP_ID") or os.getenv("EBAY_CLIENT_ID")
    EBAY_MARKETPLACE: str = os.getenv("EBAY_MARKETPLACE", "EBAY_US")
    EBAY_GLOBAL_ID: str = os.getenv("EBAY_GLOBAL_ID", "EBAY-US")
    EBAY_ENTRIES: int = _int_env("EBAY_ENTRIES", 100)

    # Metadata sources
    GOOGLE_BOOKS_API_KEY: Optional[str] = os.getenv("GOOGLE_BOOKS_API_KEY")

    # Text generation
    OPENAI_API_KEY: Optional[str] = os.getenv("OPENAI_API_KEY")
    OPENAI_MODEL: str = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
    OPENAI_API_URL: str = os.getenv("OPENAI_API_URL", "https://api.openai.com/v1/chat/completions")

    # Pricing
    FALLBACK_PRICE: float = _float_env("FALLBACK_PRICE", 7.99)
    BATCH_DELAY: float = _float_env("BATCH_DELAY", 0.5)

    # Paths
    CACHE_DIR: Path = Path(os.getenv("RESALE_LISTER_HOME", str(Path.home() / ".resale_lister"))).expanduser()

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()


settings = Settings()
