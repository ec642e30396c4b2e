from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    """Application configuration loaded from environment variables."""

    app_name: str = os.getenv("APP_NAME", "Crypto Portfolio Tracker")
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./tracker.db")
    price_ttl_seconds: int = int(os.getenv("PRICE_TTL_SECONDS", "60"))
    allocation_others_threshold_pct: float = float(
        os.getenv("ALLOCATION_OTHERS_THRESHOLD_PCT", "2.0")
    )
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    sqlite_busy_timeout_ms: int = int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "30000"))
    sqlite_journal_mode: str = os.getenv("SQLITE_JOURNAL_MODE", "WAL")


settings = Settings()
