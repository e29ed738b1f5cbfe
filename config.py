"""
config.py
Application settings (environment variables prefixed with ABONNEMENTS_, or a .env file).
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # =====================================
    # DATABASE
    # =====================================
    DB_FILE: Path = Path(__file__).with_name("abonnements.db")

    # =====================================
    # SUBSCRIPTIONS
    # =====================================
    EXPIRING_SOON_DAYS: int = 30
    RENEWABLE_WITHIN_DAYS: int = 7
    ALLOW_CANCELLED_EDITS: bool = True
    CURRENCY: str = "DH"

    # =====================================
    # LOGGING
    # =====================================
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    model_config = SettingsConfigDict(
        env_prefix="ABONNEMENTS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
