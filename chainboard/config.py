"""Chainboard configuration settings."""

from __future__ import annotations

import re
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=True)

    # Database
    DATABASE_URL: str = "sqlite:///./chainboard.db"
    DB_MAX_RETRIES: int = 3
    DB_RETRY_DELAY_MS: int = 500

    # Application
    APP_NAME: str = "Chainboard API"
    APP_VERSION: str = "1.0.0"
    APP_ENV: str = "production"
    LOG_LEVEL: str = "error"

    # Comma separated user ids allowed to manage template permissions
    ADMIN_USER_IDS: str = ""

    @property
    def admin_user_ids(self) -> List[int]:
        if not self.ADMIN_USER_IDS:
            return []
        return [int(uid) for uid in self.ADMIN_USER_IDS.split(",") if uid.strip()]

    @property
    def safe_database_url(self) -> str:
        """The database URL with any password masked, for log output."""
        return re.sub(r"(://[^:/@]+:)[^@]*@", r"\1hunter2@", self.DATABASE_URL)


settings = Settings()
