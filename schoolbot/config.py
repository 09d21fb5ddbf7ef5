"""
Central configuration via pydantic-settings.
All secrets are read from environment variables / .env file.
"""
from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Telegram ──────────────────────────────────────────────────────────────
    BOT_TOKEN: str

    # ── School backend ────────────────────────────────────────────────────────
    API_BASE_URL: str = "http://localhost:8000"
    API_TIMEOUT_SECONDS: float = 10.0

    # Upper bound for the compensating delete issued when a wizard is abandoned
    COMPENSATION_TIMEOUT_SECONDS: float = 5.0

    # Retries after the first /api/user lookup when login returns no permissions
    PERMISSION_RETRIES: int = 2
    PERMISSION_RETRY_DELAY_SECONDS: float = 0.4

    # ── Database (orphaned-account ledger) ────────────────────────────────────
    DATABASE_URL: str = "sqlite+aiosqlite:///./schoolbot.db"

    LOG_LEVEL: str = "INFO"

    @property
    def async_database_url(self) -> str:
        """
        Hosting providers inject DATABASE_URL as 'postgresql://...'
        SQLAlchemy async requires 'postgresql+asyncpg://...'
        This property fixes the prefix automatically.
        """
        url = self.DATABASE_URL
        if url.startswith("postgres://"):
            url = "postgresql://" + url[len("postgres://"):]
        if url.startswith("postgresql://"):
            return url.replace("://", "+asyncpg://", 1)
        return url

    @property
    def api_base_url(self) -> str:
        return self.API_BASE_URL.rstrip("/")


settings = Settings()
