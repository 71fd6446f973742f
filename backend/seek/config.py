"""Application configuration via Pydantic Settings."""

from typing import List
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global scraping service settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./seek.db"

    @model_validator(mode="after")
    def fix_database_url(self) -> "Settings":
        """Hosted Postgres hands out postgresql:// but asyncpg needs postgresql+asyncpg://"""
        url = self.DATABASE_URL
        if url.startswith("postgresql://"):
            self.DATABASE_URL = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        elif url.startswith("postgres://"):
            self.DATABASE_URL = url.replace("postgres://", "postgresql+asyncpg://", 1)
        return self

    # App
    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # Browser
    HEADLESS: bool = True
    NAVIGATION_TIMEOUT_MS: int = 30000
    WAIT_FOR_SELECTOR_TIMEOUT_MS: int = 10000

    # Navigation retry
    NAVIGATION_MAX_ATTEMPTS: int = 3
    NAVIGATION_RETRY_MIN_SECONDS: float = 2.0
    NAVIGATION_RETRY_MAX_SECONDS: float = 30.0

    # Crawl etiquette
    PEAK_HOURS_START: int = 9
    PEAK_HOURS_END: int = 21  # exclusive
    PEAK_DELAY_MULTIPLIER: float = 1.5
    DELAY_JITTER_RATIO: float = 0.3
    BACKOFF_REQUEST_THRESHOLD: int = 50
    MAX_DELAY_SECONDS: float = 30.0

    # Scheduler
    SPECIFIC_PRODUCT_LIMIT: int = 20
    SPECIFIC_PRODUCT_DELAY_MIN_SECONDS: float = 2.0
    SPECIFIC_PRODUCT_DELAY_MAX_SECONDS: float = 5.0

    # Alerts
    ALERT_WEBHOOK_URL: str = ""
    ALERT_WEBHOOK_TIMEOUT_SECONDS: float = 10.0

    # Proxy
    PROXY_LIST: str = ""  # Comma-separated list of proxy URLs

    def get_proxy_list(self) -> List[str]:
        """Parse PROXY_LIST into a list of proxy URLs.

        Returns:
            List of proxy URL strings, empty if PROXY_LIST is not set
        """
        if not self.PROXY_LIST:
            return []
        return [p.strip() for p in self.PROXY_LIST.split(",") if p.strip()]


settings = Settings()
