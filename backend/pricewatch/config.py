"""Application configuration via Pydantic Settings."""

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Database (only used by the SQLAlchemy observation store)
    DATABASE_URL: str = "sqlite+aiosqlite:///./pricewatch.db"

    @model_validator(mode="after")
    def fix_database_url(self) -> "Settings":
        """Hosting providers hand out postgres:// but asyncpg needs postgresql+asyncpg://"""
        url = self.DATABASE_URL
        if url.startswith("postgresql://"):
            self.DATABASE_URL = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        elif url.startswith("postgres://"):
            self.DATABASE_URL = url.replace("postgres://", "postgresql+asyncpg://", 1)
        return self

    # App
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # Scheduler
    SCHEDULER_TICK_SECONDS: float = 2.0
    SCHEDULER_BATCH_SIZE: int = 5
    DEFAULT_PLAN_TIER: str = "starter"

    # Delta & alert thresholds (percent)
    ALERT_MIN_CHANGE_PERCENT: float = 2.0
    ALERT_MEDIUM_CHANGE_PERCENT: float = 5.0
    ALERT_HIGH_CHANGE_PERCENT: float = 10.0
    ALERT_DELIVERY_ATTEMPTS: int = 3

    # Market intelligence
    HISTORY_RETENTION_DAYS: int = 30

    # Real-time distribution
    SUBSCRIBER_TIMEOUT_SECONDS: float = 5.0
    SUBSCRIBER_QUEUE_SIZE: int = 100

    # HTTP adapters
    HTTP_USER_AGENT: str = ""  # Empty string rotates through the built-in pool

    # Use the SQLAlchemy store instead of the in-memory one
    PERSIST_OBSERVATIONS: bool = False


settings = Settings()
