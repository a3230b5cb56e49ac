"""Application configuration via Pydantic Settings."""

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./algumon.db"

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
    DEBUG: bool = True

    # Algumon source
    ALGUMON_BASE_URL: str = "https://www.algumon.com"
    FETCH_TIMEOUT_SECONDS: float = 30.0
    CATEGORY_PAUSE_SECONDS: float = 1.0
    PARALLEL_FETCH: bool = False

    # Identifier cache
    CACHE_LOAD_LIMIT: int = 2000

    # Scheduling
    SCHEDULER_ENABLED: bool = True
    CRAWL_INTERVAL_MINUTES: int = 5
    INITIAL_CRAWL_DELAY_SECONDS: int = 10

    # Retention (days); rows older than twice this are always purged
    RETENTION_DAYS: int = 7


settings = Settings()
