"""Application configuration."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Licence Admin API"
    debug: bool = False
    environment: Literal["development", "staging", "production"] = "development"

    # Database (required - no default)
    database_url: str = Field(
        description="PostgreSQL (or SQLite for local tests) connection URL."
    )
    database_pool_size: int = 5
    database_max_overflow: int = 10

    # Provider feed
    provider_api_url: str = "https://provider.example.com/api"
    provider_api_key: str = ""
    provider_page_size: int = 100
    provider_timeout_seconds: float = 30.0

    # Background jobs
    scheduler_enabled: bool = True

    # Reconciliation
    sync_interval_minutes: int = 60
    sync_batch_size: int = 50
    sync_retry_attempts: int = 3
    sync_retry_delay_seconds: float = 2.0
    sync_backoff_multiplier: float = 2.0
    sync_record_timeout_seconds: float = 30.0

    # Fallbacks substituted for records missing mandatory fields
    external_default_dba: str = "External License"
    external_default_product: str = "Business Suite"
    external_default_plan: str = "Basic"

    # Lifecycle policy
    default_grace_period_days: int = Field(default=30, ge=0)
    lifecycle_batch_size: int = 100
    lifecycle_mark_expiring: bool = True
    lifecycle_run_hour: int = Field(default=9, ge=0, le=23)

    # Reminder notifier (optional webhook; logs only when unset)
    reminder_webhook_url: str | None = None
    reminder_webhook_timeout_seconds: float = 10.0
    reminder_webhook_max_retries: int = 3

    @model_validator(mode="after")
    def validate_settings(self) -> "Settings":
        """Validate settings for deployment requirements."""
        if self.environment == "production" and self.debug:
            raise ValueError(
                "DEBUG mode cannot be enabled in production environment. "
                "This would expose API documentation and detailed error messages."
            )

        url = self.database_url
        if not url.startswith(("postgresql://", "postgres://", "postgresql+asyncpg://", "sqlite")):
            raise ValueError(
                "DATABASE_URL must be a PostgreSQL URL (postgresql://) or a SQLite URL"
            )

        if self.environment == "production" and url.startswith("sqlite"):
            raise ValueError("SQLite is not supported in production")

        return self

    @property
    def async_database_url(self) -> str:
        """Get async database URL for SQLAlchemy.

        Converts postgres URLs to the asyncpg driver and sslmode to ssl;
        SQLite URLs are switched to aiosqlite.
        """
        url = self.database_url
        if url.startswith("sqlite://"):
            return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
        if url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql://", 1)
        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return url.replace("sslmode=", "ssl=")

    @property
    def is_sqlite(self) -> bool:
        """Whether the configured database is SQLite."""
        return self.database_url.startswith("sqlite")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
