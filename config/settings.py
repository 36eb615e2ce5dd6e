"""
Configuration settings for the Timebill recurring job service.
All deployment-specific values are loaded from environment variables.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    app_name: str = "Timebill Recurring Jobs"
    debug: bool = Field(default=False)
    environment: str = Field(default="production")

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)

    # Database (SQLite on device, PostgreSQL when hosted)
    database_url: str = Field(default="sqlite+aiosqlite:///./timebill.db")
    database_echo: bool = Field(default=False)
    db_pool_size: int = Field(default=5)
    db_max_overflow: int = Field(default=10)
    db_pool_timeout: int = Field(default=30)
    db_pool_recycle: int = Field(default=1800)

    # Billing collaborator (host application's session/invoice API)
    billing_api_url: str = Field(default="http://localhost:3000/api")
    billing_api_token: Optional[str] = Field(default=None)
    billing_timeout_seconds: float = Field(default=15.0)

    # Scheduler Settings
    # Only used to decide which calendar date "today" is.
    timezone: str = Field(default="UTC")
    refresh_interval_minutes: int = Field(default=15, ge=1)
    auto_complete_due: bool = Field(default=False)
    max_occurrences_per_pass: int = Field(default=100, ge=1)


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get the application settings."""
    return settings
