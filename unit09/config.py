"""
Configuration management for unit09.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="UNIT09_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="unit09")
    environment: str = Field(default="development")

    # Database
    database_url: str = Field(default="sqlite:///./unit09.db")

    # Storage backends: "memory" or "sql"
    ledger_backend: str = Field(default="memory")
    worker_queue_backend: str = Field(default="memory")

    # Worker loop
    worker_poll_interval: float = Field(
        default=1.0, gt=0, description="Seconds between dispatch ticks"
    )
    worker_max_concurrency: int = Field(
        default=4, ge=1, description="Hard ceiling on jobs in flight"
    )
    worker_stages: str = Field(default="stub")
    observe_interval_seconds: Optional[float] = Field(
        default=None,
        gt=0,
        description="Seconds between periodic observation rounds. None disables them.",
    )

    # Jobs
    job_max_attempts: int = Field(default=3, ge=1)
    job_timeout_seconds: Optional[float] = Field(
        default=None,
        gt=0,
        description="Deadline for a single handler invocation. None disables it.",
    )

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings."""
    return settings
