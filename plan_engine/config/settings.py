import os
from pathlib import Path

from loguru import logger
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_database_url() -> str:
    """Get database URL, using an absolute path for SQLite.

    SQLite is only meant for local development and tests. Set DATABASE_URL to a
    PostgreSQL connection string anywhere the calendar must survive restarts.
    """
    db_url = os.getenv("DATABASE_URL", "")
    if db_url:
        return db_url

    db_path = Path(__file__).parent.parent.parent / "plan_engine.db"
    db_url = f"sqlite:///{db_path.resolve()}"
    logger.warning(f"Using SQLite database (LOCAL DEV ONLY): {db_url}. Set DATABASE_URL for PostgreSQL.")
    return db_url


class Settings(BaseSettings):
    database_url: str = Field(
        default_factory=get_database_url,
        validation_alias="DATABASE_URL",
    )
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_file: str | None = Field(default=None, validation_alias="LOG_FILE")
    materialize_retry_attempts: int = Field(
        default=2,
        ge=1,
        le=5,
        validation_alias="MATERIALIZE_RETRY_ATTEMPTS",
        description="Total attempts for a materialization run, including the first one",
    )
    materialize_retry_backoff_ms: int = Field(
        default=150,
        ge=0,
        validation_alias="MATERIALIZE_RETRY_BACKOFF_MS",
        description="Fixed delay before retrying a materialization after a transient storage fault",
    )
    long_session_threshold_minutes: int = Field(
        default=90,
        ge=0,
        multiple_of=10,
        validation_alias="LONG_SESSION_THRESHOLD_MINUTES",
        description="Sessions at or above this raw duration round to 10-minute increments",
    )
    default_time_zone: str = Field(default="UTC", validation_alias="DEFAULT_TIME_ZONE")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Validate that log level is one of the standard logging levels."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_value = value.upper()
        if upper_value not in valid_levels:
            logger.warning(f"Invalid LOG_LEVEL '{value}'. Valid levels are: {', '.join(sorted(valid_levels))}. Defaulting to INFO.")
            return "INFO"
        return upper_value

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )


settings = Settings()
