"""
Centralized configuration management using Pydantic Settings.

This module provides type-safe configuration management with validation,
loading settings from environment variables and .env files.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class Settings(BaseSettings):
    """
    Repository layer settings loaded from environment variables.

    All settings can be overridden via environment variables
    (DATABASE_URL, DATABASE_ECHO, LOG_LEVEL, ...).
    """

    # Database Configuration
    database_url: str = Field(
        default="sqlite+aiosqlite:///:memory:",
        description="Database connection URL (async driver for AsyncRepository)"
    )
    database_echo: bool = Field(
        default=False,
        description="Echo emitted SQL through the sqlalchemy.engine logger"
    )
    expire_on_commit: bool = Field(
        default=False,
        description="Expire loaded instances after each commit"
    )

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Root log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    log_json: bool = Field(
        default=True,
        description="Emit logs as single-line JSON objects"
    )

    # Pydantic Settings Configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra environment variables
    )

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """
        Validate database URL format.

        Ensures URL has a supported scheme. Both sync and async drivers are
        accepted since Repository and AsyncRepository share the settings.
        """
        if not v or v.strip() == "":
            raise ValueError("DATABASE_URL is required and cannot be empty")

        valid_schemes = [
            "sqlite",
            "sqlite+aiosqlite",
            "sqlite+pysqlite",
            "postgresql",
            "postgresql+asyncpg",
            "postgresql+psycopg",
            "postgresql+psycopg2",
            "mysql+aiomysql",
            "mysql+pymysql",
        ]
        if not any(v.startswith(scheme + "://") for scheme in valid_schemes):
            raise ValueError(
                f"DATABASE_URL must start with one of: {', '.join(valid_schemes)}. "
                f"Got: {v[:20]}..."
            )

        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize log level to upper case and reject unknown names."""
        level = v.strip().upper()
        if level not in VALID_LOG_LEVELS:
            raise ValueError(
                f"LOG_LEVEL must be one of: {', '.join(VALID_LOG_LEVELS)}. Got: {v}"
            )
        return level

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


@lru_cache
def get_settings() -> Settings:
    """Cached settings accessor for dependency injection."""
    return Settings()


# Global settings instance
settings = get_settings()
