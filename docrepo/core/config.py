"""
Centralized configuration management using Pydantic Settings.

This module provides type-safe configuration for the document repository layer,
loading settings from environment variables and .env files.
"""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Repository settings loaded from environment variables.

    All settings can be overridden via environment variables
    (e.g. DATABASE_URL, MAX_BATCH_OPERATIONS, LOG_LEVEL).
    """

    # Store Configuration
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/documents.db",
        description="Connection URL of the database backing the document containers"
    )
    database_echo: bool = Field(
        default=False,
        description="Echo emitted SQL statements (debug only)"
    )
    container_name: str = Field(
        default="documents",
        description="Default logical container (collection) name"
    )

    # Query Configuration
    default_page_size: int = Field(
        default=100,
        ge=1,
        le=1000,
        description="Number of documents fetched per page when draining a query"
    )

    # Batch Limits
    max_batch_operations: int = Field(
        default=100,
        ge=1,
        le=1000,
        description="Maximum operations accepted in one atomic batch"
    )
    max_batch_payload_bytes: int = Field(
        default=2 * 1024 * 1024,
        ge=1024,
        description="Maximum serialized size of one atomic batch in bytes"
    )

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Root log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    log_json: bool = Field(
        default=True,
        description="Emit structured JSON logs instead of plain text"
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

        Only async drivers are accepted because every store call is awaited.
        """
        if not v or v.strip() == "":
            raise ValueError("DATABASE_URL is required and cannot be empty")

        valid_schemes = ["sqlite+aiosqlite", "postgresql+asyncpg"]
        if not any(v.startswith(scheme + "://") for scheme in valid_schemes):
            raise ValueError(
                f"DATABASE_URL must start with one of: {', '.join(valid_schemes)}. "
                f"Got: {v[:20]}..."
            )

        return v

    @field_validator("container_name")
    @classmethod
    def validate_container_name(cls, v: str) -> str:
        """Container names are used as a key column; blank names are rejected."""
        if not v or v.strip() == "":
            raise ValueError("CONTAINER_NAME cannot be empty")
        if len(v) > 255:
            raise ValueError("CONTAINER_NAME must be at most 255 characters")
        return v.strip()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        normalized = v.upper().strip()
        if normalized not in levels:
            raise ValueError(
                f"LOG_LEVEL must be one of: {', '.join(sorted(levels))}. Got: {v}"
            )
        return normalized


# Global settings instance
# Import this instance throughout the package
settings = Settings()
