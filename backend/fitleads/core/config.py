"""
Application configuration management.

Loads settings from environment variables with validation.
Secrets and connection strings should be provided via environment variables.
"""

from functools import lru_cache
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses pydantic-settings for validation and type coercion.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Application Settings
    # ==========================================================================
    environment: str = Field(default="development",
                             description="Runtime environment")
    debug: bool = Field(default=False, description="Enable debug mode")
    app_name: str = Field(default="FitLeads",
                          description="Application name")
    app_version: str = Field(
        default="1.0.0", description="Application version")

    # ==========================================================================
    # Server Settings
    # ==========================================================================
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")

    # ==========================================================================
    # Database Settings
    # ==========================================================================
    database_url: str = Field(
        default="sqlite:///./fitleads.db",
        description="SQLAlchemy connection string (PostgreSQL in production)"
    )
    db_pool_size: int = Field(
        default=10, description="Database connection pool size")
    db_max_overflow: int = Field(
        default=10, description="Max overflow connections")
    db_pool_recycle: int = Field(
        default=1800, description="Connection recycle time in seconds (30 min)")
    db_pool_timeout: int = Field(
        default=30, description="Connection checkout timeout in seconds")

    # ==========================================================================
    # Redis Cache Settings
    # ==========================================================================
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL"
    )
    cache_enabled: bool = Field(
        default=True, description="Enable/disable Redis caching")
    cache_ttl_analytics: int = Field(
        default=60, description="Analytics data cache TTL in seconds")

    # ==========================================================================
    # Lead Lifecycle
    # ==========================================================================
    follow_up_days: int = Field(
        default=3,
        description="Days a Contacted lead may sit idle before it is promoted to Follow Up"
    )
    maintenance_workers: int = Field(
        default=3,
        description="Worker threads used to run the maintenance sub-passes"
    )

    # ==========================================================================
    # CORS Settings
    # ==========================================================================
    cors_origins: str = Field(
        default="http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000",
        description="Comma-separated list of allowed CORS origins"
    )

    # ==========================================================================
    # Logging
    # ==========================================================================
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(
        default="text", description="Log format (json or text)")

    # ==========================================================================
    # Computed Properties
    # ==========================================================================
    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins string into list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment.lower() == "development"

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    # ==========================================================================
    # Validators
    # ==========================================================================
    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v.upper()

    @field_validator("follow_up_days", "maintenance_workers")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.

    Returns:
        Settings instance with values from environment
    """
    return Settings()


# Global settings instance
settings = get_settings()
