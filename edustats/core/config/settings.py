# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Application configuration settings using Pydantic Settings.

This module provides centralized configuration management for EduStats.
Settings are loaded from environment variables with sensible defaults.

The Settings class is the main entry point and aggregates all subsettings.
A singleton instance is provided via get_settings() for dependency injection.

Example:
    >>> from edustats.core.config.settings import get_settings
    >>> settings = get_settings()
    >>> print(settings.environment)
    'development'
"""

from functools import lru_cache
from typing import Literal, Self

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Platform database configuration.

    The platform database holds both the organizational/fact tables owned by
    other services and the rollup tables maintained by EduStats.

    Attributes:
        user: PostgreSQL username.
        password: PostgreSQL password.
        host: Database host address.
        port: Database port number.
        database: Database name.
        url_override: Full async URL, used instead of the components when set.
        pool_size: Connection pool size.
        max_overflow: Maximum overflow connections.
        worker_pool_size: Pool size for per-thread worker engines.
    """

    model_config = SettingsConfigDict(
        env_prefix="DB_",
        populate_by_name=True,
        extra="ignore",
    )

    user: str = "edustats"
    password: SecretStr = SecretStr("edustats_password")
    host: str = "localhost"
    port: int = 5432
    database: str = "edustats"
    url_override: str | None = Field(default=None, alias="DATABASE_URL")
    pool_size: int = 10
    max_overflow: int = 20
    worker_pool_size: int = 2

    @property
    def url(self) -> str:
        """Build the async database URL from components."""
        if self.url_override:
            return self.url_override
        pwd = self.password.get_secret_value()
        return f"postgresql+asyncpg://{self.user}:{pwd}@{self.host}:{self.port}/{self.database}"

    @property
    def sync_url(self) -> str:
        """Build the sync database URL for migrations."""
        pwd = self.password.get_secret_value()
        return f"postgresql://{self.user}:{pwd}@{self.host}:{self.port}/{self.database}"


class RedisSettings(BaseSettings):
    """Redis configuration for the Dramatiq broker.

    Attributes:
        host: Redis server host.
        port: Redis server port.
        password: Redis password.
        database: Redis database number.
    """

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        extra="ignore",
    )

    host: str = "localhost"
    port: int = 6379
    password: SecretStr = SecretStr("")
    database: int = 0

    @property
    def url(self) -> str:
        """Build the Redis connection URL."""
        pwd = self.password.get_secret_value()
        if pwd:
            return f"redis://:{pwd}@{self.host}:{self.port}/{self.database}"
        return f"redis://{self.host}:{self.port}/{self.database}"


class StatisticsSettings(BaseSettings):
    """Statistics aggregation policy.

    Attributes:
        active_student_days: Trailing window for a class's active students.
        daily_active_hours: Trailing window for school-wide daily activity.
        help_completion_threshold: Completion rate below which a student needs help.
        help_accuracy_threshold: Accuracy rate below which a student needs help.
        trend_default_days: Default number of days returned by the trend query.
        retention_days: School snapshots older than this are deleted.
        use_row_locks: Issue SELECT ... FOR UPDATE on rollup rows.
    """

    model_config = SettingsConfigDict(
        env_prefix="STATS_",
        extra="ignore",
    )

    active_student_days: int = Field(default=7, ge=1)
    daily_active_hours: int = Field(default=24, ge=1)
    help_completion_threshold: float = Field(default=50.0, ge=0, le=100)
    help_accuracy_threshold: float = Field(default=60.0, ge=0, le=100)
    trend_default_days: int = Field(default=30, ge=1, le=365)
    retention_days: int = Field(default=365, ge=1)
    use_row_locks: bool = True


class SchedulerSettings(BaseSettings):
    """Periodic job configuration.

    Attributes:
        enabled: Start the scheduler with the API process.
        refresh_cron: Cron expression for the aggregate refresh.
        snapshot_cron: Cron expression for the daily school snapshot.
        repair_cron: Cron expression for the nightly audit and repair.
    """

    model_config = SettingsConfigDict(
        env_prefix="SCHEDULER_",
        extra="ignore",
    )

    enabled: bool = True
    refresh_cron: str = "0 * * * *"
    snapshot_cron: str = "5 0 * * *"
    repair_cron: str = "30 2 * * *"


class APISettings(BaseSettings):
    """API server configuration.

    Attributes:
        host: Server bind host.
        port: Server bind port.
        title: OpenAPI title.
        cors_origins: Origins allowed by the CORS middleware.
    """

    model_config = SettingsConfigDict(
        env_prefix="API_",
        extra="ignore",
    )

    host: str = "0.0.0.0"
    port: int = 8000
    title: str = "EduStats API"
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])


class Settings(BaseSettings):
    """Main application settings aggregating all subsettings.

    Use get_settings() to obtain a cached singleton instance.

    Attributes:
        environment: Current environment (development, staging, production).
        debug: Enable debug mode.
        log_level: Logging level.
        database: Database settings.
        redis: Redis settings.
        statistics: Aggregation policy settings.
        scheduler: Periodic job settings.
        api: API server settings.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "DEBUG"

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    statistics: StatisticsSettings = Field(default_factory=StatisticsSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    api: APISettings = Field(default_factory=APISettings)

    @model_validator(mode="after")
    def validate_production_settings(self) -> Self:
        """Validate that production settings are properly configured.

        Raises:
            ValueError: If running in production with debug enabled.
        """
        if self.environment == "production" and self.debug:
            raise ValueError(
                "Debug mode must be disabled in production. Set DEBUG=false."
            )
        return self

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call clear_settings_cache() if you need to reload settings.

    Returns:
        Cached Settings instance.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing or dynamic configuration updates.
    """
    get_settings.cache_clear()
