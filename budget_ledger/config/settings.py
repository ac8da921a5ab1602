"""
Configuration Management for Budget Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Every tunable the ledger reads (storage backend, retry limits, amount
ceilings) is declared in one place and validated on first access.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """SQL storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_DB_",
        extra="ignore"
    )

    url: str = Field(
        default="sqlite+aiosqlite:///./budget_ledger.db",
        description="SQLAlchemy async database URL"
    )
    echo: bool = Field(
        default=False,
        description="Log every SQL statement"
    )
    connect_retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts when connecting and creating tables"
    )

    @field_validator('url')
    @classmethod
    def validate_async_driver(cls, v: str) -> str:
        """The engine is async, so the URL must name an async driver."""
        if "+" not in v.split("://", 1)[0]:
            raise ValueError(
                f"Database URL must name an async driver "
                f"(e.g. sqlite+aiosqlite://, postgresql+asyncpg://): {v}"
            )
        return v


class LedgerSettings(BaseSettings):
    """
    Main ledger settings.

    These control how the coordinator validates and retries.
    """

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        extra="ignore"
    )

    # Application settings
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    storage_backend: str = Field(
        default="memory",
        pattern="^(memory|sql)$",
        description="Which storage implementation to wire up"
    )

    # Validation thresholds
    max_amount_in_cents: int = Field(
        default=100_000_000_000,
        gt=0,
        description="Largest single amount accepted (sanity ceiling)"
    )

    # Concurrency
    concurrency_retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts for an operation that loses an optimistic-concurrency race"
    )

    # Audit
    persist_audit_events: bool = Field(
        default=True,
        description="Write audit events to the audit store as well as the log"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def database(self) -> DatabaseSettings:
        return DatabaseSettings()

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    try:
        _ = settings.database
        results["database"] = True
    except ValueError as e:
        results["database"] = False
        results["database_error"] = str(e)

    try:
        _ = settings.ledger
        results["ledger"] = True
    except ValueError as e:
        results["ledger"] = False
        results["ledger_error"] = str(e)

    return results
