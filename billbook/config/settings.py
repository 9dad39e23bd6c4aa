"""
Configuration Management for billbook

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what the ledger depends on and ensures all
required configuration is validated at startup.
"""

from decimal import Decimal
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Embedded store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="BILLBOOK_DB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    url: str = Field(
        default="sqlite:///billbook.db",
        description="SQLAlchemy URL of the ledger database"
    )
    echo: bool = Field(
        default=False,
        description="Log every SQL statement"
    )
    busy_timeout_seconds: float = Field(
        default=5.0,
        ge=0.0,
        description="How long SQLite waits on a locked database before failing"
    )

    @field_validator('url')
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Only SQLite is supported: the ledger assumes a single local writer."""
        if not v.startswith("sqlite"):
            raise ValueError(f"Unsupported database URL: {v}. Only sqlite URLs are allowed")
        return v

    @property
    def is_memory(self) -> bool:
        return self.url in ("sqlite://", "sqlite:///:memory:")


class LedgerSettings(BaseSettings):
    """Ledger engine behaviour."""

    model_config = SettingsConfigDict(
        env_prefix="BILLBOOK_LEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts for a unit of work when the store is busy"
    )
    retry_max_wait_seconds: float = Field(
        default=2.0,
        ge=0.0,
        description="Upper bound of the exponential backoff between attempts"
    )
    default_ledger_id: Optional[int] = Field(
        default=None,
        description="Ledger (book) used when the caller does not pass one"
    )
    max_bill_amount: Decimal = Field(
        default=Decimal("10000000"),
        gt=0,
        description="Bills above this amount get a validation warning"
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

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, plus `<name>_error`
    entries for the groups that failed. Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("database", "ledger"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
