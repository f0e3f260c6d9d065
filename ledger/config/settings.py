"""
Configuration Management for Household Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Each group has its own environment prefix and is validated when first read.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StorageSettings(BaseSettings):
    """Record storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_STORAGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    backend: str = Field(
        default="memory",
        pattern="^(memory|sqlite)$",
        description="Storage backend to use"
    )
    sqlite_path: str = Field(
        default="ledger.db",
        description="Path to the SQLite database file"
    )
    lock_retry_attempts: int = Field(
        default=5,
        ge=1,
        le=20,
        description="How many times to retry when the database is locked"
    )

    @field_validator('sqlite_path')
    @classmethod
    def validate_sqlite_path(cls, v: str) -> str:
        """Reject paths whose parent directory does not exist."""
        if v != ":memory:" and not Path(v).expanduser().parent.exists():
            raise ValueError(f"Directory for SQLite database does not exist: {v}")
        return v


class AppSettings(BaseSettings):
    """
    Main application settings.
    
    Loads configuration from environment variables and .env file.
    """
    
    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )
    
    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Minimum level for structured logs"
    )

    # Money
    default_currency: str = Field(
        default="BRL",
        min_length=3,
        max_length=3,
        description="Currency used when an account does not name one"
    )
    currency_precision: int = Field(
        default=2,
        ge=0,
        le=4,
        description="Decimal places money amounts are rounded to"
    )

    # Installment plans
    max_installment_count: int = Field(
        default=360,
        ge=2,
        description="Largest number of installments a plan may have"
    )

    # Categories
    seed_default_categories: bool = Field(
        default=True,
        description="Create the system categories when the ledger starts"
    )

    @field_validator('default_currency')
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()
    
    @property
    def effective_log_level(self) -> str:
        """DEBUG whenever debug mode is on, otherwise ``log_level``."""
        return "DEBUG" if self.debug_mode else self.log_level


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
    def storage(self) -> StorageSettings:
        return StorageSettings()
    
    @property
    def app(self) -> AppSettings:
        return AppSettings()


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
        _ = settings.storage
        results["storage"] = True
    except ValueError as e:
        results["storage"] = False
        results["storage_error"] = str(e)
    
    try:
        _ = settings.app
        results["app"] = True
    except ValueError as e:
        results["app"] = False
        results["app_error"] = str(e)
    
    return results
