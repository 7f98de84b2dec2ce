"""
Configuration Management for Household Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: Operational limits live here, not in the services.
Batch sizes, page sizes and retry behaviour are tuned per deployment,
while the business rules (enumerations, invariants) stay in code.
"""

import re
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerSettings(BaseSettings):
    """
    Ledger engine settings.

    Loads configuration from LEDGER_* environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    log_level: str = Field(
        default="INFO",
        description="Minimum level for local structured logs"
    )

    # Write limits
    max_batch_size: int = Field(
        default=1000,
        ge=1,
        description="Maximum transactions accepted by one batch create"
    )
    max_bulk_delete: int = Field(
        default=100,
        ge=1,
        description="Maximum transaction ids accepted by one bulk delete"
    )

    # Read paging
    store_page_size: int = Field(
        default=1000,
        ge=1,
        description="Rows requested per store call when paging through results"
    )
    default_page_limit: int = Field(
        default=100,
        ge=1,
        description="Page size used when an offset is given without a limit"
    )

    # Store access
    prefer_validated_insert: bool = Field(
        default=True,
        description="Use the store's atomic validated-insert procedure when available"
    )
    store_retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts for idempotent store reads on connection errors"
    )
    store_retry_wait_multiplier: float = Field(
        default=1.0,
        ge=0.0,
        description="Exponential backoff multiplier (seconds)"
    )
    store_retry_wait_max: float = Field(
        default=10.0,
        ge=0.0,
        description="Upper bound for a single backoff wait (seconds)"
    )

    # Defaults written into a new owner's settings
    default_base_currency: str = Field(
        default="ETB",
        description="Base currency stored for a new owner"
    )

    @field_validator("default_base_currency")
    @classmethod
    def validate_base_currency(cls, v: str) -> str:
        """Base currency must be a 3-letter code."""
        v = v.strip().upper()
        if not re.fullmatch(r"[A-Z]{3}", v):
            raise ValueError("Base currency must be a 3-letter ISO code")
        return v

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.upper()


@lru_cache()
def get_settings() -> LedgerSettings:
    """
    Get ledger settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return LedgerSettings()
