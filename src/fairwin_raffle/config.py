"""Configuration management service with Pydantic Settings.

Settings are grouped by concern (database, raffle limits, draw randomness,
scheduler) and read from the environment or a local `.env` file.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from functools import lru_cache
from typing import Literal, TypeVar

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"

# USDC uses 6 decimals
USDC_UNIT = 1_000_000

GroupT = TypeVar("GroupT", bound=BaseSettings)


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        default="sqlite+aiosqlite:///./fairwin.db",
        alias="DATABASE_URL",
        description="PostgreSQL (asyncpg) or SQLite (aiosqlite) connection string",
    )
    pool_size: int = Field(
        default=5,
        alias="DATABASE_POOL_SIZE",
        ge=1,
        le=100,
        description="Connection pool size (ignored for SQLite)",
    )
    echo: bool = Field(
        default=False,
        alias="DATABASE_ECHO",
        description="Echo SQL statements for debugging",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://", "sqlite+aiosqlite://")):
            raise ValueError("DATABASE_URL must be a PostgreSQL or sqlite+aiosqlite connection string")
        return v


class RaffleSettings(BaseSettings):
    """Raffle lifecycle and entry validation limits."""

    model_config = SettingsConfigDict(env_prefix="RAFFLE_", extra="ignore")

    ending_threshold_seconds: int = Field(
        default=300,
        alias="RAFFLE_ENDING_THRESHOLD_SECONDS",
        ge=0,
        le=24 * 3600,
        description="Seconds before end_time at which an active raffle moves to ending",
    )
    default_platform_fee_percent: int = Field(
        default=10,
        alias="RAFFLE_DEFAULT_PLATFORM_FEE_PERCENT",
        ge=0,
        le=100,
        description="Platform fee applied when a raffle does not specify one",
    )
    max_platform_fee_percent: int = Field(
        default=10,
        alias="RAFFLE_MAX_PLATFORM_FEE_PERCENT",
        ge=0,
        le=100,
        description="Upper bound accepted for a raffle's platform fee",
    )
    min_entry_price: int = Field(
        default=1 * USDC_UNIT,
        alias="RAFFLE_MIN_ENTRY_PRICE",
        ge=1,
        description="Minimum entry price in base units (6 decimals)",
    )
    max_entry_price: int = Field(
        default=100_000 * USDC_UNIT,
        alias="RAFFLE_MAX_ENTRY_PRICE",
        ge=1,
        description="Maximum entry price in base units (6 decimals)",
    )
    max_winner_count: int = Field(
        default=100,
        alias="RAFFLE_MAX_WINNER_COUNT",
        ge=1,
        le=10_000,
        description="Maximum winners per raffle",
    )
    max_entries_per_submission: int = Field(
        default=10_000,
        alias="RAFFLE_MAX_ENTRIES_PER_SUBMISSION",
        ge=1,
        le=1_000_000,
        description="Maximum tickets bought by a single entry submission",
    )
    default_max_entries_per_user: int = Field(
        default=1_000,
        alias="RAFFLE_DEFAULT_MAX_ENTRIES_PER_USER",
        ge=1,
        le=1_000_000,
        description="Per-wallet cap applied when a raffle does not specify one",
    )

    @model_validator(mode="after")
    def validate_bounds(self) -> RaffleSettings:
        if self.default_platform_fee_percent > self.max_platform_fee_percent:
            raise ValueError("RAFFLE_DEFAULT_PLATFORM_FEE_PERCENT exceeds RAFFLE_MAX_PLATFORM_FEE_PERCENT")
        if self.min_entry_price > self.max_entry_price:
            raise ValueError("RAFFLE_MIN_ENTRY_PRICE exceeds RAFFLE_MAX_ENTRY_PRICE")
        return self


class RandomnessSettings(BaseSettings):
    """Draw seed source settings."""

    model_config = SettingsConfigDict(env_prefix="RANDOMNESS_", extra="ignore")

    source: Literal["server", "block_hash"] = Field(
        default="server",
        alias="RANDOMNESS_SOURCE",
        description="Where draw seeds come from: server CSPRNG or latest Polygon block hash",
    )
    polygon_rpc_url: str = Field(
        default="https://polygon-rpc.com",
        alias="POLYGON_RPC_URL",
        description="Polygon RPC endpoint used by the block_hash source",
    )

    @field_validator("polygon_rpc_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate RPC URL format."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("RPC URL must be an HTTP(S) endpoint")
        return v


class SchedulerSettings(BaseSettings):
    """Lifecycle sweep settings."""

    model_config = SettingsConfigDict(env_prefix="SCHEDULER_", extra="ignore")

    interval_seconds: int = Field(
        default=30,
        alias="SCHEDULER_INTERVAL_SECONDS",
        ge=1,
        le=3600,
        description="How often the scheduler sweeps for due transitions",
    )
    auto_draw: bool = Field(
        default=True,
        alias="SCHEDULER_AUTO_DRAW",
        description="Request draws for ended raffles during the sweep",
    )
    batch_size: int = Field(
        default=100,
        alias="SCHEDULER_BATCH_SIZE",
        ge=1,
        le=10_000,
        description="Max raffles handled per status per sweep",
    )


def _group(settings_cls: type[GroupT]) -> Callable[[], GroupT]:
    # Nested groups only see `.env` when given the file explicitly
    def factory() -> GroupT:
        return settings_cls(_env_file=_ENV_FILE, _env_file_encoding=_ENV_FILE_ENCODING)

    return factory


class Settings(BaseSettings):
    """Application settings, one nested group per concern.

    Example:
        ```python
        from fairwin_raffle.config import get_settings

        settings = get_settings()
        print(settings.database.url)
        print(settings.raffle.ending_threshold_seconds)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    database: DatabaseSettings = Field(default_factory=_group(DatabaseSettings))
    raffle: RaffleSettings = Field(default_factory=_group(RaffleSettings))
    randomness: RandomnessSettings = Field(default_factory=_group(RandomnessSettings))
    scheduler: SchedulerSettings = Field(default_factory=_group(SchedulerSettings))

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url),
            "raffle": {
                "ending_threshold_seconds": str(self.raffle.ending_threshold_seconds),
                "default_platform_fee_percent": str(self.raffle.default_platform_fee_percent),
                "max_platform_fee_percent": str(self.raffle.max_platform_fee_percent),
                "max_entries_per_submission": str(self.raffle.max_entries_per_submission),
            },
            "randomness": {
                "source": self.randomness.source,
                "polygon_rpc_url": self._redact_url(self.randomness.polygon_rpc_url),
            },
            "scheduler": {
                "interval_seconds": str(self.scheduler.interval_seconds),
                "auto_draw": str(self.scheduler.auto_draw),
            },
            "log_level": self.log_level,
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If environment variables have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
