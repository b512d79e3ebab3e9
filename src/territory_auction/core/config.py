"""
Territory Auction Centralized Configuration

Provides validated, type-safe access to all environment variables using Pydantic Settings.

Usage:
    from territory_auction.core.config import get_settings

    settings = get_settings()
    if settings.bid_increment_mode == "flat":
        ...

Data Paths:
    All data is stored in {instance_root}/cache/:
    - cache/auctions.db: Territory and auction documents

Environment Variables:
    AUCTION_LOG_LEVEL: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    AUCTION_DEBUG: Legacy debug flag (enables DEBUG level if set)
    AUCTION_LOG_JSON: Output logs as JSON
    AUCTION_NO_RETRY: Disable store retry logic
    AUCTION_INSTANCE_ROOT: Override the instance root directory
    AUCTION_SWEEP_INTERVAL_SECONDS: Expiry sweep interval
    AUCTION_BID_INCREMENT_MODE: flat | proportional
    AUCTION_BID_INCREMENT: Flat increment in currency units
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _find_project_root() -> Path | None:
    """Walk upward from this file looking for pyproject.toml."""
    current = Path(__file__).resolve().parent
    for _ in range(10):
        if (current / "pyproject.toml").exists():
            return current
        parent = current.parent
        if parent == current:
            break
        current = parent
    return None


def _find_project_env_file() -> Path | None:
    root = _find_project_root()
    if root is None:
        return None
    env_file = root / ".env"
    return env_file if env_file.exists() else None


def _find_instance_root() -> Path:
    """
    Find the instance root directory.

    Resolution order:
    1. AUCTION_INSTANCE_ROOT environment variable (explicit override)
    2. Project root (directory containing pyproject.toml)
    3. Current working directory (fallback)
    """
    override = os.environ.get("AUCTION_INSTANCE_ROOT")
    if override:
        return Path(override)
    return _find_project_root() or Path.cwd()


_ENV_FILE = _find_project_env_file()
_INSTANCE_ROOT = _find_instance_root()


class AuctionSettings(BaseSettings):
    """
    Auction engine configuration settings with validation.

    Environment variables are automatically loaded with the AUCTION_ prefix.
    """

    model_config = SettingsConfigDict(
        env_prefix="AUCTION_",
        env_file=_ENV_FILE,
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # =========================================================================
    # Logging Configuration
    # =========================================================================

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="WARNING",
        description="Log level for auction engine components",
    )

    debug: bool = Field(
        default=False,
        description="Legacy debug flag (enables DEBUG level if set)",
    )

    log_json: bool = Field(
        default=False,
        description="Output logs in JSON format for machine parsing",
    )

    # =========================================================================
    # Persistence
    # =========================================================================

    no_retry: bool = Field(
        default=False,
        description="Disable store retry logic (tenacity)",
    )

    store_retry_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts for a store call that hits a locked database",
    )

    instance_root: Path = Field(
        default=_INSTANCE_ROOT,
        description="Instance root directory (project root containing pyproject.toml)",
    )

    database_name: str = Field(
        default="auctions.db",
        description="SQLite file name under the cache directory",
    )

    # =========================================================================
    # Auction Lifecycle
    # =========================================================================

    sweep_interval_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Seconds between expiry sweeps",
    )

    unowned_auction_hours: int = Field(
        default=24,
        ge=1,
        description="Duration of an auction for an unowned territory",
    )

    owned_auction_days: int = Field(
        default=7,
        ge=1,
        description="Duration of an auction for an already owned territory",
    )

    protection_days: int = Field(
        default=7,
        ge=0,
        description="Protection window granted to a conquering winner",
    )

    # =========================================================================
    # Pricing
    # =========================================================================

    auction_starting_bid_ratio: float = Field(
        default=0.6,
        gt=0,
        le=1,
        description="Fraction of the instant price used as the starting-bid floor",
    )

    min_starting_bid: int = Field(
        default=10,
        ge=1,
        description="Absolute minimum starting bid",
    )

    price_per_pixel: float = Field(
        default=0.1,
        gt=0,
        description="Base currency units per territory pixel",
    )

    # =========================================================================
    # Bidding
    # =========================================================================

    bid_increment_mode: Literal["flat", "proportional"] = Field(
        default="flat",
        description="Minimum increment policy applied at auction creation",
    )

    bid_increment: int = Field(
        default=1,
        ge=1,
        description="Flat minimum increment in currency units",
    )

    adjacent_bonus_rate: float = Field(
        default=0.05,
        ge=0,
        description="Bonus per adjacent territory ruled by the bidder",
    )

    country_bonus_rate: float = Field(
        default=0.10,
        ge=0,
        description="Bonus when the bidder dominates the territory's country",
    )

    country_bonus_threshold: int = Field(
        default=3,
        ge=1,
        description="Ruled territories in a country required for the country bonus",
    )

    season_bonus_rate: float = Field(
        default=0.0,
        ge=0,
        description="Seasonal bonus (reserved)",
    )

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("log_level", mode="before")
    @classmethod
    def uppercase_log_level(cls, v: str) -> str:
        """Normalize log level to uppercase."""
        if isinstance(v, str):
            return v.upper()
        return v

    @field_validator("bid_increment_mode", mode="before")
    @classmethod
    def lowercase_increment_mode(cls, v: str) -> str:
        if isinstance(v, str):
            return v.lower()
        return v

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def effective_log_level(self) -> str:
        """
        Get effective log level, respecting legacy AUCTION_DEBUG.

        Priority:
        1. Explicit AUCTION_LOG_LEVEL
        2. AUCTION_DEBUG=1 -> DEBUG
        3. Default: WARNING
        """
        if self.debug and self.log_level == "WARNING":
            return "DEBUG"
        return self.log_level

    @property
    def log_level_int(self) -> int:
        """Get effective log level as logging constant."""
        return getattr(logging, self.effective_log_level)

    @property
    def cache_dir(self) -> Path:
        """Path to cache directory."""
        return self.instance_root / "cache"

    @property
    def db_path(self) -> Path:
        """Path to the auction document database."""
        return self.cache_dir / self.database_name


# =============================================================================
# Singleton Accessor
# =============================================================================


@lru_cache(maxsize=1)
def get_settings() -> AuctionSettings:
    """
    Get the singleton settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return AuctionSettings()


def reset_settings() -> None:
    """
    Reset the settings cache (for testing).

    After calling this, the next get_settings() call will
    reload settings from environment variables.
    """
    get_settings.cache_clear()


# =============================================================================
# Convenience Functions
# =============================================================================


def is_debug_enabled() -> bool:
    """Check if debug logging is enabled."""
    return get_settings().effective_log_level == "DEBUG"


def is_retry_disabled() -> bool:
    """Check if retry logic is disabled via environment."""
    return get_settings().no_retry
