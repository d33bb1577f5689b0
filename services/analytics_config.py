"""
Analytics sync configuration.

Environment Variables:
    MODASH_API_KEY: Bearer token for the profile provider
    MODASH_BASE_URL: Provider base URL (default https://api.modash.io)
    PROVIDER_TIMEOUT: Per-call timeout in seconds
    RATE_LIMIT_CAPACITY / RATE_LIMIT_INTERVAL: Token bucket shape
    CACHE_TTL_DAYS: Default cache time-to-live
    BULK_ITEM_DELAY: Courtesy delay between bulk sweep items (seconds)
    CRON_SECRET: Shared secret guarding the bulk refresh endpoint
    SWEEP_INTERVAL: Seconds between scheduled sweeps in the worker
"""

import logging
import os
from dataclasses import dataclass, field

from constants import (
    BULK_ERROR_SAMPLE_SIZE,
    BULK_ITEM_DELAY_SECONDS,
    CACHE_TTL_DAYS,
    PROVIDER_BASE_URL,
    PROVIDER_TIMEOUT_SECONDS,
    RATE_LIMIT_CAPACITY,
    RATE_LIMIT_INTERVAL_SECONDS,
    SWEEP_INTERVAL_SECONDS,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnalyticsConfig:
    """Configuration for the analytics sync engine."""

    base_url: str = field(
        default_factory=lambda: os.getenv("MODASH_BASE_URL", PROVIDER_BASE_URL)
    )
    provider_timeout: float = field(
        default_factory=lambda: float(
            os.getenv("PROVIDER_TIMEOUT", str(PROVIDER_TIMEOUT_SECONDS))
        )
    )
    rate_limit_capacity: int = field(
        default_factory=lambda: int(
            os.getenv("RATE_LIMIT_CAPACITY", str(RATE_LIMIT_CAPACITY))
        )
    )
    rate_limit_interval: float = field(
        default_factory=lambda: float(
            os.getenv("RATE_LIMIT_INTERVAL", str(RATE_LIMIT_INTERVAL_SECONDS))
        )
    )
    cache_ttl_days: int = field(
        default_factory=lambda: int(os.getenv("CACHE_TTL_DAYS", str(CACHE_TTL_DAYS)))
    )
    bulk_item_delay: float = field(
        default_factory=lambda: float(
            os.getenv("BULK_ITEM_DELAY", str(BULK_ITEM_DELAY_SECONDS))
        )
    )
    bulk_error_sample_size: int = BULK_ERROR_SAMPLE_SIZE
    sweep_interval: int = field(
        default_factory=lambda: int(
            os.getenv("SWEEP_INTERVAL", str(SWEEP_INTERVAL_SECONDS))
        )
    )


def get_provider_api_key() -> str:
    """
    Get the bearer token for the profile provider.

    Raises:
        ValueError: If no API key configured
    """
    key = os.getenv("MODASH_API_KEY")

    if not key:
        raise ValueError(
            "No profile provider API key. "
            "Set the MODASH_API_KEY environment variable."
        )

    logger.debug("Using MODASH_API_KEY for profile provider")
    return key


def get_cron_secret() -> str:
    """Shared secret for scheduled bulk refreshes ('' disables the endpoint)."""
    return os.getenv("CRON_SECRET", "")
