"""
Territory Auction Retry Logic

Retries document store calls that fail because SQLite reported the database
as locked or busy (another process holds the write lock). Every other driver
error is surfaced immediately.

Uses tenacity with exponential backoff and jitter. AUCTION_NO_RETRY disables
retry entirely.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import Any, TypeVar

from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from .config import get_settings, is_retry_disabled

F = TypeVar("F", bound=Callable[..., Awaitable[Any]])

DEFAULT_MIN_WAIT = 0.05  # seconds
DEFAULT_MAX_WAIT = 1.0  # seconds

_TRANSIENT_MARKERS = ("database is locked", "database is busy", "database table is locked")


def is_retry_enabled() -> bool:
    """Check if retry logic is enabled (respects AUCTION_NO_RETRY)."""
    return not is_retry_disabled()


def should_retry_exception(exc: BaseException) -> bool:
    """
    Determine if a store exception should trigger a retry.

    Only lock contention is retried; schema errors, integrity errors and
    closed connections will not heal by waiting.
    """
    if isinstance(exc, sqlite3.OperationalError):
        message = str(exc).lower()
        return any(marker in message for marker in _TRANSIENT_MARKERS)
    return False


def store_retry(
    max_attempts: int | None = None,
    min_wait: float = DEFAULT_MIN_WAIT,
    max_wait: float = DEFAULT_MAX_WAIT,
) -> Callable[[F], F]:
    """
    Decorator for async store calls with retry logic.

    Args:
        max_attempts: Maximum attempts (default: AUCTION_STORE_RETRY_ATTEMPTS)
        min_wait: Initial wait between attempts in seconds
        max_wait: Maximum wait between attempts in seconds

    Usage:
        @store_retry()
        async def _execute(self, sql, params):
            ...
    """

    def decorator(func: F) -> F:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            if not is_retry_enabled():
                return await func(*args, **kwargs)

            attempts = max_attempts or get_settings().store_retry_attempts
            retrying = AsyncRetrying(
                stop=stop_after_attempt(attempts),
                wait=wait_exponential_jitter(initial=min_wait, max=max_wait, jitter=min_wait),
                retry=retry_if_exception(should_retry_exception),
                reraise=True,
            )
            async for attempt in retrying:
                with attempt:
                    return await func(*args, **kwargs)

        return wrapper  # type: ignore[return-value]

    return decorator
