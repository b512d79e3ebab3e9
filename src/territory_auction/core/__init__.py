"""
Territory Auction Core Infrastructure.

Shared configuration, logging, error types, retry logic and time helpers.
"""

from .errors import (
    AlreadyActiveError,
    AuctionError,
    BidTooLowError,
    InvalidStateError,
    NotFoundError,
    TransientIOError,
    UnauthorizedError,
    ValidationFailedError,
)
from .formatters import (
    Clock,
    SystemClock,
    format_datetime,
    get_utc_now,
    get_utc_timestamp,
    parse_datetime,
)

__all__ = [
    # Errors
    "AuctionError",
    "NotFoundError",
    "InvalidStateError",
    "AlreadyActiveError",
    "ValidationFailedError",
    "BidTooLowError",
    "UnauthorizedError",
    "TransientIOError",
    # Time
    "Clock",
    "SystemClock",
    "format_datetime",
    "parse_datetime",
    "get_utc_now",
    "get_utc_timestamp",
]
