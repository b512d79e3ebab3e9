"""
Auction engine error taxonomy.

Every error carries a human-readable message and a stable machine code so the
CLI (and any other caller) can report the specific reason for a rejection.
"""

from __future__ import annotations

from typing import Any


class AuctionError(Exception):
    """Base class for auction engine errors."""

    code = "auction_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to JSON-serializable dict."""
        return {"error": self.code, "message": self.message}


class NotFoundError(AuctionError):
    """Auction or territory does not exist (or has already been resolved)."""

    code = "not_found"


class InvalidStateError(AuctionError):
    """Action attempted against an auction or territory in the wrong state."""

    code = "invalid_state"


class AlreadyActiveError(InvalidStateError):
    """The territory already has an ACTIVE auction."""

    def __init__(self, territory_id: str, auction_id: str | None = None) -> None:
        self.territory_id = territory_id
        self.auction_id = auction_id
        super().__init__("Auction already in progress")

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["territory_id"] = self.territory_id
        if self.auction_id:
            result["auction_id"] = self.auction_id
        return result


class ValidationFailedError(AuctionError):
    """Input rejected: malformed id, missing metadata, bad amount."""

    code = "validation_failed"


class BidTooLowError(ValidationFailedError):
    """Bid amount is below the current minimum acceptable bid."""

    def __init__(self, minimum_bid: int) -> None:
        self.minimum_bid = minimum_bid
        super().__init__(f"Minimum bid is {minimum_bid}")

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["minimum_bid"] = self.minimum_bid
        return result


class UnauthorizedError(AuctionError):
    """Caller identity is required but missing."""

    code = "unauthorized"


class TransientIOError(AuctionError):
    """
    Backing store call failed.

    Preserves the driver exception for logging and debugging.
    """

    code = "transient_io"

    def __init__(self, message: str, original_error: BaseException | None = None) -> None:
        self.original_error = original_error
        super().__init__(message)
