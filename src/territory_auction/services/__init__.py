"""
Territory Auction Services.

Persistence and the auction & sovereignty engine.
"""

from __future__ import annotations

__all__ = [
    "AuctionEngine",
    "document_store",
    "auctions",
]


def __getattr__(name: str):
    """Lazy import services to avoid circular imports."""
    if name == "AuctionEngine":
        from .auctions.engine import AuctionEngine

        return AuctionEngine
    if name == "document_store":
        from . import document_store

        return document_store
    if name == "auctions":
        from . import auctions

        return auctions
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
