"""
Territory Auction - Auction & Sovereignty Engine

Timed auctions for uniquely identified map territories, with oracle-derived
starting bids, stacking bid bonuses and an ownership state machine kept in
step with every auction outcome.

Usage as library:
    from territory_auction import AuctionEngine, InMemoryDocumentStore

    engine = AuctionEngine(store=InMemoryDocumentStore())
    await engine.load()
    auction = await engine.create_auction("texas", created_by="u1")
    await engine.place_bid(auction.auction_id, "u2", "Bidder", 800)

Usage as CLI:
    python -m territory_auction seed territories.yaml
    python -m territory_auction create texas --user u1
    python -m territory_auction serve

Package structure:
    territory_auction/
    ├── core/           # Config, logging, errors, retry, time helpers
    ├── commands/       # CLI command implementations
    └── services/
        ├── document_store/  # Persistence collaborator
        └── auctions/        # Engine, ledger, bids, sovereignty, sweeper
"""

__version__ = "1.0.0"

from .core import (
    AlreadyActiveError,
    AuctionError,
    BidTooLowError,
    InvalidStateError,
    NotFoundError,
    TransientIOError,
    UnauthorizedError,
    ValidationFailedError,
)

__all__ = [
    "__version__",
    "AuctionEngine",
    "InMemoryDocumentStore",
    "SQLiteDocumentStore",
    "AuctionError",
    "NotFoundError",
    "InvalidStateError",
    "AlreadyActiveError",
    "ValidationFailedError",
    "BidTooLowError",
    "UnauthorizedError",
    "TransientIOError",
]


def __getattr__(name: str):
    """Lazy import services to avoid loading aiosqlite for pure library use."""
    if name == "AuctionEngine":
        from .services.auctions.engine import AuctionEngine

        return AuctionEngine
    if name == "InMemoryDocumentStore":
        from .services.document_store.memory import InMemoryDocumentStore

        return InMemoryDocumentStore
    if name == "SQLiteDocumentStore":
        from .services.document_store.sqlite import SQLiteDocumentStore

        return SQLiteDocumentStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
