"""
Auctions - the Auction & Sovereignty Engine.

Key Components:
- AuctionEngine: public surface (create, bid, end, instant conquest, queries)
- AuctionLedger: in-memory ACTIVE auctions with per-territory critical sections
- BidProcessor / calculate_bonuses: bid validation and the bonus pipeline
- SovereigntyStateMachine: legal ownership transitions and the action policy
- TerritoryPricingOracle: deterministic instant price and starting-bid floor
- ReconciliationGuard: repairs drifted prices and territory state
- ExpirySweeper: background resolution of overdue auctions
- EventBus: fire-and-forget auction events

Usage:
    from territory_auction.services.auctions import AuctionEngine, load_seed_file

    engine = AuctionEngine(store)
    await engine.seed_territories(load_seed_file("territories.yaml"))
    await engine.load()
    engine.start_sweeper()
"""

from .bids import BidOutcome, BidProcessor
from .bonuses import AppliedBonus, BonusBreakdown, BonusRates, calculate_bonuses
from .conquest import ConquestApplier
from .engine import AuctionEngine, LoadReport
from .events import AuctionEvent, Event, EventBus, RecordingEventSink
from .ledger import AuctionLedger, KeyedLock
from .models import (
    AUCTIONS,
    TERRITORIES,
    Auction,
    AuctionOptions,
    AuctionStatus,
    AuctionType,
    Bid,
    Sovereignty,
    Territory,
)
from .pricing import PricingOracle, TerritoryPricingOracle
from .reconciliation import ReconciliationGuard, ReconciliationStats
from .sovereignty import AllowedActions, SovereigntyStateMachine
from .sweeper import ExpirySweeper, SweepStats
from .territories import TerritoryRegistry, load_seed_file, normalize_territory_id

__all__ = [
    # Engine
    "AuctionEngine",
    "LoadReport",
    # Components
    "AuctionLedger",
    "KeyedLock",
    "BidProcessor",
    "BidOutcome",
    "SovereigntyStateMachine",
    "AllowedActions",
    "PricingOracle",
    "TerritoryPricingOracle",
    "ReconciliationGuard",
    "ReconciliationStats",
    "ExpirySweeper",
    "SweepStats",
    "ConquestApplier",
    "TerritoryRegistry",
    # Bonuses
    "calculate_bonuses",
    "BonusRates",
    "BonusBreakdown",
    "AppliedBonus",
    # Events
    "AuctionEvent",
    "Event",
    "EventBus",
    "RecordingEventSink",
    # Models
    "Territory",
    "Auction",
    "Bid",
    "AuctionOptions",
    "Sovereignty",
    "AuctionStatus",
    "AuctionType",
    "TERRITORIES",
    "AUCTIONS",
    # Helpers
    "load_seed_file",
    "normalize_territory_id",
]
