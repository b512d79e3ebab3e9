"""
Auction engine test fixtures.

Engines run against an InMemoryDocumentStore with a controllable clock and a
pricing oracle whose floor the test decides, so every number in an assertion
can be worked out by hand.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from territory_auction.core.config import AuctionSettings
from territory_auction.services.auctions import (
    Auction,
    AuctionEngine,
    AuctionStatus,
    EventBus,
    RecordingEventSink,
    Sovereignty,
    Territory,
)
from territory_auction.services.document_store import InMemoryDocumentStore

START = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = START):
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


class FixedFloorOracle:
    """Pricing oracle with a fixed instant price and an adjustable floor."""

    def __init__(self, floor: int = 50, price: int = 100):
        self.floor = floor
        self.price = price
        self.floors: dict[str, int] = {}

    def instant_price(self, territory: Territory) -> int:
        return self.price

    def starting_bid_floor(self, territory: Territory) -> int:
        return self.floors.get(territory.territory_id, self.floor)


# =============================================================================
# Collaborators
# =============================================================================


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def oracle():
    return FixedFloorOracle()


@pytest.fixture
def settings(tmp_path):
    return AuctionSettings(instance_root=tmp_path)


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def sink(bus):
    """Records every event published on the engine's bus."""
    return RecordingEventSink(bus)


# =============================================================================
# Data
# =============================================================================


@pytest.fixture
def make_territory():
    """Factory for territories with sensible defaults."""

    def _make(territory_id: str, **kwargs) -> Territory:
        kwargs.setdefault("name", territory_id.upper())
        kwargs.setdefault("country_code", "USA")
        return Territory(territory_id=territory_id, **kwargs)

    return _make


@pytest.fixture
def territories(make_territory):
    """
    A small map.

    t1 borders t2 and t3 (t3 only lists t1, adjacency is symmetric).
    t4 is in the same country but not adjacent. kr1 is in another country.
    """
    return [
        make_territory("t1", neighbors=["t2"]),
        make_territory("t2", neighbors=["t1"]),
        make_territory("t3", neighbors=["t1"]),
        make_territory("t4"),
        make_territory("kr1", country_code="KOR"),
    ]


@pytest.fixture
def make_auction():
    """Factory for auction records that were never created through an engine."""

    def _make(auction_id: str, territory_id: str, **kwargs) -> Auction:
        kwargs.setdefault("starting_bid", 50)
        kwargs.setdefault("current_bid", kwargs["starting_bid"])
        kwargs.setdefault("min_increment", 1)
        kwargs.setdefault("start_time", START)
        kwargs.setdefault("end_time", START + timedelta(hours=24))
        kwargs.setdefault("status", AuctionStatus.ACTIVE)
        return Auction(auction_id=auction_id, territory_id=territory_id, **kwargs)

    return _make


# =============================================================================
# Engines
# =============================================================================


@pytest_asyncio.fixture
async def engine_factory(store, oracle, clock, settings):
    """
    Build additional engines over the shared store.

    Each call is a fresh "process": its own ledger, registry and bus.
    """
    created: list[AuctionEngine] = []

    async def _make(load: bool = True, **kwargs) -> AuctionEngine:
        kwargs.setdefault("pricing", oracle)
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("settings", settings)
        kwargs.setdefault("events", EventBus())
        engine = AuctionEngine(store, **kwargs)
        created.append(engine)
        if load:
            await engine.load()
        return engine

    yield _make

    for engine in created:
        await engine.shutdown()


@pytest_asyncio.fixture
async def engine(store, oracle, bus, clock, settings, territories):
    """Engine seeded with the small map and loaded."""
    engine = AuctionEngine(store, pricing=oracle, events=bus, clock=clock, settings=settings)
    await engine.seed_territories(territories)
    await engine.load()
    yield engine
    await engine.shutdown()


@pytest.fixture
def rule(engine):
    """Hand a territory to a user directly (bypassing auctions)."""

    async def _rule(territory_id: str, user_id: str, protected_until: datetime | None = None):
        territory = engine.territories.require(territory_id)
        territory.sovereignty = Sovereignty.RULED
        territory.ruler_id = user_id
        territory.ruler_name = user_id.upper()
        territory.protection_ends_at = protected_until
        await engine.store.set("territories", territory_id, territory.to_doc())
        return territory

    return _rule
