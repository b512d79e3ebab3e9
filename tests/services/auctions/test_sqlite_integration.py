"""
End-to-end tests against the SQLite document store and the real pricing oracle.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from territory_auction.core.config import AuctionSettings
from territory_auction.core.errors import BidTooLowError
from territory_auction.services.auctions import AuctionEngine, Sovereignty, load_seed_file
from territory_auction.services.document_store import SQLiteDocumentStore

pytestmark = pytest.mark.asyncio

EXAMPLE_SEED = Path(__file__).resolve().parents[3] / "examples" / "territories.yaml"


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "auctions.db"


@pytest.fixture
def integration_settings(tmp_path):
    return AuctionSettings(instance_root=tmp_path)


async def _open(db_path, settings) -> tuple[SQLiteDocumentStore, AuctionEngine]:
    store = SQLiteDocumentStore(db_path)
    await store.initialize()
    engine = AuctionEngine(store, settings=settings)
    await engine.load()
    return store, engine


class TestSQLiteEndToEnd:
    """Test a full auction against a database file."""

    async def test_auction_lifecycle(self, db_path, integration_settings):
        """Test that a won auction survives reopening the database."""
        store, engine = await _open(db_path, integration_settings)
        try:
            created = await engine.seed_territories(load_seed_file(EXAMPLE_SEED))
            assert created > 0

            auction = await engine.create_auction("USA::texas", created_by="u0")
            assert auction.starting_bid == 750

            with pytest.raises(BidTooLowError, match="Minimum bid is 751"):
                await engine.place_bid(auction.auction_id, "u1", "Alice", 750)

            await engine.place_bid(auction.auction_id, "u1", "Alice", 751)
            await engine.end_auction(auction.auction_id)
            await engine.shutdown()
        finally:
            await store.close()

        store, engine = await _open(db_path, integration_settings)
        try:
            texas = engine.get_territory("texas")
            assert texas.sovereignty == Sovereignty.RULED
            assert texas.ruler_id == "u1"
            assert texas.last_winning_amount == 751
            assert engine.list_active_auctions() == []
        finally:
            await engine.shutdown()
            await store.close()

    async def test_active_auction_survives_restart(self, db_path, integration_settings):
        """Test that an open auction and its bids are reloaded."""
        store, engine = await _open(db_path, integration_settings)
        try:
            await engine.seed_territories(load_seed_file(EXAMPLE_SEED))
            auction = await engine.create_auction("texas", created_by="u0")
            await engine.place_bid(auction.auction_id, "u1", "Alice", 800)
        finally:
            await engine.shutdown()
            await store.close()

        store, engine = await _open(db_path, integration_settings)
        try:
            reloaded = engine.get_active_auction(auction.auction_id)
            assert reloaded is not None
            assert reloaded.current_bid == 800
            assert reloaded.highest_bidder_id == "u1"
            assert engine.get_territory("texas").sovereignty == Sovereignty.CONTESTED

            with pytest.raises(BidTooLowError, match="Minimum bid is 801"):
                await engine.place_bid(auction.auction_id, "u2", "Bob", 800)
        finally:
            await engine.shutdown()
            await store.close()

    async def test_reseed_keeps_ownership(self, db_path, integration_settings):
        """Test that seeding again never resets a ruled territory."""
        store, engine = await _open(db_path, integration_settings)
        try:
            await engine.seed_territories(load_seed_file(EXAMPLE_SEED))
            await engine.instant_conquest("texas", "u1", "Alice")
        finally:
            await engine.shutdown()
            await store.close()

        store, engine = await _open(db_path, integration_settings)
        try:
            created = await engine.seed_territories(load_seed_file(EXAMPLE_SEED))
            assert created == 0
            assert engine.get_territory("texas").ruler_id == "u1"
            assert engine.get_territory("texas").last_winning_amount == 1250
        finally:
            await engine.shutdown()
            await store.close()
