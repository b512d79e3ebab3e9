"""
Tests for the expiry sweeper.
"""

from __future__ import annotations

import asyncio
import logging
from unittest import mock

import pytest

from territory_auction.core.errors import TransientIOError
from territory_auction.services.auctions import AUCTIONS, ExpirySweeper, Sovereignty

pytestmark = pytest.mark.asyncio


class TestRunOnce:
    """Test single sweeps."""

    async def test_nothing_due(self, engine):
        """Test that a sweep with no overdue auctions ends nothing."""
        await engine.create_auction("t1", created_by="u0")

        stats = await engine.sweeper.run_once()

        assert stats.candidates == 0
        assert stats.ended == 0
        assert engine.sweeper.last_stats is stats

    async def test_ends_every_overdue_auction(self, engine, clock):
        """Test that all overdue auctions are resolved in one sweep."""
        a1 = await engine.create_auction("t1", created_by="u0")
        await engine.create_auction("t2", created_by="u0")
        await engine.place_bid(a1.auction_id, "u1", "Alice", 60)
        clock.advance(hours=24)

        stats = await engine.sweeper.run_once()

        assert stats.candidates == 2
        assert stats.ended == 2
        assert engine.list_active_auctions() == []
        assert engine.get_territory("t1").ruler_id == "u1"
        assert engine.get_territory("t2").sovereignty == Sovereignty.UNCONQUERED

    async def test_only_overdue_ended(self, engine, clock):
        """Test that auctions still running are left alone."""
        from datetime import timedelta

        from territory_auction.services.auctions import AuctionOptions

        short = await engine.create_auction(
            "t1", created_by="u0", options=AuctionOptions(end_time=clock.now() + timedelta(hours=1))
        )
        long = await engine.create_auction("t2", created_by="u0")
        clock.advance(hours=2)

        await engine.sweeper.run_once()

        assert engine.get_active_auction(short.auction_id) is None
        assert engine.get_active_auction(long.auction_id) is not None

    async def test_auction_from_other_process(self, engine, engine_factory, store, clock):
        """Test that overdue auctions known only to the store are resolved."""
        other = await engine_factory()
        auction = await other.create_auction("t1", created_by="u0")
        await other.place_bid(auction.auction_id, "u1", "Alice", 60)
        clock.advance(hours=25)

        stats = await engine.sweeper.run_once()

        assert stats.ended == 1
        assert (await store.get(AUCTIONS, auction.auction_id))["status"] == "ended"
        assert engine.get_territory("t1").ruler_id == "u1"

    async def test_store_scan_disabled(self, engine, engine_factory, clock):
        """Test that scan_store=False only looks at the local ledger."""
        other = await engine_factory()
        await other.create_auction("t1", created_by="u0")
        clock.advance(hours=25)

        stats = await ExpirySweeper(engine, scan_store=False).run_once()

        assert stats.candidates == 0

    async def test_scan_failure_logged(self, engine, store, clock, caplog):
        """Test that a failing store scan still sweeps the ledger."""
        await engine.create_auction("t1", created_by="u0")
        clock.advance(hours=25)

        with mock.patch.object(store, "query", side_effect=TransientIOError("store offline")):
            with caplog.at_level(logging.WARNING, logger="territory_auction"):
                stats = await engine.sweeper.run_once()

        assert stats.ended == 1
        assert "Store scan skipped" in caplog.text

    async def test_already_ended_counted_as_skipped(self, engine, clock):
        """Test that an auction ended between scan and resolution is skipped."""
        auction = await engine.create_auction("t1", created_by="u0")
        clock.advance(hours=25)
        real_end = engine.end_auction

        async def end_twice(auction_id):
            await real_end(auction_id)
            return await real_end(auction_id)

        with mock.patch.object(engine, "end_auction", side_effect=end_twice):
            stats = await engine.sweeper.run_once()

        assert stats.skipped == 1
        assert stats.failed == 0
        assert engine.get_active_auction(auction.auction_id) is None


class TestBackgroundLoop:
    """Test the sweeper as a background task."""

    async def test_start_and_stop(self, engine):
        """Test that the task starts, refuses a second start and stops."""
        engine.sweeper.interval_seconds = 0.01
        task = engine.sweeper.start()

        assert engine.sweeper.is_running is True
        with pytest.raises(RuntimeError, match="already running"):
            engine.sweeper.start()

        await engine.stop_sweeper()

        assert engine.sweeper.is_running is False
        assert task.done()

    async def test_loop_resolves_auctions(self, engine, clock):
        """Test that the running loop ends an auction once it is overdue."""
        engine.sweeper.interval_seconds = 0.01
        auction = await engine.create_auction("t1", created_by="u0")
        engine.start_sweeper()

        clock.advance(hours=25)
        for _ in range(100):
            if engine.get_active_auction(auction.auction_id) is None:
                break
            await asyncio.sleep(0.01)

        assert engine.get_active_auction(auction.auction_id) is None
        await engine.shutdown()
        assert engine.sweeper.is_running is False

    async def test_loop_survives_failing_sweep(self, engine):
        """Test that an exception from a whole sweep does not kill the loop."""
        engine.sweeper.interval_seconds = 0.01
        calls = 0

        async def flaky_run_once():
            nonlocal calls
            calls += 1
            if calls == 1:
                raise RuntimeError("boom")
            return None

        with mock.patch("territory_auction.services.auctions.sweeper.DEFAULT_ERROR_BACKOFF_SECONDS", 0.01):
            with mock.patch.object(engine.sweeper, "run_once", side_effect=flaky_run_once):
                engine.start_sweeper()
                for _ in range(100):
                    if calls >= 2:
                        break
                    await asyncio.sleep(0.01)
                await engine.stop_sweeper()

        assert calls >= 2
