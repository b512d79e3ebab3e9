"""
Tests for the auction event bus.
"""

from __future__ import annotations

import asyncio
import logging

import pytest

from territory_auction.services.auctions import AuctionEvent, EventBus, RecordingEventSink


class TestEventBus:
    """Test EventBus publish/subscribe."""

    def test_sync_handler_receives_event(self):
        """Test that a synchronous handler runs inline."""
        bus = EventBus()
        received = []
        bus.subscribe(AuctionEvent.AUCTION_STARTED, received.append)

        event = bus.publish(AuctionEvent.AUCTION_STARTED, {"auction_id": "a1"})

        assert received == [event]
        assert event.payload == {"auction_id": "a1"}
        assert event.published_at.tzinfo is not None

    def test_only_matching_event(self):
        """Test that handlers only see the event they subscribed to."""
        bus = EventBus()
        received = []
        bus.subscribe(AuctionEvent.AUCTION_ENDED, received.append)

        bus.publish(AuctionEvent.AUCTION_STARTED, {})

        assert received == []

    def test_unsubscribe(self):
        """Test that the returned callable removes the subscription."""
        bus = EventBus()
        received = []
        unsubscribe = bus.subscribe(AuctionEvent.AUCTION_UPDATED, received.append)

        unsubscribe()
        unsubscribe()
        bus.publish(AuctionEvent.AUCTION_UPDATED, {})

        assert received == []

    def test_failing_handler_isolated(self, caplog):
        """Test that one failing handler neither raises nor blocks the others."""
        bus = EventBus()
        received = []

        def broken(event):
            raise RuntimeError("subscriber down")

        bus.subscribe(AuctionEvent.AUCTION_ENDED, broken)
        bus.subscribe(AuctionEvent.AUCTION_ENDED, received.append)

        with caplog.at_level(logging.ERROR, logger="territory_auction"):
            bus.publish(AuctionEvent.AUCTION_ENDED, {"auction_id": "a1"})

        assert len(received) == 1
        assert "subscriber down" in caplog.text

    @pytest.mark.asyncio
    async def test_async_handler_tracked_and_drained(self):
        """Test that coroutine handlers are scheduled without blocking publish."""
        bus = EventBus()
        received = []

        async def slow(event):
            await asyncio.sleep(0.01)
            received.append(event.name)

        bus.subscribe(AuctionEvent.TERRITORY_CONQUERED, slow)

        bus.publish(AuctionEvent.TERRITORY_CONQUERED, {"territory_id": "t1"})
        assert received == []
        assert bus.pending == 1

        await bus.drain()

        assert received == [AuctionEvent.TERRITORY_CONQUERED]
        assert bus.pending == 0

    @pytest.mark.asyncio
    async def test_async_handler_failure_logged(self, caplog):
        """Test that a failing coroutine handler is logged, not raised."""
        bus = EventBus()

        async def broken(event):
            raise ValueError("webhook rejected")

        bus.subscribe(AuctionEvent.BONUS_APPLIED, broken)

        with caplog.at_level(logging.ERROR, logger="territory_auction"):
            bus.publish(AuctionEvent.BONUS_APPLIED, {})
            await bus.drain()

        assert "webhook rejected" in caplog.text


class TestRecordingEventSink:
    """Test RecordingEventSink."""

    def test_records_everything_in_order(self):
        """Test that the sink sees every event name."""
        bus = EventBus()
        sink = RecordingEventSink(bus)

        bus.publish(AuctionEvent.AUCTION_STARTED, {"n": 1})
        bus.publish(AuctionEvent.AUCTION_UPDATED, {"n": 2})
        bus.publish(AuctionEvent.AUCTION_UPDATED, {"n": 3})

        assert [e.payload["n"] for e in sink.events] == [1, 2, 3]
        assert [e.payload["n"] for e in sink.named(AuctionEvent.AUCTION_UPDATED)] == [2, 3]
