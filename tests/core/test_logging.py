"""
Tests for Territory Auction Structured Logging.

Tests logger configuration, formatters, and utility functions.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from unittest import mock

from territory_auction.core.config import reset_settings
from territory_auction.core.logging import (
    AuctionFormatter,
    debug_enabled,
    get_logger,
    reset_logging,
    set_log_level,
)


def _record(name: str, level: int, msg: str, args=(), exc_info=None) -> logging.LogRecord:
    return logging.LogRecord(
        name=name,
        level=level,
        pathname="test.py",
        lineno=10,
        msg=msg,
        args=args,
        exc_info=exc_info,
    )


# =============================================================================
# AuctionFormatter Tests
# =============================================================================


class TestAuctionFormatter:
    """Test AuctionFormatter class."""

    def test_text_format_basic(self):
        """Text format includes level and module."""
        formatter = AuctionFormatter(json_output=False)

        formatted = formatter.format(
            _record("territory_auction.services.auctions.engine", logging.INFO, "Auction created")
        )

        assert formatted == "[AUCTION INFO] [engine] Auction created"

    def test_text_format_interpolates_args(self):
        """Text format applies %-style arguments."""
        formatter = AuctionFormatter(json_output=False)

        formatted = formatter.format(
            _record("territory_auction.ledger", logging.WARNING, "Bid %d on %s", (60, "t1"))
        )

        assert "Bid 60 on t1" in formatted

    def test_text_format_with_exception(self):
        """Text format includes exception info."""
        formatter = AuctionFormatter(json_output=False)

        try:
            raise ValueError("Test error")
        except ValueError:
            exc_info = sys.exc_info()

        formatted = formatter.format(
            _record("territory_auction.test", logging.ERROR, "Error occurred", exc_info=exc_info)
        )

        assert "ValueError" in formatted
        assert "Test error" in formatted

    def test_json_format_basic(self):
        """JSON format produces valid JSON."""
        formatter = AuctionFormatter(json_output=True)

        data = json.loads(
            formatter.format(_record("territory_auction.sweeper", logging.INFO, "Sweep complete"))
        )

        assert data["level"] == "INFO"
        assert data["logger"] == "territory_auction.sweeper"
        assert data["message"] == "Sweep complete"
        assert "timestamp" in data

    def test_json_format_includes_extra_fields(self):
        """JSON format carries fields passed through extra=."""
        formatter = AuctionFormatter(json_output=True)
        record = _record("territory_auction.engine", logging.INFO, "Auction ended")
        record.event = "auction_ended"
        record.auction_id = "auction_t1_1"

        data = json.loads(formatter.format(record))

        assert data["event"] == "auction_ended"
        assert data["auction_id"] == "auction_t1_1"
        assert "lineno" not in data


# =============================================================================
# Logger Tests
# =============================================================================


class TestGetLogger:
    """Test get_logger function."""

    def test_returns_cached_logger(self):
        """The same logger instance is returned for a name."""
        first = get_logger("territory_auction.tests.cached")
        second = get_logger("territory_auction.tests.cached")

        assert first is second

    def test_level_from_settings(self):
        """New loggers take their level from AUCTION_LOG_LEVEL."""
        with mock.patch.dict(os.environ, {"AUCTION_LOG_LEVEL": "ERROR"}, clear=True):
            reset_settings()
            logger = get_logger("territory_auction.tests.level")

            assert logger.level == logging.ERROR
            assert logger.propagate is False

    def test_set_log_level_updates_cached_loggers(self):
        """set_log_level applies to every cached logger."""
        logger = get_logger("territory_auction.tests.dynamic")

        set_log_level(logging.DEBUG)

        assert logger.level == logging.DEBUG

    def test_reset_logging_restores_propagation(self):
        """reset_logging makes package loggers propagate again."""
        logger = get_logger("territory_auction.tests.reset")
        assert logger.propagate is False

        reset_logging()

        assert logger.propagate is True
        assert logger.level == logging.NOTSET
        assert logger.handlers == []

    def test_debug_enabled(self):
        """debug_enabled follows the configured level."""
        with mock.patch.dict(os.environ, {"AUCTION_LOG_LEVEL": "DEBUG"}, clear=True):
            reset_settings()
            assert debug_enabled() is True

        with mock.patch.dict(os.environ, {}, clear=True):
            reset_settings()
            assert debug_enabled() is False
