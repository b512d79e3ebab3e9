"""
Territory Auction Test Suite - Shared Fixtures and Configuration

Every test starts from default settings (no AUCTION_* variables from the
developer's shell) and with package loggers propagating, so caplog works.
"""

from __future__ import annotations

import os

import pytest

from territory_auction.core.config import reset_settings
from territory_auction.core.logging import reset_logging


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Strip AUCTION_* variables and reset cached settings and loggers."""
    for key in list(os.environ):
        if key.startswith("AUCTION_"):
            monkeypatch.delenv(key, raising=False)
    reset_settings()
    reset_logging()
    yield
    reset_settings()
    reset_logging()
