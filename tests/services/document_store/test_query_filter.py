"""
Tests for the document store query building blocks.
"""

from __future__ import annotations

import pytest

from territory_auction.services.document_store import QueryFilter, where
from territory_auction.services.document_store.protocol import matches, resolve_field


class TestQueryFilter:
    """Test QueryFilter validation and evaluation."""

    def test_rejects_unknown_operator(self):
        """Test that only the supported comparison operators are accepted."""
        with pytest.raises(ValueError):
            QueryFilter("status", "~=", "active")  # type: ignore[arg-type]

    def test_rejects_injection_in_field(self):
        """Test that field names are restricted to dotted identifiers."""
        with pytest.raises(ValueError):
            where("status') OR 1=1 --", "==", "x")

    def test_in_requires_collection(self):
        """Test that an 'in' filter needs a list-like value."""
        with pytest.raises(ValueError):
            where("status", "in", "active")

    def test_resolve_dotted_field(self):
        """Test nested field resolution."""
        doc = {"owner": {"id": "u1"}}

        assert resolve_field(doc, "owner.id") == "u1"
        assert resolve_field(doc, "owner.name") is None
        assert resolve_field(doc, "missing.id") is None

    def test_ordering_against_missing_never_matches(self):
        """Test that < and > never match a missing value."""
        assert matches({}, where("end_time", "<=", "2026")) is False
        assert matches({"end_time": None}, where("end_time", ">", "2026")) is False

    def test_mismatched_types_do_not_match(self):
        """Test that incomparable values are treated as non-matching."""
        assert matches({"amount": "ten"}, where("amount", ">", 5)) is False
