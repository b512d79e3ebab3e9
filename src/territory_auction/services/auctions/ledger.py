"""
Auction Ledger.

In-memory authoritative cache of auctions, indexed by auction id and by
territory id. It is the single answer to "is there an active auction for
territory X" within this process.

KeyedLock provides the per-territory critical section that every create, bid
and end operation runs inside, so two operations on the same territory never
interleave across an await.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime

from ...core.errors import AlreadyActiveError
from .models import Auction


class KeyedLock:
    """
    A lazily created asyncio.Lock per key.

    Locks are dropped once no coroutine holds or waits on them.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)


class AuctionLedger:
    """
    Auctions held by this process.

    Only ACTIVE auctions live here; the end path removes an auction after
    resolving it. The territory index always points at the ACTIVE auction.
    """

    def __init__(self) -> None:
        self._auctions: dict[str, Auction] = {}
        self._by_territory: dict[str, str] = {}
        self.locks = KeyedLock()

    def __len__(self) -> int:
        return len(self._auctions)

    def __contains__(self, auction_id: object) -> bool:
        return auction_id in self._auctions

    def get(self, auction_id: str) -> Auction | None:
        return self._auctions.get(auction_id)

    def get_by_territory(self, territory_id: str) -> Auction | None:
        """Return the ACTIVE auction for a territory, or None."""
        auction_id = self._by_territory.get(territory_id)
        if auction_id is None:
            return None
        auction = self._auctions.get(auction_id)
        if auction is None or not auction.is_active:
            return None
        return auction

    def add(self, auction: Auction) -> None:
        """
        Register a new auction.

        Raises:
            AlreadyActiveError: If the territory already has an ACTIVE auction
        """
        existing = self.get_by_territory(auction.territory_id)
        if existing is not None and existing.auction_id != auction.auction_id:
            raise AlreadyActiveError(auction.territory_id, existing.auction_id)
        self._auctions[auction.auction_id] = auction
        if auction.is_active:
            self._by_territory[auction.territory_id] = auction.auction_id

    def replace(self, auction: Auction) -> None:
        """Swap in an updated record for an auction already in the ledger."""
        if auction.auction_id not in self._auctions:
            raise KeyError(auction.auction_id)
        self._auctions[auction.auction_id] = auction

    def remove(self, auction_id: str) -> Auction | None:
        """Drop an auction after resolution. Returns the removed record, if any."""
        auction = self._auctions.pop(auction_id, None)
        if auction is not None and self._by_territory.get(auction.territory_id) == auction_id:
            del self._by_territory[auction.territory_id]
        return auction

    def list_active(self) -> list[Auction]:
        return [a for a in self._auctions.values() if a.is_active]

    def expired(self, now: datetime) -> list[Auction]:
        """ACTIVE auctions whose end time has passed, soonest first."""
        return sorted(
            (a for a in self._auctions.values() if a.is_active and a.is_expired(now)),
            key=lambda a: a.end_time,
        )

    @asynccontextmanager
    async def critical_section(self, territory_id: str) -> AsyncIterator[None]:
        """Serialize every mutation touching one territory."""
        async with self.locks.hold(territory_id):
            yield
