"""
Reconciliation Guard.

Detects and repairs persisted state that has drifted from what the pricing
oracle and the sovereignty invariants require. Runs over everything on load,
and against a single auction before a bid is accepted.

Correction rules:
- starting_bid is reset to the oracle's current floor. A custom starting bid
  is only ever raised to the floor, never lowered.
- current_bid follows starting_bid while the auction has no bids; once bids
  exist, current_bid is the result of real bidding and is left alone.
- A CONTESTED territory without an ACTIVE auction is resolved from its most
  recent auction: conquered if that auction had a winner, otherwise restored.
- A territory whose current_auction_id disagrees with the ledger is pointed
  at the ACTIVE auction (or cleared).

Store failures are logged and skipped; the next load or bid retries.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from ...core.errors import NotFoundError, TransientIOError
from ...core.formatters import Clock
from ...core.logging import get_logger
from ..document_store import DocumentStore, OrderBy, where
from .models import AUCTIONS, TERRITORIES, Auction, AuctionStatus, Sovereignty, Territory
from .pricing import PricingOracle
from .sovereignty import SovereigntyStateMachine

if TYPE_CHECKING:
    from .ledger import AuctionLedger
    from .territories import TerritoryRegistry

logger = get_logger(__name__)


@dataclass
class ReconciliationStats:
    """Statistics from a reconciliation pass."""

    auctions_checked: int = 0
    auctions_corrected: int = 0
    territories_repaired: int = 0
    persist_failures: int = 0


class ReconciliationGuard:
    def __init__(
        self,
        store: DocumentStore,
        pricing: PricingOracle,
        sovereignty: SovereigntyStateMachine,
        clock: Clock,
    ) -> None:
        self.store = store
        self.pricing = pricing
        self.sovereignty = sovereignty
        self.clock = clock

    # -------------------------------------------------------------------------
    # Auction price drift
    # -------------------------------------------------------------------------

    def expected_starting_bid(self, auction: Auction, territory: Territory) -> int:
        floor = self.pricing.starting_bid_floor(territory)
        if auction.custom_starting_bid:
            return max(auction.starting_bid, floor)
        return floor

    def correct(self, auction: Auction, territory: Territory) -> Auction | None:
        """
        Return a corrected copy of the auction, or None if nothing drifted.

        Pure: neither the input auction nor the store is touched.
        """
        expected = self.expected_starting_bid(auction, territory)
        starting_ok = auction.starting_bid == expected
        current_ok = bool(auction.bids) or auction.current_bid == expected
        if starting_ok and current_ok:
            return None

        corrected = auction.copy()
        corrected.starting_bid = expected
        if not corrected.bids:
            corrected.current_bid = expected
        return corrected

    async def reconcile_auction(self, auction: Auction, territory: Territory) -> Auction:
        """
        Correct one auction and persist the correction (best effort).

        Returns:
            The corrected auction, or the input unchanged
        """
        corrected = self.correct(auction, territory)
        if corrected is None:
            return auction

        logger.warning(
            "Reconciled auction %s: starting_bid %d -> %d, current_bid %d -> %d",
            auction.auction_id,
            auction.starting_bid,
            corrected.starting_bid,
            auction.current_bid,
            corrected.current_bid,
            extra={"event": "reconcile_auction", "auction_id": auction.auction_id},
        )
        try:
            await self.store.update(
                AUCTIONS,
                auction.auction_id,
                {"starting_bid": corrected.starting_bid, "current_bid": corrected.current_bid},
            )
        except (TransientIOError, NotFoundError) as e:
            logger.warning(
                "Could not persist reconciliation for %s, will retry later: %s",
                auction.auction_id,
                e.message,
            )
        return corrected

    # -------------------------------------------------------------------------
    # Territory drift
    # -------------------------------------------------------------------------

    def repair_territory(
        self,
        territory: Territory,
        active: Auction | None,
        latest: Auction | None = None,
    ) -> bool:
        """
        Bring a territory in line with the ledger. Mutates in place.

        Args:
            territory: Territory to repair
            active: The territory's ACTIVE auction, if any
            latest: Most recent ENDED auction, used to resolve a stale contest

        Returns:
            True if anything changed
        """
        if active is not None:
            if (
                territory.sovereignty == Sovereignty.CONTESTED
                and territory.current_auction_id == active.auction_id
            ):
                return False
            if territory.sovereignty == Sovereignty.CONTESTED:
                territory.current_auction_id = active.auction_id
            else:
                self.sovereignty.begin_contest(territory, active.auction_id)
            return True

        if territory.sovereignty != Sovereignty.CONTESTED:
            if territory.current_auction_id is None:
                return False
            territory.current_auction_id = None
            return True

        if latest is not None and latest.status == AuctionStatus.ENDED and latest.has_bidder:
            self.sovereignty.conquer(
                territory,
                latest.highest_bidder_id,  # type: ignore[arg-type]
                latest.highest_bidder_name,
                now=latest.ended_at or self.clock.now(),
                tribute=latest.current_bid,
            )
        elif latest is not None:
            self.sovereignty.restore_after_unsold(
                territory, latest.previous_owner_id, latest.previous_owner_name
            )
        else:
            # Ownership fields survive a contest, so they are the best snapshot left
            self.sovereignty.restore_after_unsold(
                territory, territory.ruler_id, territory.ruler_name
            )
        return True

    async def latest_auction(self, territory_id: str) -> Auction | None:
        docs = await self.store.query(
            AUCTIONS,
            [where("territory_id", "==", territory_id), where("status", "==", "ended")],
            order_by=OrderBy("end_time", descending=True),
            limit=1,
        )
        return Auction.from_doc(docs[0]) if docs else None

    # -------------------------------------------------------------------------
    # Full pass
    # -------------------------------------------------------------------------

    async def run(self, ledger: AuctionLedger, territories: TerritoryRegistry) -> ReconciliationStats:
        """Check every active auction and every territory."""
        stats = ReconciliationStats()

        for auction in ledger.list_active():
            territory = territories.get(auction.territory_id)
            if territory is None:
                continue
            stats.auctions_checked += 1
            corrected = await self.reconcile_auction(auction, territory)
            if corrected is not auction:
                ledger.replace(corrected)
                stats.auctions_corrected += 1

        for territory in territories:
            active = ledger.get_by_territory(territory.territory_id)
            latest = None
            try:
                if active is None and territory.sovereignty == Sovereignty.CONTESTED:
                    latest = await self.latest_auction(territory.territory_id)
                if not self.repair_territory(territory, active, latest):
                    continue
                stats.territories_repaired += 1
                logger.warning(
                    "Repaired territory %s: now %s (current_auction_id=%s)",
                    territory.territory_id,
                    territory.sovereignty.value,
                    territory.current_auction_id,
                    extra={"event": "repair_territory", "territory_id": territory.territory_id},
                )
                await self.store.set(TERRITORIES, territory.territory_id, territory.to_doc())
            except TransientIOError as e:
                stats.persist_failures += 1
                logger.warning("Territory repair for %s skipped: %s", territory.territory_id, e.message)

        return stats
