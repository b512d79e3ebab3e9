"""
Auction & Sovereignty Engine.

The public surface for creating auctions, placing bids and resolving
outcomes. Collaborators (document store, pricing oracle, event bus, clock,
settings) are injected, so tests run against an in-memory store with a
controllable clock.

Every mutation of an auction or its territory happens inside the
territory's critical section (AuctionLedger.critical_section). The order
inside is always: validate, persist, then commit to memory and publish.

Usage:
    from territory_auction.services.auctions import AuctionEngine
    from territory_auction.services.document_store import SQLiteDocumentStore

    store = SQLiteDocumentStore()
    await store.initialize()
    engine = AuctionEngine(store)
    await engine.load()
    engine.start_sweeper()
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from ...core.config import AuctionSettings, get_settings
from ...core.errors import (
    AlreadyActiveError,
    InvalidStateError,
    NotFoundError,
    TransientIOError,
    UnauthorizedError,
    ValidationFailedError,
)
from ...core.formatters import Clock, SystemClock, format_datetime
from ...core.logging import get_logger
from ..document_store import DocumentStore, where
from .bids import BidProcessor, validate_amount
from .bonuses import BonusRates
from .conquest import ConquestApplier
from .events import AuctionEvent, EventBus
from .ledger import AuctionLedger
from .models import (
    AUCTIONS,
    TERRITORIES,
    Auction,
    AuctionOptions,
    AuctionStatus,
    Sovereignty,
    Territory,
)
from .pricing import PricingOracle, TerritoryPricingOracle
from .reconciliation import ReconciliationGuard, ReconciliationStats
from .sovereignty import AllowedActions, SovereigntyStateMachine
from .sweeper import ExpirySweeper
from .territories import TerritoryRegistry, is_iso3_country_code, normalize_territory_id

logger = get_logger(__name__)

PROPORTIONAL_INCREMENT_RATIO = 0.1
PROPORTIONAL_INCREMENT_MINIMUM = 10


@dataclass
class LoadReport:
    """What load() found and fixed."""

    territories: int = 0
    auctions: int = 0
    malformed_auctions: int = 0
    duplicate_auctions: int = 0
    expired_resolved: int = 0
    reconciliation: ReconciliationStats | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "territories": self.territories,
            "auctions": self.auctions,
            "malformed_auctions": self.malformed_auctions,
            "duplicate_auctions": self.duplicate_auctions,
            "expired_resolved": self.expired_resolved,
        }
        if self.reconciliation is not None:
            result["auctions_corrected"] = self.reconciliation.auctions_corrected
            result["territories_repaired"] = self.reconciliation.territories_repaired
        return result


class AuctionEngine:
    """Creates auctions, records bids and keeps sovereignty in step with outcomes."""

    def __init__(
        self,
        store: DocumentStore,
        pricing: PricingOracle | None = None,
        events: EventBus | None = None,
        clock: Clock | None = None,
        settings: AuctionSettings | None = None,
        *,
        apply_conquests: bool = True,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store
        self.pricing = pricing or TerritoryPricingOracle(self.settings)
        self.events = events or EventBus()
        self.clock = clock or SystemClock()

        self.ledger = AuctionLedger()
        self.territories = TerritoryRegistry()
        self.sovereignty = SovereigntyStateMachine(self.settings.protection_days)
        self.bids = BidProcessor(self.territories, BonusRates.from_settings(self.settings))
        self.reconciliation = ReconciliationGuard(
            self.store, self.pricing, self.sovereignty, self.clock
        )
        self.sweeper = ExpirySweeper(self, interval_seconds=self.settings.sweep_interval_seconds)

        self.conquests: ConquestApplier | None = None
        if apply_conquests:
            self.conquests = ConquestApplier(self.territories, self.sovereignty, self.clock)
            self.events.subscribe(AuctionEvent.TERRITORY_CONQUERED, self.conquests)

    # =========================================================================
    # Bootstrap
    # =========================================================================

    async def seed_territories(self, territories: list[Territory]) -> int:
        """
        Persist territories that do not exist yet.

        Existing territories are left untouched, so reseeding never resets
        ownership. Returns the number created.
        """
        created = 0
        for territory in territories:
            tid = territory.territory_id
            if tid in self.territories:
                continue
            existing = await self.store.get(TERRITORIES, tid)
            if existing is not None:
                self.territories.put(Territory.from_doc(existing))
                continue
            await self.store.set(TERRITORIES, tid, territory.to_doc())
            self.territories.put(territory.copy())
            created += 1
        if created:
            logger.info("Seeded %d territories", created)
        return created

    async def load(self) -> LoadReport:
        """
        Load territories and ACTIVE auctions from the store.

        Auctions already past their end time are resolved, duplicates for one
        territory are cancelled (newest wins), and the reconciliation guard
        repairs any drift it finds.
        """
        report = LoadReport()

        for doc in await self.store.query(TERRITORIES):
            try:
                self.territories.put(Territory.from_doc(doc))
            except (KeyError, ValueError) as e:
                logger.warning("Skipping malformed territory document: %s", e)
        report.territories = len(self.territories)

        loaded: list[Auction] = []
        for doc in await self.store.query(AUCTIONS, [where("status", "==", "active")]):
            try:
                loaded.append(Auction.from_doc(doc))
            except (KeyError, ValueError) as e:
                report.malformed_auctions += 1
                logger.warning(
                    "Skipping malformed auction document %s: %s", doc.get("auction_id"), e
                )

        for auction in sorted(loaded, key=lambda a: a.start_time, reverse=True):
            try:
                self.ledger.add(auction)
                report.auctions += 1
            except AlreadyActiveError:
                report.duplicate_auctions += 1
                await self._cancel_duplicate(auction)

        now = self.clock.now()
        for auction in self.ledger.expired(now):
            try:
                await self.end_auction(auction.auction_id)
                report.expired_resolved += 1
            except (NotFoundError, TransientIOError) as e:
                logger.warning("Could not resolve expired auction %s: %s", auction.auction_id, e)

        report.reconciliation = await self.reconciliation.run(self.ledger, self.territories)

        logger.info(
            "Engine loaded: %d territories, %d active auctions",
            report.territories,
            len(self.ledger),
        )
        return report

    async def _cancel_duplicate(self, auction: Auction) -> None:
        logger.warning(
            "Duplicate active auction %s for %s cancelled",
            auction.auction_id,
            auction.territory_id,
        )
        try:
            await self.store.update(
                AUCTIONS, auction.auction_id, {"status": AuctionStatus.CANCELLED.value}
            )
        except TransientIOError as e:
            logger.warning("Could not cancel duplicate %s: %s", auction.auction_id, e.message)

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _require_territory(self, territory_id: str) -> Territory:
        territory = self.territories.get(territory_id)
        if territory is not None:
            return territory
        doc = await self.store.get(TERRITORIES, territory_id)
        if doc is None:
            raise NotFoundError(f"Territory not found: {territory_id}")
        territory = Territory.from_doc(doc)
        self.territories.put(territory)
        return territory

    async def _refresh_territory(self, territory_id: str) -> None:
        doc = await self.store.get(TERRITORIES, territory_id)
        if doc is not None:
            self.territories.put(Territory.from_doc(doc))

    async def _stored_active(self, auction_id: str, territory_id: str) -> Auction:
        """
        The store's copy of an ACTIVE auction. Caller holds the critical section.

        Another process may have bid on or resolved the auction since the
        ledger last saw it. A resolved auction is dropped from the ledger and
        never written back.
        """
        doc = await self.store.get(AUCTIONS, auction_id)
        stored = Auction.from_doc(doc) if doc is not None else None
        if stored is None or not stored.is_active:
            if self.ledger.remove(auction_id) is not None:
                logger.info("Auction %s was resolved elsewhere; dropped from ledger", auction_id)
                await self._refresh_territory(territory_id)
            raise NotFoundError(f"Auction not found or already ended: {auction_id}")
        if auction_id in self.ledger:
            self.ledger.replace(stored)
        return stored

    async def _new_auction_id(self, territory_id: str, now: datetime) -> str:
        millis = int(now.timestamp() * 1000)
        while True:
            auction_id = f"auction_{territory_id}_{millis}"
            if auction_id not in self.ledger and await self.store.get(AUCTIONS, auction_id) is None:
                return auction_id
            millis += 1

    def _min_increment(self, starting_bid: int) -> int:
        if self.settings.bid_increment_mode == "proportional":
            return max(
                math.floor(starting_bid * PROPORTIONAL_INCREMENT_RATIO),
                PROPORTIONAL_INCREMENT_MINIMUM,
            )
        return self.settings.bid_increment

    def _compute_end_time(
        self, territory: Territory, options: AuctionOptions, now: datetime
    ) -> datetime:
        protected = self.sovereignty.is_protected(territory, now)
        owned = territory.has_owner or territory.sovereignty in (
            Sovereignty.RULED,
            Sovereignty.PROTECTED,
        )
        if options.end_time is not None and (protected or owned):
            raise ValidationFailedError(
                "End time can only be chosen for an unowned, unprotected territory"
            )
        if protected and territory.protection_ends_at:
            return territory.protection_ends_at
        if owned:
            return now + timedelta(days=self.settings.owned_auction_days)
        if options.end_time is not None:
            end_time = options.end_time
            if end_time.tzinfo is None:
                end_time = end_time.replace(tzinfo=timezone.utc)
            return end_time
        return now + timedelta(hours=self.settings.unowned_auction_hours)

    # =========================================================================
    # Create
    # =========================================================================

    async def create_auction(
        self,
        territory_id: str,
        *,
        created_by: str | None,
        options: AuctionOptions | None = None,
    ) -> Auction:
        """
        Open an auction for a territory.

        Raises:
            UnauthorizedError: No creator identity
            ValidationFailedError: Malformed id, missing country code, bad options
            NotFoundError: Unknown territory
            AlreadyActiveError: The territory already has an ACTIVE auction
            TransientIOError: The store write failed; nothing was committed
        """
        if not created_by:
            raise UnauthorizedError("Authentication required to create an auction")
        options = options or AuctionOptions()
        tid = normalize_territory_id(territory_id)

        async with self.ledger.critical_section(tid):
            territory = await self._require_territory(tid)
            if not is_iso3_country_code(territory.country_code):
                raise ValidationFailedError("Cannot create auction: country code is required")

            existing = self.ledger.get_by_territory(tid)
            if existing is not None:
                raise AlreadyActiveError(tid, existing.auction_id)

            stored = await self.store.query(
                AUCTIONS,
                [where("territory_id", "==", tid), where("status", "==", "active")],
                limit=1,
            )
            if stored:
                raise AlreadyActiveError(tid, stored[0].get("auction_id"))

            if territory.sovereignty == Sovereignty.CONTESTED:
                latest = await self.reconciliation.latest_auction(tid)
                self.reconciliation.repair_territory(territory, None, latest)
                logger.warning(
                    "Territory %s was contested without an auction; repaired to %s",
                    tid,
                    territory.sovereignty.value,
                )

            now = self.clock.now()
            end_time = self._compute_end_time(territory, options, now)
            if end_time <= now:
                raise ValidationFailedError("Auction end time must be in the future")

            floor = self.pricing.starting_bid_floor(territory)
            if options.starting_bid is not None and options.starting_bid < floor:
                raise ValidationFailedError(f"Starting bid must be at least {floor}")
            starting_bid = options.starting_bid if options.starting_bid is not None else floor

            auction = Auction(
                auction_id=await self._new_auction_id(tid, now),
                territory_id=tid,
                territory_name=territory.name,
                country_code=territory.country_code,
                auction_type=options.auction_type,
                status=AuctionStatus.ACTIVE,
                starting_bid=starting_bid,
                current_bid=starting_bid,
                min_increment=self._min_increment(starting_bid),
                start_time=now,
                end_time=end_time,
                previous_owner_id=territory.ruler_id,
                previous_owner_name=territory.ruler_name,
                is_protected_auction=self.sovereignty.is_protected(territory, now),
                custom_starting_bid=starting_bid != floor,
                created_by=created_by,
                creator_name=options.creator_name,
            )
            contested = territory.copy()
            self.sovereignty.begin_contest(contested, auction.auction_id)

            await self.store.set(AUCTIONS, auction.auction_id, auction.to_doc())
            try:
                await self.store.set(TERRITORIES, tid, contested.to_doc())
            except TransientIOError:
                await self._compensate_failed_create(auction)
                raise

            self.territories.put(contested)
            self.ledger.add(auction)

        logger.info(
            "Auction %s created for %s (starting_bid=%d, ends %s)",
            auction.auction_id,
            tid,
            auction.starting_bid,
            format_datetime(auction.end_time),
            extra={"event": "auction_started", "auction_id": auction.auction_id},
        )
        self.events.publish(
            AuctionEvent.AUCTION_STARTED,
            {
                "auction_id": auction.auction_id,
                "territory_id": tid,
                "starting_bid": auction.starting_bid,
                "min_increment": auction.min_increment,
                "end_time": format_datetime(auction.end_time),
                "is_protected_auction": auction.is_protected_auction,
                "previous_owner_id": auction.previous_owner_id,
                "created_by": created_by,
                "creator_name": options.creator_name,
            },
        )
        return auction.copy()

    async def _compensate_failed_create(self, auction: Auction) -> None:
        """Mark an auction whose territory write failed as cancelled (best effort)."""
        try:
            await self.store.update(
                AUCTIONS, auction.auction_id, {"status": AuctionStatus.CANCELLED.value}
            )
        except (TransientIOError, NotFoundError) as e:
            # load() cancels the orphan or reconciles the territory to it
            logger.error(
                "Could not cancel orphaned auction %s: %s",
                auction.auction_id,
                e.message,
                extra={"event": "create_compensation_failed", "auction_id": auction.auction_id},
            )

    # =========================================================================
    # Bid
    # =========================================================================

    async def place_bid(
        self,
        auction_id: str,
        bidder_id: str | None,
        bidder_name: str | None,
        amount: int,
    ) -> Auction:
        """
        Place a bid on an ACTIVE auction.

        Raises:
            UnauthorizedError: No bidder identity
            ValidationFailedError: Amount is not a positive whole number
            BidTooLowError: Amount is below the minimum acceptable bid
            NotFoundError: Auction is not in the ledger, or another process
                has resolved it
            InvalidStateError: Auction is no longer ACTIVE or has run out of time
            TransientIOError: The store write failed; the bid was not recorded
        """
        if not bidder_id:
            raise UnauthorizedError("Authentication required to bid")
        amount = validate_amount(amount)

        auction = self.ledger.get(auction_id)
        if auction is None:
            raise NotFoundError(f"Auction not found: {auction_id}")

        async with self.ledger.critical_section(auction.territory_id):
            # Re-read: a competing bid or end may have run while we waited
            if auction_id not in self.ledger:
                raise NotFoundError(f"Auction not found: {auction_id}")
            auction = await self._stored_active(auction_id, auction.territory_id)

            territory = self.territories.get(auction.territory_id)
            if territory is not None:
                auction = await self.reconciliation.reconcile_auction(auction, territory)
                self.ledger.replace(auction)

            outcome = self.bids.apply(auction, bidder_id, bidder_name, amount, self.clock.now())

            await self.store.set(AUCTIONS, auction_id, outcome.auction.to_doc())
            self.ledger.replace(outcome.auction)

        updated = outcome.auction
        if outcome.bonuses.any_applied:
            self.events.publish(
                AuctionEvent.BONUS_APPLIED,
                {
                    "auction_id": auction_id,
                    "user_id": bidder_id,
                    "territory_id": updated.territory_id,
                    "buffs": [b.to_dict() for b in outcome.bonuses.bonuses],
                    "original_amount": amount,
                    "buffed_amount": outcome.bonuses.buffed_amount,
                },
            )
        self.events.publish(
            AuctionEvent.AUCTION_UPDATED,
            {
                "auction_id": auction_id,
                "territory_id": updated.territory_id,
                "current_bid": updated.current_bid,
                "highest_bidder_id": updated.highest_bidder_id,
                "highest_bidder_name": updated.highest_bidder_name,
                "buffed_amount": outcome.bid.buffed_amount,
                "bid_count": updated.bid_count,
            },
        )
        return updated.copy()

    # =========================================================================
    # End
    # =========================================================================

    async def end_auction(self, auction_id: str) -> Auction:
        """
        Resolve an auction. Shared by explicit calls and the sweeper.

        Raises:
            NotFoundError: Unknown auction, or already resolved (here or by
                another process)
            TransientIOError: Persisting the resolution failed; the auction is
                dropped from the ledger but stays ACTIVE in the store, so the
                next sweep retries it
        """
        cached = self.ledger.get(auction_id)
        if cached is not None:
            territory_id = cached.territory_id
        else:
            doc = await self.store.get(AUCTIONS, auction_id)
            if doc is None:
                raise NotFoundError(f"Auction not found: {auction_id}")
            territory_id = doc["territory_id"]

        async with self.ledger.critical_section(territory_id):
            known = auction_id in self.ledger
            auction = await self._stored_active(auction_id, territory_id)
            if not known:
                # Created elsewhere: our cached territory predates it
                await self._refresh_territory(territory_id)
            resolved = await self._resolve(auction)

        self.events.publish(
            AuctionEvent.AUCTION_ENDED,
            {
                "auction_id": auction_id,
                "territory_id": resolved.territory_id,
                "winner_id": resolved.highest_bidder_id,
                "final_bid": resolved.current_bid,
                "bid_count": resolved.bid_count,
            },
        )
        return resolved.copy()

    async def _resolve(self, auction: Auction) -> Auction:
        """Steps 2-5 of resolution. Caller holds the territory's critical section."""
        now = self.clock.now()
        resolved = auction.copy()
        resolved.status = AuctionStatus.ENDED
        resolved.ended_at = now
        tid = resolved.territory_id

        try:
            territory: Territory | None = await self._require_territory(tid)
        except NotFoundError:
            territory = None
            logger.warning("Auction %s references unknown territory %s", auction.auction_id, tid)

        snapshot = territory.copy() if territory is not None else None
        territory_written = False
        try:
            if resolved.has_bidder:
                self.events.publish(
                    AuctionEvent.TERRITORY_CONQUERED,
                    {
                        "territory_id": tid,
                        "auction_id": resolved.auction_id,
                        "winner_id": resolved.highest_bidder_id,
                        "winner_name": resolved.highest_bidder_name,
                        "user_id": resolved.highest_bidder_id,
                        "user_name": resolved.highest_bidder_name,
                        "tribute": resolved.current_bid,
                    },
                )
            elif territory is not None and territory.sovereignty == Sovereignty.CONTESTED:
                self.sovereignty.restore_after_unsold(
                    territory, resolved.previous_owner_id, resolved.previous_owner_name
                )

            if territory is not None and territory.current_auction_id == resolved.auction_id:
                territory.current_auction_id = None

            # The auction stays ACTIVE in the store until the territory has landed
            if territory is not None:
                await self.store.set(TERRITORIES, tid, territory.to_doc())
                territory_written = True
            await self.store.set(AUCTIONS, resolved.auction_id, resolved.to_doc())
        except TransientIOError as e:
            if snapshot is not None and not territory_written:
                self.territories.put(snapshot)
            logger.error(
                "Failed to persist resolution of %s: %s",
                resolved.auction_id,
                e.message,
                extra={"event": "end_persist_failed", "auction_id": resolved.auction_id},
            )
            raise
        finally:
            self.ledger.remove(resolved.auction_id)

        logger.info(
            "Auction %s ended: %s",
            resolved.auction_id,
            f"won by {resolved.highest_bidder_id} for {resolved.current_bid}"
            if resolved.has_bidder
            else "no bids",
            extra={"event": "auction_ended", "auction_id": resolved.auction_id},
        )
        return resolved

    # =========================================================================
    # Instant conquest
    # =========================================================================

    async def instant_conquest(
        self, territory_id: str, user_id: str | None, user_name: str | None = None
    ) -> Territory:
        """
        Buy an available territory outright at its instant price.

        Raises:
            UnauthorizedError: No user identity
            InvalidStateError: Territory is ruled, protected or under auction
        """
        if not user_id:
            raise UnauthorizedError("Authentication required to conquer a territory")
        tid = normalize_territory_id(territory_id)

        async with self.ledger.critical_section(tid):
            territory = await self._require_territory(tid)
            now = self.clock.now()
            active = self.ledger.get_by_territory(tid)
            actions = self.sovereignty.allowed_actions(territory, active, user_id, now)
            if not actions.can_buy_now:
                if active is not None or territory.sovereignty == Sovereignty.CONTESTED:
                    raise InvalidStateError("Auction in progress")
                if territory.sovereignty in (Sovereignty.RULED, Sovereignty.PROTECTED):
                    raise InvalidStateError("Territory is already ruled")
                raise InvalidStateError("Territory is protected")

            price = self.pricing.instant_price(territory)
            conquered = territory.copy()
            self.sovereignty.conquer(conquered, user_id, user_name or user_id, now, tribute=price)
            await self.store.set(TERRITORIES, tid, conquered.to_doc())
            self.territories.put(conquered)

            self.events.publish(
                AuctionEvent.TERRITORY_CONQUERED,
                {
                    "territory_id": tid,
                    "auction_id": None,
                    "winner_id": user_id,
                    "winner_name": conquered.ruler_name,
                    "user_id": user_id,
                    "user_name": conquered.ruler_name,
                    "tribute": price,
                    "instant": True,
                },
            )
        return conquered.copy()

    # =========================================================================
    # Queries
    # =========================================================================

    def get_active_auction(self, auction_id: str) -> Auction | None:
        auction = self.ledger.get(auction_id)
        return auction.copy() if auction is not None and auction.is_active else None

    def get_auction_by_territory(self, territory_id: str) -> Auction | None:
        auction = self.ledger.get_by_territory(normalize_territory_id(territory_id))
        return auction.copy() if auction is not None else None

    def list_active_auctions(self) -> list[Auction]:
        return [a.copy() for a in sorted(self.ledger.list_active(), key=lambda a: a.end_time)]

    def get_user_bid_history(self, user_id: str) -> list[dict[str, Any]]:
        """Active auctions the user has bid on, with their bids and standing."""
        history = []
        for auction in self.list_active_auctions():
            user_bids = [b for b in auction.bids if b.user_id == user_id]
            if not user_bids:
                continue
            history.append(
                {
                    "auction_id": auction.auction_id,
                    "territory_id": auction.territory_id,
                    "current_bid": auction.current_bid,
                    "is_highest_bidder": auction.highest_bidder_id == user_id,
                    "bids": [b.to_doc() for b in user_bids],
                }
            )
        return history

    def get_territory(self, territory_id: str) -> Territory | None:
        territory = self.territories.get(normalize_territory_id(territory_id))
        return territory.copy() if territory is not None else None

    def allowed_actions(self, territory_id: str, user_id: str | None) -> AllowedActions:
        tid = normalize_territory_id(territory_id)
        territory = self.territories.require(tid)
        return self.sovereignty.allowed_actions(
            territory, self.ledger.get_by_territory(tid), user_id, self.clock.now()
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start_sweeper(self) -> None:
        self.sweeper.start()

    async def stop_sweeper(self, timeout: float = 5.0) -> None:
        await self.sweeper.stop(timeout=timeout)

    async def shutdown(self) -> None:
        """Stop the sweeper and wait for in-flight async event handlers."""
        await self.stop_sweeper()
        await self.events.drain()
