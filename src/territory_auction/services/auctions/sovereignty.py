"""
Sovereignty State Machine.

Owns a territory's ownership status and its legal transitions:

    UNCONQUERED -> CONTESTED     auction created for an unowned territory
    RULED/PROTECTED -> CONTESTED auction created for an owned territory
    CONTESTED -> RULED           auction won, or unsold with a prior owner restored
    CONTESTED -> UNCONQUERED     auction unsold, no prior owner
    UNCONQUERED -> RULED         instant conquest (buy now)

A conquest records a protection window on a RULED territory
(protection_ends_at) rather than moving it to PROTECTED. PROTECTED only
arrives through seed data, where it means protection with no recorded end.

Only the engine calls the mutating methods, inside the same critical section
as the matching auction change.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from ...core.errors import InvalidStateError
from .models import Auction, Sovereignty, Territory

LEGAL_TRANSITIONS: dict[Sovereignty, frozenset[Sovereignty]] = {
    Sovereignty.UNCONQUERED: frozenset({Sovereignty.CONTESTED, Sovereignty.RULED}),
    Sovereignty.CONTESTED: frozenset({Sovereignty.RULED, Sovereignty.UNCONQUERED}),
    Sovereignty.RULED: frozenset({Sovereignty.CONTESTED}),
    Sovereignty.PROTECTED: frozenset({Sovereignty.CONTESTED}),
}


@dataclass(frozen=True)
class AllowedActions:
    """What a user may do with a territory right now."""

    can_start_auction: bool
    can_bid: bool
    can_buy_now: bool
    can_extend_protection: bool
    can_view_auction: bool
    reason: str

    def to_dict(self) -> dict[str, bool | str]:
        return {
            "can_start_auction": self.can_start_auction,
            "can_bid": self.can_bid,
            "can_buy_now": self.can_buy_now,
            "can_extend_protection": self.can_extend_protection,
            "can_view_auction": self.can_view_auction,
            "reason": self.reason,
        }


class SovereigntyStateMachine:
    """Applies legal sovereignty transitions to Territory records."""

    def __init__(self, protection_days: int = 7) -> None:
        self.protection_days = protection_days

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    @staticmethod
    def can_transition(source: Sovereignty, target: Sovereignty) -> bool:
        return target in LEGAL_TRANSITIONS[source]

    @staticmethod
    def is_protected(territory: Territory, now: datetime) -> bool:
        """
        True while an ownership-protection window is open.

        A PROTECTED territory with no recorded end counts as protected.
        """
        if territory.protection_ends_at is not None:
            return territory.protection_ends_at > now
        return territory.sovereignty == Sovereignty.PROTECTED

    def allowed_actions(
        self,
        territory: Territory,
        auction: Auction | None,
        user_id: str | None,
        now: datetime,
    ) -> AllowedActions:
        """
        Evaluate the action policy for a user.

        Protection shields ownership from buy-now, not from auctions: anyone may
        start an auction on (and bid for) a protected territory.
        """
        is_owner = user_id is not None and territory.ruler_id == user_id
        auction_active = auction is not None and auction.is_active

        if territory.sovereignty == Sovereignty.CONTESTED:
            return AllowedActions(
                can_start_auction=False,
                can_bid=auction_active,
                can_buy_now=False,
                can_extend_protection=False,
                can_view_auction=True,
                reason="Territory is under auction",
            )

        if self.is_protected(territory, now):
            return AllowedActions(
                can_start_auction=not auction_active,
                can_bid=auction_active,
                can_buy_now=False,
                can_extend_protection=is_owner,
                can_view_auction=auction_active,
                reason="Territory is protected, but auctions and bids are allowed",
            )

        if territory.sovereignty in (Sovereignty.RULED, Sovereignty.PROTECTED):
            return AllowedActions(
                can_start_auction=not auction_active,
                can_bid=False,
                can_buy_now=False,
                can_extend_protection=is_owner,
                can_view_auction=auction_active,
                reason="You own this territory" if is_owner else "Territory is owned by another user",
            )

        return AllowedActions(
            can_start_auction=True,
            can_bid=auction_active,
            can_buy_now=not auction_active,
            can_extend_protection=False,
            can_view_auction=auction_active,
            reason="Territory is available",
        )

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def _transition(self, territory: Territory, target: Sovereignty) -> None:
        if not self.can_transition(territory.sovereignty, target):
            raise InvalidStateError(
                f"Illegal sovereignty transition for {territory.territory_id}: "
                f"{territory.sovereignty.value} -> {target.value}"
            )
        territory.sovereignty = target

    def begin_contest(self, territory: Territory, auction_id: str) -> None:
        """Territory enters an auction. Ownership fields are left untouched."""
        self._transition(territory, Sovereignty.CONTESTED)
        territory.current_auction_id = auction_id

    def conquer(
        self,
        territory: Territory,
        winner_id: str,
        winner_name: str | None,
        now: datetime,
        tribute: int | None = None,
    ) -> None:
        """Assign a new ruler and open their protection window."""
        self._transition(territory, Sovereignty.RULED)
        territory.ruler_id = winner_id
        territory.ruler_name = winner_name
        territory.current_auction_id = None
        territory.last_winning_amount = tribute
        territory.protection_ends_at = (
            now + timedelta(days=self.protection_days) if self.protection_days > 0 else None
        )

    def restore_after_unsold(
        self,
        territory: Territory,
        previous_owner_id: str | None,
        previous_owner_name: str | None,
    ) -> None:
        """Roll back an auction that closed without bids."""
        if previous_owner_id:
            self._transition(territory, Sovereignty.RULED)
            territory.ruler_id = previous_owner_id
            territory.ruler_name = previous_owner_name
        else:
            self._transition(territory, Sovereignty.UNCONQUERED)
            territory.ruler_id = None
            territory.ruler_name = None
        territory.current_auction_id = None
