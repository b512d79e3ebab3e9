"""
Bid Processor.

Validates a bid against an auction and produces the updated auction record.
apply() is pure with respect to the ledger and the store: the engine persists
the returned record and swaps it into the ledger inside the territory's
critical section, so the minimum-bid check and the mutation are atomic.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from ...core.errors import BidTooLowError, InvalidStateError, ValidationFailedError
from ...core.logging import get_logger
from .bonuses import BonusBreakdown, BonusRates, calculate_bonuses
from .models import Auction, Bid
from .territories import TerritoryRegistry

logger = get_logger(__name__)


@dataclass(frozen=True)
class BidOutcome:
    auction: Auction
    bid: Bid
    bonuses: BonusBreakdown


def validate_amount(amount: object) -> int:
    """Reject anything that is not a positive whole number of currency units."""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationFailedError("Bid amount must be a whole number")
    if amount <= 0:
        raise ValidationFailedError("Bid amount must be positive")
    return amount


class BidProcessor:
    """Applies bids to auctions, enforcing price monotonicity and the increment."""

    def __init__(self, territories: TerritoryRegistry, rates: BonusRates | None = None) -> None:
        self.territories = territories
        self.rates = rates or BonusRates()

    @staticmethod
    def reference_price(auction: Auction) -> int:
        """Price a new bid must beat: the starting bid until someone has bid."""
        if not auction.has_bidder:
            return auction.starting_bid
        return max(auction.current_bid, auction.starting_bid)

    @classmethod
    def minimum_acceptable_bid(cls, auction: Auction) -> int:
        return cls.reference_price(auction) + auction.min_increment

    def compute_bonuses(self, auction: Auction, bidder_id: str, amount: int) -> BonusBreakdown:
        territory = self.territories.get(auction.territory_id)
        country_code = territory.country_code if territory else auction.country_code
        return calculate_bonuses(
            raw_amount=amount,
            adjacent_owned=self.territories.count_adjacent_ruled_by(auction.territory_id, bidder_id),
            country_owned=self.territories.count_ruled_in_country(country_code, bidder_id),
            country_code=country_code,
            rates=self.rates,
        )

    def apply(
        self,
        auction: Auction,
        bidder_id: str,
        bidder_name: str | None,
        amount: int,
        now: datetime,
    ) -> BidOutcome:
        """
        Validate a bid and return the auction as it would be after accepting it.

        Raises:
            InvalidStateError: Auction is not ACTIVE or its end time has passed
            BidTooLowError: Amount is below reference price + increment
        """
        if not auction.is_active:
            raise InvalidStateError("Auction is not active")
        if auction.is_expired(now):
            raise InvalidStateError("Auction has ended")

        minimum = self.minimum_acceptable_bid(auction)
        if amount < minimum:
            raise BidTooLowError(minimum)

        breakdown = self.compute_bonuses(auction, bidder_id, amount)
        for bonus in breakdown.bonuses:
            logger.debug(
                "Bonus %s applied to %s on %s: %s",
                bonus.bonus_type,
                bidder_id,
                auction.territory_id,
                bonus.description,
            )

        bid = Bid(
            user_id=bidder_id,
            user_name=bidder_name or bidder_id,
            amount=amount,
            buffed_amount=breakdown.buffed_amount,
            timestamp=now,
        )

        updated = auction.copy()
        updated.bids.append(bid)
        updated.current_bid = amount
        updated.highest_bidder_id = bidder_id
        updated.highest_bidder_name = bid.user_name

        return BidOutcome(auction=updated, bid=bid, bonuses=breakdown)
