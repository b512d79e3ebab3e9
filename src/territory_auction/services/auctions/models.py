"""
Auction & Sovereignty Data Models.

Territory and Auction are mutable records owned by the engine; they are only
mutated inside the engine's per-territory critical section. Bid is immutable.
Each record converts to and from the JSON document stored in the DocumentStore.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ...core.formatters import format_datetime, parse_datetime

# =============================================================================
# Collections
# =============================================================================

TERRITORIES = "territories"
AUCTIONS = "auctions"


# =============================================================================
# Enums
# =============================================================================


class Sovereignty(str, Enum):
    """Ownership status of a territory."""

    UNCONQUERED = "unconquered"
    CONTESTED = "contested"
    RULED = "ruled"
    PROTECTED = "protected"


class AuctionStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    ENDED = "ended"
    CANCELLED = "cancelled"


class AuctionType(str, Enum):
    """Auction format. Only STANDARD (highest bid wins) is resolved by the engine."""

    STANDARD = "standard"
    DUTCH = "dutch"
    SEALED = "sealed"


def _dt(value: datetime | None) -> str | None:
    return format_datetime(value) if value is not None else None


def _required_dt(doc: dict[str, Any], key: str) -> datetime:
    parsed = parse_datetime(doc.get(key))
    if parsed is None:
        raise ValueError(f"Document field {key!r} is missing or not a datetime")
    return parsed


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class Territory:
    """A uniquely identified ownable region."""

    territory_id: str
    name: str
    country_code: str | None = None
    area_sqkm: float | None = None
    population: int | None = None
    neighbors: list[str] = field(default_factory=list)

    # Mutated only by the engine
    sovereignty: Sovereignty = Sovereignty.UNCONQUERED
    ruler_id: str | None = None
    ruler_name: str | None = None
    current_auction_id: str | None = None
    protection_ends_at: datetime | None = None
    last_winning_amount: int | None = None

    @property
    def has_owner(self) -> bool:
        return self.ruler_id is not None

    def copy(self) -> Territory:
        return copy.deepcopy(self)

    def to_doc(self) -> dict[str, Any]:
        return {
            "territory_id": self.territory_id,
            "name": self.name,
            "country_code": self.country_code,
            "area_sqkm": self.area_sqkm,
            "population": self.population,
            "neighbors": list(self.neighbors),
            "sovereignty": self.sovereignty.value,
            "ruler_id": self.ruler_id,
            "ruler_name": self.ruler_name,
            "current_auction_id": self.current_auction_id,
            "protection_ends_at": _dt(self.protection_ends_at),
            "last_winning_amount": self.last_winning_amount,
        }

    @classmethod
    def from_doc(cls, doc: dict[str, Any]) -> Territory:
        return cls(
            territory_id=doc["territory_id"],
            name=doc.get("name") or doc["territory_id"],
            country_code=doc.get("country_code"),
            area_sqkm=doc.get("area_sqkm"),
            population=doc.get("population"),
            neighbors=list(doc.get("neighbors") or []),
            sovereignty=Sovereignty(doc.get("sovereignty") or Sovereignty.UNCONQUERED.value),
            ruler_id=doc.get("ruler_id"),
            ruler_name=doc.get("ruler_name"),
            current_auction_id=doc.get("current_auction_id"),
            protection_ends_at=parse_datetime(doc.get("protection_ends_at")),
            last_winning_amount=doc.get("last_winning_amount"),
        )


@dataclass(frozen=True)
class Bid:
    """Immutable bid record. amount is charged; buffed_amount is informational."""

    user_id: str
    user_name: str
    amount: int
    buffed_amount: int
    timestamp: datetime

    def to_doc(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "user_name": self.user_name,
            "amount": self.amount,
            "buffed_amount": self.buffed_amount,
            "timestamp": format_datetime(self.timestamp),
        }

    @classmethod
    def from_doc(cls, doc: dict[str, Any]) -> Bid:
        amount = int(doc["amount"])
        return cls(
            user_id=doc["user_id"],
            user_name=doc.get("user_name") or doc["user_id"],
            amount=amount,
            buffed_amount=int(doc.get("buffed_amount", amount)),
            timestamp=_required_dt(doc, "timestamp"),
        )


@dataclass
class Auction:
    """A single bidding round for one territory."""

    auction_id: str
    territory_id: str
    starting_bid: int
    current_bid: int
    min_increment: int
    start_time: datetime
    end_time: datetime
    status: AuctionStatus = AuctionStatus.ACTIVE
    auction_type: AuctionType = AuctionType.STANDARD
    territory_name: str | None = None
    country_code: str | None = None
    highest_bidder_id: str | None = None
    highest_bidder_name: str | None = None
    bids: list[Bid] = field(default_factory=list)

    # Pre-auction owner, restored if nobody bids
    previous_owner_id: str | None = None
    previous_owner_name: str | None = None
    is_protected_auction: bool = False

    custom_starting_bid: bool = False
    created_by: str | None = None
    creator_name: str | None = None
    ended_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status == AuctionStatus.ACTIVE

    @property
    def has_bidder(self) -> bool:
        return self.highest_bidder_id is not None

    @property
    def bid_count(self) -> int:
        return len(self.bids)

    def is_expired(self, now: datetime) -> bool:
        return self.end_time <= now

    def copy(self) -> Auction:
        # Bid is frozen, so a shallow copy of the list is enough
        clone = copy.copy(self)
        clone.bids = list(self.bids)
        return clone

    def to_doc(self) -> dict[str, Any]:
        return {
            "auction_id": self.auction_id,
            "territory_id": self.territory_id,
            "territory_name": self.territory_name,
            "country_code": self.country_code,
            "auction_type": self.auction_type.value,
            "status": self.status.value,
            "starting_bid": self.starting_bid,
            "current_bid": self.current_bid,
            "min_increment": self.min_increment,
            "highest_bidder_id": self.highest_bidder_id,
            "highest_bidder_name": self.highest_bidder_name,
            "bids": [bid.to_doc() for bid in self.bids],
            "start_time": format_datetime(self.start_time),
            "end_time": format_datetime(self.end_time),
            "previous_owner_id": self.previous_owner_id,
            "previous_owner_name": self.previous_owner_name,
            "is_protected_auction": self.is_protected_auction,
            "custom_starting_bid": self.custom_starting_bid,
            "created_by": self.created_by,
            "creator_name": self.creator_name,
            "ended_at": _dt(self.ended_at),
        }

    @classmethod
    def from_doc(cls, doc: dict[str, Any]) -> Auction:
        starting_bid = int(doc.get("starting_bid") or 0)
        return cls(
            auction_id=doc["auction_id"],
            territory_id=doc["territory_id"],
            territory_name=doc.get("territory_name"),
            country_code=doc.get("country_code"),
            auction_type=AuctionType(doc.get("auction_type") or AuctionType.STANDARD.value),
            status=AuctionStatus(doc.get("status") or AuctionStatus.ACTIVE.value),
            starting_bid=starting_bid,
            current_bid=int(doc.get("current_bid") or starting_bid),
            min_increment=max(int(doc.get("min_increment") or 1), 1),
            highest_bidder_id=doc.get("highest_bidder_id"),
            highest_bidder_name=doc.get("highest_bidder_name"),
            bids=[Bid.from_doc(b) for b in doc.get("bids") or []],
            start_time=_required_dt(doc, "start_time"),
            end_time=_required_dt(doc, "end_time"),
            previous_owner_id=doc.get("previous_owner_id"),
            previous_owner_name=doc.get("previous_owner_name"),
            is_protected_auction=bool(doc.get("is_protected_auction", False)),
            custom_starting_bid=bool(doc.get("custom_starting_bid", False)),
            created_by=doc.get("created_by"),
            creator_name=doc.get("creator_name"),
            ended_at=parse_datetime(doc.get("ended_at")),
        )

    def to_summary(self) -> dict[str, Any]:
        """Compact JSON view for CLI output."""
        return {
            "auction_id": self.auction_id,
            "territory_id": self.territory_id,
            "status": self.status.value,
            "starting_bid": self.starting_bid,
            "current_bid": self.current_bid,
            "min_increment": self.min_increment,
            "highest_bidder_id": self.highest_bidder_id,
            "bid_count": self.bid_count,
            "end_time": format_datetime(self.end_time),
        }


# =============================================================================
# Request Models
# =============================================================================


class AuctionOptions(BaseModel):
    """
    Caller overrides for createAuction.

    Configuration:
    - frozen: options are read once at creation
    - extra="forbid": catches typos in option names
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    starting_bid: int | None = Field(
        default=None, gt=0, description="Explicit starting bid (must meet the floor)"
    )
    end_time: datetime | None = Field(
        default=None, description="Explicit end time for unowned, unprotected territories"
    )
    auction_type: AuctionType = Field(default=AuctionType.STANDARD)
    creator_name: str | None = Field(default=None, description="Display name of the creator")
