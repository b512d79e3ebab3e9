"""
Bid bonus pipeline.

Pure calculation: given how many neighbours and same-country territories the
bidder already rules, work out each bonus and the bonus-adjusted ("buffed")
amount. Bonuses are applied multiplicatively in a fixed order:

1. adjacency  +rate per adjacent territory the bidder rules
2. country    flat +rate once the bidder rules `threshold` territories in the country
3. season     reserved, rate 0 unless configured

The buffed amount is a competitive signal only; the bidder is charged the raw amount.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ...core.config import AuctionSettings
from .pricing import round_half_up

ADJACENT = "adjacent"
COUNTRY = "country"
SEASON = "season"


@dataclass(frozen=True)
class BonusRates:
    adjacent_rate: float = 0.05
    country_rate: float = 0.10
    country_threshold: int = 3
    season_rate: float = 0.0

    @classmethod
    def from_settings(cls, settings: AuctionSettings) -> BonusRates:
        return cls(
            adjacent_rate=settings.adjacent_bonus_rate,
            country_rate=settings.country_bonus_rate,
            country_threshold=settings.country_bonus_threshold,
            season_rate=settings.season_bonus_rate,
        )


@dataclass(frozen=True)
class AppliedBonus:
    bonus_type: str
    bonus: float
    description: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.bonus_type, "bonus": self.bonus, "description": self.description}


@dataclass(frozen=True)
class BonusBreakdown:
    raw_amount: int
    buffed_amount: int
    bonuses: tuple[AppliedBonus, ...] = field(default_factory=tuple)

    @property
    def any_applied(self) -> bool:
        return bool(self.bonuses)


def calculate_bonuses(
    raw_amount: int,
    adjacent_owned: int,
    country_owned: int,
    country_code: str | None,
    rates: BonusRates,
) -> BonusBreakdown:
    """
    Compute the bonus-adjusted bid value.

    Args:
        raw_amount: Amount the bidder offered
        adjacent_owned: Territories adjacent to the target the bidder rules
        country_owned: Territories in the target's country the bidder rules
        country_code: Target's country (for the description)
        rates: Bonus rates and threshold

    Returns:
        Breakdown listing only bonuses greater than zero
    """
    applied: list[AppliedBonus] = []
    multiplier = 1.0

    adjacent_bonus = adjacent_owned * rates.adjacent_rate
    if adjacent_bonus > 0:
        multiplier *= 1 + adjacent_bonus
        applied.append(
            AppliedBonus(
                ADJACENT,
                adjacent_bonus,
                f"+{adjacent_bonus * 100:g}% ({adjacent_owned} adjacent territories)",
            )
        )

    if country_owned >= rates.country_threshold and rates.country_rate > 0:
        multiplier *= 1 + rates.country_rate
        applied.append(
            AppliedBonus(
                COUNTRY,
                rates.country_rate,
                f"+{rates.country_rate * 100:g}% ({country_code or 'country'} dominance)",
            )
        )

    if rates.season_rate > 0:
        multiplier *= 1 + rates.season_rate
        applied.append(
            AppliedBonus(SEASON, rates.season_rate, f"+{rates.season_rate * 100:g}% (season)")
        )

    return BonusBreakdown(
        raw_amount=raw_amount,
        buffed_amount=round_half_up(raw_amount * multiplier),
        bonuses=tuple(applied),
    )
