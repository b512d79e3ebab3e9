"""
Territory Pricing Oracle.

Deterministic instant-buy price for a territory, derived from its area, its
country's economic factor and a name-based region multiplier. The auction
starting-bid floor is a fixed fraction of that price.

The oracle holds no mutable state, so the same territory always yields the
same floor; reconciliation relies on this to detect drifted starting bids.
"""

from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal
from typing import Protocol

from ...core.config import AuctionSettings, get_settings
from .models import Territory

MIN_PIXELS = 100
MAX_PIXELS = 10000
MIN_PRICE = 5
MAX_PRICE = 50000

COUNTRY_ECONOMIC_FACTOR: dict[str, float] = {
    "USA": 1.5,
    "JPN": 1.4,
    "DEU": 1.3,
    "GBR": 1.3,
    "FRA": 1.2,
    "KOR": 1.2,
    "CHN": 1.1,
    "IND": 0.9,
    "BRA": 0.9,
    "RUS": 1.0,
    "AUS": 1.2,
    "CAN": 1.3,
    "SGP": 1.6,
    "ARE": 1.5,
    "CHE": 1.6,
    "NOR": 1.4,
    "SWE": 1.3,
    "NLD": 1.3,
}
DEFAULT_ECONOMIC_FACTOR = 1.0

# Legacy country slugs still found in older territory data
COUNTRY_SLUG_TO_ISO3: dict[str, str] = {
    "usa": "USA",
    "south-korea": "KOR",
    "japan": "JPN",
    "china": "CHN",
    "germany": "DEU",
    "uk": "GBR",
    "france": "FRA",
    "india": "IND",
    "brazil": "BRA",
    "russia": "RUS",
    "australia": "AUS",
    "canada": "CAN",
    "singapore": "SGP",
    "uae": "ARE",
    "switzerland": "CHE",
    "norway": "NOR",
    "sweden": "SWE",
    "netherlands": "NLD",
}

REGION_MULTIPLIER: dict[str, float] = {
    "capital": 2.0,
    "major_city": 1.5,
    "coastal": 1.3,
    "border": 1.2,
    "inland": 1.0,
    "remote": 0.8,
}

# Checked in order; first match wins
_REGION_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    (
        "capital",
        (
            "seoul",
            "tokyo",
            "washington",
            "london",
            "paris",
            "berlin",
            "beijing",
            "moscow",
            "canberra",
            "ottawa",
            "capital",
            "district",
        ),
    ),
    (
        "major_city",
        (
            "new york",
            "los angeles",
            "chicago",
            "osaka",
            "shanghai",
            "mumbai",
            "são paulo",
            "city",
            "metro",
            "urban",
        ),
    ),
    ("coastal", ("coastal", "beach", "shore", "bay", "port", "harbor")),
)


class PricingOracle(Protocol):
    """Price source consulted by the engine."""

    def instant_price(self, territory: Territory) -> int: ...

    def starting_bid_floor(self, territory: Territory) -> int: ...


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positives."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _round_to_step(price: float, step: int) -> int:
    return round_half_up(price / step) * step


def normalize_country_code(country_code: str | None) -> str | None:
    """Map a legacy slug or lowercase code to its ISO 3166-1 alpha-3 form."""
    if not country_code:
        return None
    code = country_code.strip()
    return COUNTRY_SLUG_TO_ISO3.get(code.lower(), code.upper())


def classify_region(name: str | None) -> str:
    """Classify a territory by keywords in its name."""
    lowered = (name or "").lower()
    for region, keywords in _REGION_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return region
    return "inland"


def pixel_count(area_sqkm: float | None) -> int:
    """Convert an area to a clamped pixel count. Unknown areas get the minimum."""
    if area_sqkm is None:
        return MIN_PIXELS
    try:
        area = round_half_up(float(area_sqkm))
    except (TypeError, ValueError, ArithmeticError):
        return MIN_PIXELS
    if area <= 0:
        return MIN_PIXELS
    pixels = math.sqrt(area) * 10
    return round_half_up(max(MIN_PIXELS, min(MAX_PIXELS, pixels)))


class TerritoryPricingOracle:
    """
    Default PricingOracle.

    price = pixels * price_per_pixel * economic_factor * region_multiplier,
    clamped to [5, 50000] and rounded to a tidy step for its magnitude.
    """

    def __init__(self, settings: AuctionSettings | None = None) -> None:
        settings = settings or get_settings()
        self.price_per_pixel = settings.price_per_pixel
        self.ratio = settings.auction_starting_bid_ratio
        self.min_bid = settings.min_starting_bid

    def economic_factor(self, country_code: str | None) -> float:
        iso3 = normalize_country_code(country_code)
        if iso3 is None:
            return DEFAULT_ECONOMIC_FACTOR
        return COUNTRY_ECONOMIC_FACTOR.get(iso3, DEFAULT_ECONOMIC_FACTOR)

    def instant_price(self, territory: Territory) -> int:
        price = (
            pixel_count(territory.area_sqkm)
            * self.price_per_pixel
            * self.economic_factor(territory.country_code)
            * REGION_MULTIPLIER[classify_region(territory.name)]
        )
        price = max(MIN_PRICE, min(MAX_PRICE, price))

        if price < 50:
            return _round_to_step(price, 5)
        if price < 500:
            return _round_to_step(price, 10)
        if price < 5000:
            return _round_to_step(price, 50)
        return _round_to_step(price, 100)

    def starting_bid_floor(self, territory: Territory) -> int:
        return max(math.floor(self.instant_price(territory) * self.ratio), self.min_bid)
