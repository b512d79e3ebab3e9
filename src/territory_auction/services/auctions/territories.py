"""
Territory registry, id normalisation and seed loading.

Territories are created once at bootstrap from a YAML seed file and cached
in a TerritoryRegistry. The registry answers the adjacency and per-country
occupation questions the bonus pipeline asks.

Territory ids are canonical lower-case admin codes ("texas"). Display ids of
the form "USA::texas" are accepted anywhere an id is and converted.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator
from datetime import datetime
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ...core.errors import NotFoundError, ValidationFailedError
from .models import Sovereignty, Territory
from .pricing import normalize_country_code

_CANONICAL_ID = re.compile(r"^[\w\-.]+$")
_ISO3 = re.compile(r"^[A-Z]{3}$")
DISPLAY_ID_SEPARATOR = "::"


def normalize_territory_id(territory_id: object) -> str:
    """
    Convert a display or canonical id to the canonical form.

    Raises:
        ValidationFailedError: If the id is empty, not a string or malformed
    """
    if not isinstance(territory_id, str) or not territory_id.strip():
        raise ValidationFailedError("Invalid territory id")

    candidate = territory_id
    if DISPLAY_ID_SEPARATOR in candidate:
        parts = candidate.split(DISPLAY_ID_SEPARATOR)
        if len(parts) != 2 or not parts[0].strip() or not parts[1].strip():
            raise ValidationFailedError(f"Invalid territory id: {territory_id!r}")
        candidate = parts[1]

    canonical = candidate.strip().lower()
    if not _CANONICAL_ID.match(canonical):
        raise ValidationFailedError(f"Invalid territory id: {territory_id!r}")
    return canonical


def is_iso3_country_code(country_code: str | None) -> bool:
    return bool(country_code) and bool(_ISO3.match(country_code))  # type: ignore[arg-type]


# =============================================================================
# Seed Loading
# =============================================================================


class TerritorySeed(BaseModel):
    """One territory entry in a seed file."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str
    name: str | None = None
    country_code: str | None = None
    area_sqkm: float | None = Field(default=None, ge=0)
    population: int | None = Field(default=None, ge=0)
    neighbors: list[str] = Field(default_factory=list)
    sovereignty: Sovereignty = Sovereignty.UNCONQUERED
    ruler_id: str | None = None
    ruler_name: str | None = None
    protection_ends_at: datetime | None = None

    @field_validator("country_code", mode="before")
    @classmethod
    def normalize_country(cls, v: str | None) -> str | None:
        return normalize_country_code(v) if isinstance(v, str) else v

    def to_territory(self) -> Territory:
        territory_id = normalize_territory_id(self.id)
        sovereignty = self.sovereignty
        # A seed can't start mid-auction
        if sovereignty == Sovereignty.CONTESTED:
            sovereignty = Sovereignty.RULED if self.ruler_id else Sovereignty.UNCONQUERED
        return Territory(
            territory_id=territory_id,
            name=self.name or territory_id,
            country_code=self.country_code,
            area_sqkm=self.area_sqkm,
            population=self.population,
            neighbors=[normalize_territory_id(n) for n in self.neighbors],
            sovereignty=sovereignty,
            ruler_id=self.ruler_id,
            ruler_name=self.ruler_name,
            protection_ends_at=self.protection_ends_at,
        )


class TerritorySeedFile(BaseModel):
    model_config = ConfigDict(extra="ignore")

    territories: list[TerritorySeed] = Field(default_factory=list)


def load_seed_file(path: Path | str) -> list[Territory]:
    """
    Load territories from a YAML seed file.

    Expected format:
        territories:
          - id: texas
            name: Texas
            country_code: USA
            area_sqkm: 695662
            neighbors: [oklahoma, new-mexico]

    Raises:
        NotFoundError: If the file does not exist
        ValidationFailedError: If the file is not valid YAML or fails validation
    """
    path = Path(path)
    if not path.is_file():
        raise NotFoundError(f"Seed file not found: {path}")
    try:
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ValidationFailedError(f"Invalid seed file {path}: {e}") from e

    try:
        parsed = TerritorySeedFile.model_validate(raw)
    except ValidationError as e:
        raise ValidationFailedError(f"Invalid seed file {path}: {e}") from e

    return [seed.to_territory() for seed in parsed.territories]


# =============================================================================
# Registry
# =============================================================================


class TerritoryRegistry:
    """In-memory cache of territories, keyed by canonical id."""

    def __init__(self, territories: Iterable[Territory] = ()) -> None:
        self._territories: dict[str, Territory] = {}
        for territory in territories:
            self.put(territory)

    def __contains__(self, territory_id: object) -> bool:
        return territory_id in self._territories

    def __len__(self) -> int:
        return len(self._territories)

    def __iter__(self) -> Iterator[Territory]:
        return iter(list(self._territories.values()))

    def get(self, territory_id: str) -> Territory | None:
        return self._territories.get(territory_id)

    def require(self, territory_id: str) -> Territory:
        territory = self._territories.get(territory_id)
        if territory is None:
            raise NotFoundError(f"Territory not found: {territory_id}")
        return territory

    def put(self, territory: Territory) -> None:
        self._territories[territory.territory_id] = territory

    def adjacent(self, territory_id: str) -> set[str]:
        """
        Ids adjacent to a territory.

        Adjacency is symmetric: a neighbour listed on either side counts.
        """
        result: set[str] = set()
        territory = self._territories.get(territory_id)
        if territory is not None:
            result.update(territory.neighbors)
        for other in self._territories.values():
            if territory_id in other.neighbors:
                result.add(other.territory_id)
        result.discard(territory_id)
        return result

    def count_adjacent_ruled_by(self, territory_id: str, user_id: str) -> int:
        return sum(
            1
            for neighbor_id in self.adjacent(territory_id)
            if (neighbor := self._territories.get(neighbor_id)) is not None
            and neighbor.ruler_id == user_id
        )

    def count_ruled_in_country(self, country_code: str | None, user_id: str) -> int:
        if not country_code:
            return 0
        return sum(
            1
            for t in self._territories.values()
            if t.country_code == country_code and t.ruler_id == user_id
        )
