"""
Conquest applier.

Default subscriber of territory_conquered: hands the territory to the winner
and opens their protection window. It runs inline while the engine still
holds the territory's critical section, and the engine persists the territory
right after publishing, so the ownership change lands in the same write as
the auction's resolution.

Deployments that apply conquests elsewhere (for example after payment
capture) construct the engine with apply_conquests=False.
"""

from __future__ import annotations

from ...core.formatters import Clock
from ...core.logging import get_logger
from .events import Event
from .models import Sovereignty
from .sovereignty import SovereigntyStateMachine
from .territories import TerritoryRegistry

logger = get_logger(__name__)


class ConquestApplier:
    def __init__(
        self,
        territories: TerritoryRegistry,
        sovereignty: SovereigntyStateMachine,
        clock: Clock,
    ) -> None:
        self.territories = territories
        self.sovereignty = sovereignty
        self.clock = clock
        self.applied = 0

    def __call__(self, event: Event) -> None:
        payload = event.payload
        territory_id = payload["territory_id"]
        winner_id = payload["winner_id"]

        territory = self.territories.get(territory_id)
        if territory is None:
            logger.warning("Conquest for unknown territory %s ignored", territory_id)
            return

        if territory.ruler_id == winner_id and territory.sovereignty in (
            Sovereignty.RULED,
            Sovereignty.PROTECTED,
        ):
            return

        if territory.sovereignty != Sovereignty.CONTESTED:
            logger.warning(
                "Conquest of %s by %s ignored: territory is %s",
                territory_id,
                winner_id,
                territory.sovereignty.value,
            )
            return

        self.sovereignty.conquer(
            territory,
            winner_id,
            payload.get("winner_name"),
            now=self.clock.now(),
            tribute=payload.get("tribute"),
        )
        self.applied += 1
        logger.info(
            "Territory %s conquered by %s for %s",
            territory_id,
            winner_id,
            payload.get("tribute"),
            extra={"event": "territory_conquered", "territory_id": territory_id},
        )
