"""
Expiry Sweeper for the Auction Engine.

Background task that periodically resolves auctions whose end time has
passed, through the same end-auction path explicit calls use. Besides the
local ledger it asks the document store for overdue ACTIVE auctions, so an
auction created by another process is still resolved.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ...core.errors import NotFoundError, TransientIOError
from ...core.formatters import format_datetime
from ..document_store import where
from .models import AUCTIONS

if TYPE_CHECKING:
    from .engine import AuctionEngine

logger = logging.getLogger(__name__)

DEFAULT_SWEEP_INTERVAL_SECONDS = 5.0
DEFAULT_ERROR_BACKOFF_SECONDS = 5.0
MAX_ERROR_BACKOFF_SECONDS = 300.0


@dataclass
class SweepStats:
    """Statistics from a sweep."""

    candidates: int = 0
    ended: int = 0
    skipped: int = 0
    failed: int = 0
    duration_seconds: float = 0.0


class ExpirySweeper:
    """
    Background task that force-resolves overdue auctions.

    Runs in a loop, sleeping between sweeps. Should be started as an asyncio
    task and stopped on shutdown.
    """

    def __init__(
        self,
        engine: AuctionEngine,
        interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        scan_store: bool = True,
    ):
        """
        Initialize the sweeper.

        Args:
            engine: Engine whose end-auction path resolves each auction
            interval_seconds: Seconds between sweeps
            scan_store: Also query the store for overdue auctions
        """
        self.engine = engine
        self.interval_seconds = interval_seconds
        self.scan_store = scan_store
        self.last_stats: SweepStats | None = None
        self._running = False
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _candidates(self) -> list[str]:
        now = self.engine.clock.now()
        auction_ids = [a.auction_id for a in self.engine.ledger.expired(now)]

        if self.scan_store:
            try:
                docs = await self.engine.store.query(
                    AUCTIONS,
                    [
                        where("status", "==", "active"),
                        where("end_time", "<=", format_datetime(now)),
                    ],
                )
            except TransientIOError as e:
                logger.warning("Store scan skipped this sweep: %s", e.message)
            else:
                seen = set(auction_ids)
                for doc in docs:
                    if doc["auction_id"] not in seen:
                        auction_ids.append(doc["auction_id"])
                        seen.add(doc["auction_id"])

        return auction_ids

    async def run_once(self) -> SweepStats:
        """
        Run a single sweep.

        A failure on one auction is logged and does not stop the others.

        Returns:
            Statistics from the sweep
        """
        start_time = time.time()
        stats = SweepStats()

        auction_ids = await self._candidates()
        stats.candidates = len(auction_ids)

        for auction_id in auction_ids:
            try:
                await self.engine.end_auction(auction_id)
                stats.ended += 1
            except NotFoundError:
                # Ended concurrently by an explicit call or another process
                stats.skipped += 1
            except Exception as e:
                stats.failed += 1
                logger.error(
                    "Failed to end auction %s: %s",
                    auction_id,
                    e,
                    extra={"event": "sweep_failure", "auction_id": auction_id},
                )

        stats.duration_seconds = time.time() - start_time
        self.last_stats = stats

        if stats.ended or stats.failed:
            logger.info(
                "Sweep complete: %d ended, %d skipped, %d failed in %.2fs",
                stats.ended,
                stats.skipped,
                stats.failed,
                stats.duration_seconds,
            )
        else:
            logger.debug("Sweep complete: nothing to end")

        return stats

    async def run(self) -> None:
        """
        Run the sweep loop continuously.

        Runs until cancelled. Backs off exponentially if a whole sweep fails.
        """
        self._running = True
        backoff = DEFAULT_ERROR_BACKOFF_SECONDS

        logger.info("Expiry sweeper started (interval=%.1f seconds)", self.interval_seconds)

        while self._running:
            try:
                await self.run_once()
                backoff = DEFAULT_ERROR_BACKOFF_SECONDS
                await asyncio.sleep(self.interval_seconds)

            except asyncio.CancelledError:
                logger.info("Expiry sweeper cancelled")
                break

            except Exception as e:
                logger.error("Expiry sweep error, retrying in %.0fs: %s", backoff, e)
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, MAX_ERROR_BACKOFF_SECONDS)

        self._running = False
        logger.info("Expiry sweeper stopped")

    def start(self) -> asyncio.Task:
        """
        Start the sweeper as a background task.

        Returns:
            The asyncio Task running the sweep loop
        """
        if self._task is not None and not self._task.done():
            raise RuntimeError("Expiry sweeper already running")

        self._task = asyncio.create_task(self.run(), name="auction-expiry-sweeper")
        return self._task

    async def stop(self, timeout: float = 5.0) -> None:
        """
        Stop the sweeper gracefully.

        Args:
            timeout: How long to wait for the task to finish
        """
        self._running = False
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await asyncio.wait_for(self._task, timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("Expiry sweeper did not stop within timeout")
            except asyncio.CancelledError:
                pass
        self._task = None
