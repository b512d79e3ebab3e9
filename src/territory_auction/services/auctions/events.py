"""
Auction event sink.

Fire-and-forget publication of named events. Synchronous handlers run inline;
coroutine handlers are scheduled as tasks the bus keeps track of, so a slow or
failing subscriber never blocks or breaks the engine. Handler failures are
logged, never raised to the publisher.
"""

from __future__ import annotations

import asyncio
import inspect
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Union

from ...core.formatters import get_utc_now
from ...core.logging import get_logger

logger = get_logger(__name__)


class AuctionEvent(str, Enum):
    AUCTION_STARTED = "auction_started"
    AUCTION_UPDATED = "auction_updated"
    AUCTION_ENDED = "auction_ended"
    TERRITORY_CONQUERED = "territory_conquered"
    BONUS_APPLIED = "bonus_applied"


@dataclass(frozen=True)
class Event:
    name: AuctionEvent
    payload: dict[str, Any]
    published_at: datetime = field(default_factory=get_utc_now)


EventHandler = Callable[[Event], Union[None, Awaitable[None]]]


class EventBus:
    """In-process publish/subscribe for auction events."""

    def __init__(self) -> None:
        self._handlers: dict[AuctionEvent, list[EventHandler]] = defaultdict(list)
        self._tasks: set[asyncio.Task] = set()

    def subscribe(self, name: AuctionEvent, handler: EventHandler) -> Callable[[], None]:
        """
        Register a handler for one event.

        Returns:
            Callable that removes the subscription
        """
        self._handlers[name].append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers[name]:
                self._handlers[name].remove(handler)

        return unsubscribe

    def publish(self, name: AuctionEvent, payload: dict[str, Any]) -> Event:
        """Deliver an event to every subscriber without waiting on them."""
        event = Event(name=name, payload=payload)
        for handler in list(self._handlers.get(name, ())):
            try:
                result = handler(event)
            except Exception as e:
                logger.error(
                    "Event handler failed for %s: %s",
                    name.value,
                    e,
                    exc_info=True,
                    extra={"event": name.value},
                )
                continue
            if inspect.isawaitable(result):
                self._track(name, result)
        return event

    def _track(self, name: AuctionEvent, awaitable: Awaitable[None]) -> None:
        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)

        def _done(t: asyncio.Task) -> None:
            self._tasks.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                logger.error(
                    "Async event handler failed for %s: %s",
                    name.value,
                    exc,
                    extra={"event": name.value},
                )

        task.add_done_callback(_done)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every scheduled async handler to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class RecordingEventSink:
    """Subscribes to every event and keeps them in order."""

    def __init__(self, bus: EventBus) -> None:
        self.events: list[Event] = []
        for name in AuctionEvent:
            bus.subscribe(name, self.events.append)

    def named(self, name: AuctionEvent) -> list[Event]:
        return [e for e in self.events if e.name == name]
