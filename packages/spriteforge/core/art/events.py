"""Lifecycle event publish/subscribe.

An EventBus belongs to one ArtGenerationService instance. Subscribers either
register a synchronous callback (``subscribe``) or pull events from a bounded
per-subscriber channel (``channel``).
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
import logging
from typing import Any

from spriteforge.core.art.models import GenerationJob, GenerationResult

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Lifecycle event names (wire format)."""

    JOB_QUEUED = "job:queued"
    JOB_STARTED = "job:started"
    JOB_COMPLETE = "job:complete"
    JOB_FAILED = "job:failed"
    CACHE_HIT = "cache:hit"
    CACHE_MISS = "cache:miss"


@dataclass(frozen=True)
class LifecycleEvent:
    """One lifecycle notification.

    ``job`` is a snapshot taken at publish time, never the live queue record.
    """

    type: EventType
    job: GenerationJob | None = None
    result: GenerationResult | None = None
    error: str | None = None
    cache_key: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def session_id(self) -> str | None:
        if self.job is None:
            return None
        return self.job.request.session_id

    def as_dict(self) -> dict[str, Any]:
        """Serialize the event for logging or forwarding to a client."""
        return {
            "type": self.type.value,
            "job_id": self.job.id if self.job else None,
            "status": self.job.status.value if self.job else None,
            "attempts": self.job.attempts if self.job else None,
            "session_id": self.session_id,
            "result": self.result.model_dump(mode="json") if self.result else None,
            "error": self.error,
            "cache_key": self.cache_key,
            "timestamp": self.timestamp.isoformat(),
        }


EventHandler = Callable[[LifecycleEvent], None]


class Subscription:
    """Handle for a registered listener. Closing it removes the listener."""

    def __init__(self, bus: EventBus, handler: EventHandler, types: frozenset[EventType]):
        self._bus = bus
        self.handler = handler
        self.types = types
        self.closed = False

    def matches(self, event: LifecycleEvent) -> bool:
        return not self.types or event.type in self.types

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._bus._remove(self)

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class EventChannel:
    """Bounded async-iterable queue of events for one subscriber.

    When the channel is full the incoming event is dropped for this channel only.

    Example:
        async with bus.channel(EventType.JOB_COMPLETE) as events:
            async for event in events:
                ...
    """

    def __init__(self, bus: EventBus, types: frozenset[EventType], maxsize: int):
        self._queue: asyncio.Queue[LifecycleEvent | None] = asyncio.Queue(maxsize=maxsize)
        self._subscription = bus.subscribe(self._offer, *types)
        self.dropped = 0

    def _offer(self, event: LifecycleEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("Event channel full, dropping %s event", event.type.value)

    async def get(self) -> LifecycleEvent:
        """Wait for the next event.

        Raises:
            StopAsyncIteration: If the channel has been closed.
        """
        event = await self._queue.get()
        if event is None:
            raise StopAsyncIteration
        return event

    def get_nowait(self) -> LifecycleEvent | None:
        """Next buffered event, or None if the channel is empty."""
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    def qsize(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        """Stop receiving events and wake any pending iterator."""
        if self._subscription.closed:
            return
        self._subscription.close()
        # Make room for the sentinel so a blocked consumer always wakes.
        while self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(None)

    def __aiter__(self) -> AsyncIterator[LifecycleEvent]:
        return self

    async def __anext__(self) -> LifecycleEvent:
        return await self.get()

    async def __aenter__(self) -> EventChannel:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()


class EventBus:
    """Typed publish/subscribe hub for lifecycle events.

    Handlers run synchronously inside ``publish`` in registration order. A
    handler that raises is logged and does not affect other handlers.
    """

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []

    def subscribe(self, handler: EventHandler, *types: EventType) -> Subscription:
        """Register a handler for the given event types (all types if none given)."""
        subscription = Subscription(self, handler, frozenset(types))
        self._subscriptions.append(subscription)
        return subscription

    def channel(self, *types: EventType, maxsize: int = 100) -> EventChannel:
        """Open a bounded channel receiving the given event types."""
        return EventChannel(self, frozenset(types), maxsize)

    def _remove(self, subscription: Subscription) -> None:
        try:
            self._subscriptions.remove(subscription)
        except ValueError:
            pass

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def publish(self, event: LifecycleEvent) -> None:
        """Deliver an event to every matching subscriber."""
        for subscription in list(self._subscriptions):
            if not subscription.matches(event):
                continue
            try:
                subscription.handler(event)
            except Exception:
                logger.exception("Event handler failed for %s", event.type.value)
