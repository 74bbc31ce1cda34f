"""
Event bus for coin activity.

Provides in-memory and async event buses with glob-style pattern matching
so notifiers and achievement checkers can follow ledger activity without
the engine knowing about them.
"""

from __future__ import annotations

import asyncio
import fnmatch
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

logger = logging.getLogger(__name__)


# Standard event types
EVENT_LEDGER_APPENDED = "ledger.appended"
EVENT_LEDGER_REJECTED = "ledger.rejected"
EVENT_REWARD_RECORDED = "reward.recorded"
EVENT_DECAY_APPLIED = "decay.applied"
EVENT_DECAY_CYCLE_COMPLETED = "decay.cycle_completed"
EVENT_RULE_CHANGED = "rule.changed"

ALL_EVENT_TYPES = [
    EVENT_LEDGER_APPENDED,
    EVENT_LEDGER_REJECTED,
    EVENT_REWARD_RECORDED,
    EVENT_DECAY_APPLIED,
    EVENT_DECAY_CYCLE_COMPLETED,
    EVENT_RULE_CHANGED,
]


@dataclass
class Event:
    """An event emitted by the coin engine."""

    event_type: str
    source: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    event_id: str = field(default_factory=lambda: f"evt-{time.monotonic_ns()}")


EventHandler = Callable[[Event], Any]


class EventBus(ABC):
    """Base class for event buses; holds the glob-pattern subscriptions."""

    def __init__(self) -> None:
        self._subscriptions: list[tuple[str, EventHandler]] = []

    @abstractmethod
    def emit(self, event: Event) -> None:
        """Deliver an event to every matching subscriber.

        Subscriber errors are logged and never reach the caller.
        """

    def subscribe(self, pattern: str, handler: EventHandler) -> None:
        """Subscribe a handler to events matching a glob-style pattern.

        Args:
            pattern: Glob-style pattern (e.g., ``decay.*``, ``*``).
            handler: Callable invoked with the matching Event.
        """
        self._subscriptions.append((pattern, handler))

    def unsubscribe(self, handler: EventHandler) -> None:
        """Remove a handler from all subscriptions."""
        self._subscriptions = [
            (p, h) for p, h in self._subscriptions if h is not handler
        ]

    def _handlers_for(self, event: Event) -> list[EventHandler]:
        return [h for p, h in self._subscriptions if fnmatch.fnmatch(event.event_type, p)]


class InMemoryEventBus(EventBus):
    """Delivers events inline, in subscription order."""

    def emit(self, event: Event) -> None:
        for handler in self._handlers_for(event):
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler failed for %s", event.event_type)


class AsyncEventBus(EventBus):
    """Queue-backed bus drained by a background consumer task.

    Ledger writes only enqueue, so a slow notifier never holds one up.
    Used by ``GrowthBank`` when ``event_bus: async`` is configured.
    """

    def __init__(self, maxsize: int = 10000) -> None:
        super().__init__()
        self._queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=maxsize)
        self._consumer: asyncio.Task[None] | None = None
        self.dropped = 0

    @property
    def running(self) -> bool:
        return self._consumer is not None

    def emit(self, event: Event) -> None:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("Event queue full, dropping %s", event.event_type)

    async def start(self) -> None:
        if self._consumer is None:
            self._consumer = asyncio.create_task(self._consume())

    async def stop(self) -> None:
        """Cancel the consumer, then deliver whatever is still queued."""
        consumer, self._consumer = self._consumer, None
        if consumer is not None:
            consumer.cancel()
            try:
                await consumer
            except asyncio.CancelledError:
                pass
        while not self._queue.empty():
            await self._deliver(self._queue.get_nowait())

    async def _deliver(self, event: Event) -> None:
        for handler in self._handlers_for(event):
            try:
                result = handler(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("Event handler failed for %s", event.event_type)

    async def _consume(self) -> None:
        while True:
            event = await self._queue.get()
            await self._deliver(event)
