"""
In-process change feed: per-table insert/update/delete notifications.
"""

import asyncio
import logging
from collections import defaultdict
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class ChangeType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


ALL_EVENTS = frozenset(ChangeType)


@dataclass(frozen=True)
class ChangeEvent:
    """A committed row change on one table."""

    table: str
    event_type: ChangeType
    new: dict[str, Any] | None = None
    old: dict[str, Any] | None = None


@dataclass(eq=False)
class Subscription:
    """Handle returned by ChangeFeed.subscribe; iterate it to receive events."""

    table: str
    events: frozenset[ChangeType]
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)
    closed: bool = False

    def wants(self, event: ChangeEvent) -> bool:
        return not self.closed and event.table == self.table and event.event_type in self.events

    async def __aiter__(self) -> AsyncIterator[ChangeEvent]:
        while True:
            event = await self.queue.get()
            if event is None:
                return
            yield event


class ChangeFeed:
    """Fan committed store changes out to subscribers, keyed by table."""

    def __init__(self, max_queue_size: int = 1000):
        self.max_queue_size = max_queue_size
        # table -> subscriptions
        self._subscriptions: dict[str, list[Subscription]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def subscribe(self, table: str, events=ALL_EVENTS) -> Subscription:
        """Register interest in a table's changes."""
        subscription = Subscription(
            table=table,
            events=frozenset(ChangeType(e) for e in events),
            queue=asyncio.Queue(maxsize=self.max_queue_size),
        )
        async with self._lock:
            self._subscriptions[table].append(subscription)
        logger.info(f"Subscribed to {table} changes ({self.subscriber_count(table)} active)")
        return subscription

    async def unsubscribe(self, subscription: Subscription) -> None:
        """Stop delivering events and end the subscription's iterator."""
        async with self._lock:
            subscribers = self._subscriptions.get(subscription.table, [])
            if subscription in subscribers:
                subscribers.remove(subscription)
            if not subscribers:
                self._subscriptions.pop(subscription.table, None)
        if not subscription.closed:
            subscription.closed = True
            if not self._offer(subscription, None):
                # Full queue: discard pending events so the iterator can end
                while not subscription.queue.empty():
                    subscription.queue.get_nowait()
                self._offer(subscription, None)
        logger.info(f"Unsubscribed from {subscription.table} changes")

    async def publish(self, event: ChangeEvent) -> None:
        """Deliver an event to every matching subscriber."""
        async with self._lock:
            subscribers = list(self._subscriptions.get(event.table, []))

        dropped = []
        for subscription in subscribers:
            if not subscription.wants(event):
                continue
            if not self._offer(subscription, event):
                logger.warning(f"Dropping slow subscriber on {event.table}: queue full")
                dropped.append(subscription)

        for subscription in dropped:
            await self.unsubscribe(subscription)

    @staticmethod
    def _offer(subscription: Subscription, item: ChangeEvent | None) -> bool:
        try:
            subscription.queue.put_nowait(item)
            return True
        except asyncio.QueueFull:
            return False

    def subscriber_count(self, table: str) -> int:
        """Get number of active subscriptions for a table."""
        return len(self._subscriptions.get(table, []))
