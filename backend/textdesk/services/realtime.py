"""In-process change feed for live conversation and message updates.

Services publish a ChangeEvent after committing a row change. Consumers
register a callback with optional equality filters (e.g.
``{"conversation_id": ...}``) and release it with ``unsubscribe()``.
Callbacks run on the publisher's thread; a failing callback is logged and
never affects the publisher or other subscribers.
"""

import asyncio
import logging
import threading
import uuid
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class ChangeEvent:
    table: str
    event: str  # "INSERT" | "UPDATE"
    record: dict[str, Any]
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def matches(self, filters: dict[str, Any] | None) -> bool:
        if not filters:
            return True
        return all(str(self.record.get(key)) == str(value) for key, value in filters.items())


@dataclass
class Subscription:
    id: str
    table: str
    callback: Callable[[ChangeEvent], None]
    filters: dict[str, Any] | None
    feed: "ChangeFeed"

    def unsubscribe(self) -> None:
        self.feed.remove(self.id)


class ChangeFeed:
    """Thread-safe registry of change subscriptions."""

    def __init__(self) -> None:
        self._subscriptions: dict[str, Subscription] = {}
        self._lock = threading.Lock()

    def subscribe(
        self,
        table: str,
        callback: Callable[[ChangeEvent], None],
        filters: dict[str, Any] | None = None,
    ) -> Subscription:
        subscription = Subscription(
            id=uuid.uuid4().hex,
            table=table,
            callback=callback,
            filters=filters,
            feed=self,
        )
        with self._lock:
            self._subscriptions[subscription.id] = subscription
        return subscription

    def remove(self, subscription_id: str) -> None:
        with self._lock:
            self._subscriptions.pop(subscription_id, None)

    def size(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def publish(self, event: ChangeEvent) -> int:
        """Deliver an event to every matching subscriber. Returns the delivery count."""
        with self._lock:
            targets = [s for s in self._subscriptions.values() if s.table == event.table]

        delivered = 0
        for subscription in targets:
            if not event.matches(subscription.filters):
                continue
            try:
                subscription.callback(event)
                delivered += 1
            except Exception:
                logger.exception(
                    "Change feed subscriber %s failed on %s %s",
                    subscription.id,
                    event.event,
                    event.table,
                )
        return delivered

    async def iter_events(
        self,
        table: str,
        filters: dict[str, Any] | None = None,
        max_queue: int = 100,
    ) -> AsyncIterator[ChangeEvent]:
        """Async stream of matching events; the subscription is released when the consumer stops."""
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[ChangeEvent] = asyncio.Queue(maxsize=max_queue)

        def _put(event: ChangeEvent) -> None:
            if queue.full():
                logger.warning("Change feed stream for %s is full, dropping event", table)
                return
            queue.put_nowait(event)

        subscription = self.subscribe(table, lambda event: loop.call_soon_threadsafe(_put, event), filters)
        try:
            while True:
                yield await queue.get()
        finally:
            subscription.unsubscribe()


def row_to_record(row) -> dict[str, Any]:
    """Column snapshot of an ORM row for a change event."""
    return {column.key: getattr(row, column.key) for column in row.__table__.columns}


def publish_change(table: str, event: str, row) -> None:
    change_feed.publish(ChangeEvent(table=table, event=event, record=row_to_record(row)))


# Singleton
change_feed = ChangeFeed()
