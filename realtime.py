"""In-process change feed.

Every committed insert/update/delete on a watched table is published as a
``ChangeEvent``. Dashboards subscribe per table and treat each event as "your
lists are stale", so events carry only the table, the operation and the row id.

Writers run in FastAPI's worker threads while subscribers live on the event
loop, so delivery goes through ``call_soon_threadsafe``.
"""

import asyncio
import logging
import threading
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Annotated, Optional

from fastapi import Depends

logger = logging.getLogger(__name__)

TABLES = ("donations", "profiles", "contact_messages")

INSERT = "INSERT"
UPDATE = "UPDATE"
DELETE = "DELETE"

_CLOSED = object()


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    op: str
    record_id: Optional[int] = None


class Subscription:
    """A cancellable stream of change events for a fixed set of tables.

    Iterating is lazy and can be restarted: breaking out of one ``async for``
    and starting another picks up where the first left off. After ``close()``
    every iteration ends.
    """

    def __init__(self, feed: "ChangeFeed", tables: frozenset, loop: asyncio.AbstractEventLoop):
        self.feed = feed
        self.tables = tables
        self.closed = False
        self._loop = loop
        self._queue: asyncio.Queue = asyncio.Queue()

    def _deliver(self, item) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is self._loop:
            self._queue.put_nowait(item)
            return
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, item)
        except RuntimeError:
            # subscriber's loop is gone
            self.closed = True
            self.feed._discard(self)

    async def events(self) -> AsyncIterator[ChangeEvent]:
        while not (self.closed and self._queue.empty()):
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item

    def __aiter__(self) -> AsyncIterator[ChangeEvent]:
        return self.events()

    def drain(self) -> int:
        """Drop events already queued and return how many there were."""
        dropped = 0
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is _CLOSED:
                self._queue.put_nowait(item)
                break
            dropped += 1
        return dropped

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.feed._discard(self)
        self._deliver(_CLOSED)

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()


class ChangeFeed:
    def __init__(self) -> None:
        self._subscribers: set[Subscription] = set()
        self._lock = threading.Lock()

    def subscribe(self, *tables: str) -> Subscription:
        """Subscribe to ``tables`` (all watched tables if none are given).

        Must be called from a running event loop.
        """
        unknown = set(tables) - set(TABLES)
        if unknown:
            raise ValueError(f"Unknown table(s): {', '.join(sorted(unknown))}")

        subscription = Subscription(
            self, frozenset(tables or TABLES), asyncio.get_running_loop()
        )
        with self._lock:
            self._subscribers.add(subscription)
        logger.debug("subscribed to %s", sorted(subscription.tables))
        return subscription

    def publish(self, table: str, op: str, record_id: Optional[int] = None) -> ChangeEvent:
        event = ChangeEvent(table=table, op=op, record_id=record_id)
        with self._lock:
            targets = [s for s in self._subscribers if table in s.tables]
        for subscription in targets:
            subscription._deliver(event)
        logger.debug("published %s to %d subscriber(s)", event, len(targets))
        return event

    def _discard(self, subscription: Subscription) -> None:
        with self._lock:
            self._subscribers.discard(subscription)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)


changes = ChangeFeed()


def get_feed() -> ChangeFeed:
    return changes


FeedDep = Annotated[ChangeFeed, Depends(get_feed)]
