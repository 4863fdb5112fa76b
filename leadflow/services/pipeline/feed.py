"""Row-level change feed consumed by the realtime bridge."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, Final, Protocol
from uuid import uuid4

from pydantic import BaseModel

from leadflow.observability.metrics import metrics

logger = logging.getLogger(__name__)

INSERT: Final = "insert"
UPDATE: Final = "update"
DELETE: Final = "delete"

LEADS_TABLE: Final = "leads"
INTERACTIONS_TABLE: Final = "interactions"


@dataclass(frozen=True)
class ChangeEvent:
    """One pushed row change. Rows are plain JSON-like dicts and may be partial."""

    table: str
    kind: str
    new: dict[str, Any] | None = None
    old: dict[str, Any] | None = None


ChangeHandler = Callable[[ChangeEvent], Awaitable[None]]


@dataclass
class FeedSubscription:
    tables: frozenset[str]
    handler: ChangeHandler
    id: str = field(default_factory=lambda: uuid4().hex)


class ChangeFeed(Protocol):
    """Transport contract: deliver events for the subscribed tables, one at a time."""

    def publish(self, event: ChangeEvent) -> None:
        ...

    async def subscribe(
        self, tables: Iterable[str], handler: ChangeHandler
    ) -> FeedSubscription:
        ...

    async def unsubscribe(self, subscription: FeedSubscription) -> None:
        ...


class InMemoryChangeFeed(ChangeFeed):
    """Queue-backed feed used by the in-memory store and tests.

    A single consumer task delivers events sequentially, so handlers never run
    concurrently with each other; their own awaits are the only interleaving.
    """

    def __init__(self) -> None:
        self._subscriptions: dict[str, FeedSubscription] = {}
        self._queue: asyncio.Queue[ChangeEvent] | None = None
        self._consumer: asyncio.Task[None] | None = None

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def publish(self, event: ChangeEvent) -> None:
        """Enqueue an event; dropped when nobody is listening."""
        if not self._subscriptions or self._queue is None:
            return
        self._queue.put_nowait(event)
        metrics.increment(
            "realtime.feed.published", tags={"table": event.table, "kind": event.kind}
        )

    async def subscribe(
        self, tables: Iterable[str], handler: ChangeHandler
    ) -> FeedSubscription:
        subscription = FeedSubscription(tables=frozenset(tables), handler=handler)
        self._subscriptions[subscription.id] = subscription
        if self._queue is None:
            self._queue = asyncio.Queue()
        if self._consumer is None or self._consumer.done():
            self._consumer = asyncio.get_running_loop().create_task(self._consume())
        logger.info(
            "realtime.feed.subscribed",
            extra={"subscription_id": subscription.id, "tables": sorted(subscription.tables)},
        )
        return subscription

    async def unsubscribe(self, subscription: FeedSubscription) -> None:
        self._subscriptions.pop(subscription.id, None)
        logger.info("realtime.feed.unsubscribed", extra={"subscription_id": subscription.id})
        if not self._subscriptions:
            await self.close()

    async def drain(self) -> None:
        """Wait until every queued event has been handed to its handlers."""
        if self._queue is not None:
            await self._queue.join()

    async def close(self) -> None:
        consumer, self._consumer = self._consumer, None
        queue, self._queue = self._queue, None
        if consumer is not None and not consumer.done():
            consumer.cancel()
            if consumer is asyncio.current_task():
                return
            try:
                await consumer
            except asyncio.CancelledError:
                pass
        if queue is not None:
            while not queue.empty():
                queue.get_nowait()
                queue.task_done()

    async def _consume(self) -> None:
        queue = self._queue
        if queue is None:
            return
        while True:
            event = await queue.get()
            try:
                for subscription in list(self._subscriptions.values()):
                    if event.table not in subscription.tables:
                        continue
                    try:
                        await subscription.handler(event)
                    except Exception:
                        logger.exception(
                            "realtime.feed.handler_failed",
                            extra={"table": event.table, "kind": event.kind},
                        )
                        metrics.increment(
                            "realtime.feed.handler_failed",
                            tags={"table": event.table, "kind": event.kind},
                        )
            finally:
                queue.task_done()


def row_event(
    table: str,
    kind: str,
    *,
    new: BaseModel | None = None,
    old: BaseModel | None = None,
) -> ChangeEvent:
    """Build the event a committed row write produces; joined fields are not row data."""
    return ChangeEvent(
        table=table,
        kind=kind,
        new=new.model_dump(mode="json", exclude={"lead_name"}) if new is not None else None,
        old=old.model_dump(mode="json", exclude={"lead_name"}) if old is not None else None,
    )


_FEED_INSTANCE: InMemoryChangeFeed | None = None


def get_change_feed() -> InMemoryChangeFeed:
    """Process-wide feed shared by the configured store and the realtime bridge."""
    global _FEED_INSTANCE  # noqa: PLW0603
    if _FEED_INSTANCE is None:
        _FEED_INSTANCE = InMemoryChangeFeed()
    return _FEED_INSTANCE
