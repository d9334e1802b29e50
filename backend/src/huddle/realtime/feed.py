"""Row-level change feed fanning committed changes out to subscribers."""

from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Mapping

from app.config import get_settings
from app.monitoring.metrics import change_events_total, change_feed_subscribers

from .transport import ChangeRelay, RelayConfig, RelayUnavailableError


logger = logging.getLogger(__name__)

MESSAGES_TABLE = "messages"
REACTIONS_TABLE = "reactions"


class ChangeEvent(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True, slots=True)
class RowChange:
    """A committed change to one row: ``new`` is absent for deletes, ``old`` for inserts."""

    table: str
    event: ChangeEvent
    new: dict[str, Any] | None = None
    old: dict[str, Any] | None = None

    @property
    def row(self) -> dict[str, Any]:
        """The row image filters are evaluated against."""

        if self.event is ChangeEvent.DELETE:
            return self.old or {}
        return self.new or {}

    def to_payload(self) -> dict[str, Any]:
        return {"table": self.table, "event": self.event.value, "new": self.new, "old": self.old}

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "RowChange":
        return cls(
            table=str(payload["table"]),
            event=ChangeEvent(payload["event"]),
            new=payload.get("new"),
            old=payload.get("old"),
        )


ChangeHandler = Callable[[RowChange], Awaitable[None]]


@dataclass(eq=False)
class FeedSubscription:
    """Handle for a single ``subscribe`` call; ``close`` detaches it."""

    feed: "ChangeFeed"
    table: str
    handler: ChangeHandler
    filter: dict[str, str] = field(default_factory=dict)
    events: frozenset[ChangeEvent] = frozenset(ChangeEvent)
    closed: bool = False

    def matches(self, change: RowChange) -> bool:
        if change.table != self.table or change.event not in self.events:
            return False
        row = change.row
        return all(str(row.get(column)) == value for column, value in self.filter.items())

    async def close(self) -> None:
        self.feed.unsubscribe(self)


class ChangeFeed:
    """Deliver row changes to matching subscribers on this node.

    Published changes are also handed to the optional relay so other nodes
    can deliver them to their own subscribers. Relay failures never prevent
    local delivery.
    """

    def __init__(self, relay: ChangeRelay | None = None) -> None:
        self._relay = relay
        self._subscriptions: dict[str, list[FeedSubscription]] = defaultdict(list)

    def subscribe(
        self,
        table: str,
        handler: ChangeHandler,
        *,
        filter: Mapping[str, Any] | None = None,
        events: Iterable[ChangeEvent | str] | None = None,
    ) -> FeedSubscription:
        selected = frozenset(ChangeEvent(event) for event in events) if events else frozenset(ChangeEvent)
        subscription = FeedSubscription(
            feed=self,
            table=table,
            handler=handler,
            filter={column: str(value) for column, value in (filter or {}).items()},
            events=selected,
        )
        self._subscriptions[table].append(subscription)
        change_feed_subscribers.labels(table).inc()
        return subscription

    def unsubscribe(self, subscription: FeedSubscription) -> None:
        if subscription.closed:
            return
        subscription.closed = True
        bucket = self._subscriptions.get(subscription.table, [])
        if subscription in bucket:
            bucket.remove(subscription)
            change_feed_subscribers.labels(subscription.table).dec()

    def subscriber_count(self, table: str) -> int:
        return len(self._subscriptions.get(table, []))

    async def publish(self, change: RowChange) -> None:
        change_events_total.labels(change.table, change.event.value).inc()
        await self.dispatch(change)
        if self._relay is None or not self._relay.enabled:
            return
        try:
            await self._relay.publish(change.to_payload())
        except RelayUnavailableError:
            logger.warning(
                "Failed to relay %s change on %s; remote nodes will miss it",
                change.event.value,
                change.table,
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )

    async def dispatch(self, change: RowChange) -> None:
        for subscription in list(self._subscriptions.get(change.table, [])):
            if subscription.closed or not subscription.matches(change):
                continue
            try:
                await subscription.handler(change)
            except Exception:
                logger.exception("Change feed subscriber failed for %s", change.table)

    async def _receive_remote(self, payload: dict[str, Any]) -> None:
        try:
            change = RowChange.from_payload(payload)
        except (KeyError, ValueError):
            logger.warning("Discarded malformed relayed change")
            return
        await self.dispatch(change)

    async def start(self) -> None:
        if self._relay is None or not self._relay.enabled:
            return
        try:
            await self._relay.start(self._receive_remote)
        except RelayUnavailableError:
            logger.warning(
                "Change relay unavailable during startup; continuing without cross-node sync",
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )

    async def stop(self) -> None:
        if self._relay is not None:
            await self._relay.stop()


# ---------------------------------------------------------------------------
# Module level lifecycle helpers
# ---------------------------------------------------------------------------


settings = get_settings()

_node_id = settings.realtime_node_id or uuid.uuid4().hex

change_feed = ChangeFeed(
    ChangeRelay(
        RelayConfig(
            redis_url=settings.realtime_redis_url,
            prefix=settings.realtime_namespace,
            node_id=_node_id,
        )
    )
)


async def startup_realtime() -> None:
    await change_feed.start()


async def shutdown_realtime() -> None:
    await change_feed.stop()


def get_change_feed() -> ChangeFeed:
    return change_feed
