"""Translate realtime change notices into message store mutations."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from .backend import MESSAGES_TABLE, REACTIONS_TABLE, ChangeNotice, ChatContext, Subscription
from .errors import ChatError, NotFoundError
from .models import Message, RawReaction
from .store import MessageTreeStore

logger = logging.getLogger(__name__)


class EventIngestor:
    """Keep a :class:`MessageTreeStore` in sync with the change feed.

    One message subscription filtered by channel and one unfiltered reaction
    subscription are held while attached. Every notice is resolved against
    the row store before it is applied, so partial payloads are never
    trusted. Results that arrive after the ingestor moved on to another
    channel are discarded using a generation counter.
    """

    def __init__(
        self,
        context: ChatContext,
        store: MessageTreeStore,
        on_change: Callable[[], None] | None = None,
    ) -> None:
        self._context = context
        self._store = store
        self._on_change = on_change
        self._subscriptions: list[Subscription] = []
        self._generation = 0
        self._ready = asyncio.Event()
        self._channel_id: str | None = None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def attached(self) -> bool:
        return bool(self._subscriptions)

    async def attach(self, channel_id: str) -> int:
        """Subscribe for ``channel_id``; events wait until :meth:`mark_ready`."""

        await self.detach()
        self._generation += 1
        self._ready = asyncio.Event()
        self._channel_id = channel_id
        feed = self._context.feed
        self._subscriptions = [
            await feed.subscribe(MESSAGES_TABLE, self._on_message, filter={"channel_id": channel_id}),
            await feed.subscribe(REACTIONS_TABLE, self._on_reaction),
        ]
        return self._generation

    def mark_ready(self) -> None:
        self._ready.set()

    async def detach(self) -> None:
        self._generation += 1
        self._channel_id = None
        subscriptions, self._subscriptions = self._subscriptions, []
        # Release handlers parked on the old ready flag; the generation check drops them.
        self._ready.set()
        for subscription in subscriptions:
            try:
                await subscription.close()
            except ChatError:
                logger.warning("Failed to close change subscription", exc_info=True)

    def _notify(self, changed: bool) -> None:
        if changed and self._on_change is not None:
            self._on_change()

    async def _wait_current(self) -> int | None:
        generation = self._generation
        await self._ready.wait()
        return generation if generation == self._generation else None

    async def _on_message(self, notice: ChangeNotice) -> None:
        generation = await self._wait_current()
        if generation is None:
            return

        if notice.event == "DELETE":
            message_id = (notice.old or {}).get("id")
            if message_id is not None:
                self._notify(self._store.apply_delete(str(message_id)))
            return

        message_id = (notice.new or {}).get("id")
        if message_id is None:
            return
        try:
            record = await self._context.rows.fetch_message(str(message_id))
        except NotFoundError:
            logger.debug("Message %s vanished before it could be fetched", message_id)
            return
        except ChatError:
            logger.warning("Failed to refresh message %s", message_id, exc_info=True)
            return
        if generation != self._generation:
            logger.debug("Discarding stale fetch of message %s", message_id)
            return

        message = Message.from_record(record)
        if message.channel_id != self._channel_id:
            return
        if notice.event == "INSERT":
            self._notify(self._store.apply_insert(message))
        elif notice.event == "UPDATE":
            self._notify(self._store.apply_update(message))

    async def _on_reaction(self, notice: ChangeNotice) -> None:
        generation = await self._wait_current()
        if generation is None:
            return

        row = notice.new or notice.old or {}
        message_id = row.get("message_id")
        if message_id is None or str(message_id) not in self._store:
            return
        message_id = str(message_id)
        try:
            records = await self._context.rows.fetch_reactions(message_id)
        except ChatError:
            logger.warning("Failed to refresh reactions of message %s", message_id, exc_info=True)
            return
        if generation != self._generation:
            logger.debug("Discarding stale reactions of message %s", message_id)
            return
        rows = [RawReaction.from_record(record) for record in records]
        self._notify(self._store.apply_reaction_change(message_id, rows))
