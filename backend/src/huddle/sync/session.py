"""One mounted channel view: store, ingestor and commands wired together."""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Mapping

from .backend import ChatContext
from .commands import OutboundCommands, SendResult
from .ingestor import EventIngestor
from .models import Channel, Message, Thread, UploadFile, parse_threads
from .store import MessageTreeStore

logger = logging.getLogger(__name__)


class ChannelView:
    """Show one channel or direct conversation at a time.

    ``open`` fully replaces whatever was shown before. If a newer ``open``
    starts while an older one is still loading, the older one returns
    ``None`` and leaves the store alone.
    """

    def __init__(self, context: ChatContext, on_change: Callable[[], None] | None = None) -> None:
        self.context = context
        self.store = MessageTreeStore()
        self.commands = OutboundCommands(context)
        self._on_change = on_change
        self.ingestor = EventIngestor(context, self.store, on_change=self._changed)

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change()

    @property
    def channel(self) -> Channel | None:
        return self.store.channel

    async def open(self, channel_id: str | None = None, *, peer_user_id: str | None = None) -> Channel | None:
        if (channel_id is None) == (peer_user_id is None):
            raise ValueError("Pass exactly one of channel_id or peer_user_id")

        await self.ingestor.detach()
        self.store.reset()
        self._changed()
        token = self.ingestor.generation

        rows = self.context.rows
        if peer_user_id is not None:
            record = await rows.resolve_direct_channel(peer_user_id)
        else:
            record = await rows.get_channel(channel_id)
        if token != self.ingestor.generation:
            return None
        channel = Channel.from_record(record)

        token = await self.ingestor.attach(channel.id)
        try:
            records = await rows.list_channel_messages(channel.id)
        except BaseException:
            # detach() releases handlers parked on the ready flag.
            if token == self.ingestor.generation:
                await self.ingestor.detach()
            raise
        if token != self.ingestor.generation:
            logger.debug("Discarding listing of channel %s after a switch", channel.id)
            return None

        self.store.load(channel, parse_threads(records))
        self.ingestor.mark_ready()
        self._changed()
        return channel

    async def close(self) -> None:
        await self.ingestor.detach()
        self.store.reset()

    def threads(self) -> list[Thread]:
        return self.store.threads()

    def _require_channel(self) -> Channel:
        if self.store.channel is None:
            raise RuntimeError("No channel is open")
        return self.store.channel

    async def send(
        self,
        content: str,
        files: Iterable[UploadFile] = (),
        reply_to: Message | str | None = None,
    ) -> SendResult:
        channel = self._require_channel()
        parent_id = reply_to.id if isinstance(reply_to, Message) else reply_to
        return await self.commands.send_message(channel.id, content, files, reply_to=parent_id)

    async def react(self, message_id: str, emoji: str) -> Mapping[str, Any]:
        return await self.commands.toggle_reaction(message_id, emoji)

    async def edit(self, message: Message, content: str) -> Message:
        return await self.commands.edit_message(message, content)

    async def delete(self, message: Message) -> None:
        await self.commands.delete_message(message)

    async def search(self, query: str) -> Mapping[str, Any]:
        """Search overlay; never touches the live store."""

        return await self.context.embeddings.search(query)
