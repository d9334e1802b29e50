"""In-memory view of one channel's messages, one reply level deep."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Iterable, Iterator

from .models import Channel, Message, RawReaction, Thread
from .reactions import aggregate_reactions

logger = logging.getLogger(__name__)


class MessageTreeStore:
    """Arena of messages keyed by id with ordered top-level and reply indexes.

    Every ``apply_*`` call is idempotent: replaying an event leaves the
    store unchanged. Each returns ``True`` when the visible tree changed.
    """

    def __init__(self) -> None:
        self.channel: Channel | None = None
        self._messages: dict[str, Message] = {}
        self._top_level: list[str] = []
        self._replies: dict[str, list[str]] = {}

    def reset(self, channel: Channel | None = None) -> None:
        self.channel = channel
        self._messages = {}
        self._top_level = []
        self._replies = {}

    def load(self, channel: Channel, threads: Iterable[tuple[Message, Iterable[Message]]]) -> None:
        """Replace all state with a freshly fetched channel listing."""

        self.reset(channel)
        ordered = sorted(threads, key=lambda thread: thread[0].created_at)
        for message, replies in ordered:
            if message.is_reply:
                continue
            self.apply_insert(message)
            for reply in replies:
                self.apply_insert(reply)

    # ------------------------------------------------------------------
    # Event application
    # ------------------------------------------------------------------
    def apply_insert(self, message: Message) -> bool:
        if message.id in self._messages:
            return self.apply_update(message)

        if message.parent_message_id is None:
            self._messages[message.id] = message
            self._top_level.append(message.id)
            self._replies[message.id] = []
            return True

        siblings = self._replies.get(message.parent_message_id)
        if siblings is None:
            logger.debug(
                "Dropping reply %s; parent %s is not a loaded top-level message",
                message.id,
                message.parent_message_id,
            )
            return False
        self._messages[message.id] = message
        siblings.append(message.id)
        return True

    def apply_update(self, message: Message) -> bool:
        current = self._messages.get(message.id)
        if current is None:
            return False
        if current.parent_message_id != message.parent_message_id:
            # Position is fixed at insert time.
            message = replace(message, parent_message_id=current.parent_message_id)
        if current == message:
            return False
        self._messages[message.id] = message
        return True

    def apply_delete(self, message_id: str) -> bool:
        message = self._messages.pop(message_id, None)
        if message is None:
            return False
        if message.parent_message_id is None:
            self._top_level.remove(message_id)
            for reply_id in self._replies.pop(message_id, []):
                self._messages.pop(reply_id, None)
        else:
            siblings = self._replies.get(message.parent_message_id, [])
            if message_id in siblings:
                siblings.remove(message_id)
        return True

    def apply_reaction_change(self, message_id: str, rows: Iterable[RawReaction]) -> bool:
        current = self._messages.get(message_id)
        if current is None:
            return False
        reactions = tuple(aggregate_reactions(rows))
        if reactions == current.reactions:
            return False
        self._messages[message_id] = replace(current, reactions=reactions)
        return True

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------
    def __contains__(self, message_id: object) -> bool:
        return message_id in self._messages

    def __len__(self) -> int:
        return len(self._messages)

    def get(self, message_id: str) -> Message | None:
        return self._messages.get(message_id)

    def top_level(self) -> list[Message]:
        return [self._messages[message_id] for message_id in self._top_level]

    def replies_of(self, message_id: str) -> list[Message]:
        return [self._messages[reply_id] for reply_id in self._replies.get(message_id, [])]

    def __iter__(self) -> Iterator[Thread]:
        for message_id in self._top_level:
            yield Thread(self._messages[message_id], tuple(self.replies_of(message_id)))

    def threads(self) -> list[Thread]:
        return list(self)
