"""Row images and publishing helpers for the realtime change feed."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from huddle.realtime import MESSAGES_TABLE, REACTIONS_TABLE, ChangeEvent, RowChange, get_change_feed

from app.models import Message, MessageReaction


def _timestamp(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def message_record(message: Message) -> dict[str, Any]:
    """Flat row image of a message as carried by change events."""

    return {
        "id": message.id,
        "channel_id": message.channel_id,
        "user_id": message.user_id,
        "parent_message_id": message.parent_message_id,
        "content": message.content,
        "attachments": list(message.attachments or []),
        "created_at": _timestamp(message.created_at),
        "updated_at": _timestamp(message.updated_at),
    }


def reaction_record(reaction: MessageReaction) -> dict[str, Any]:
    return {
        "id": reaction.id,
        "message_id": reaction.message_id,
        "user_id": reaction.user_id,
        "emoji": reaction.emoji,
        "created_at": _timestamp(reaction.created_at),
    }


async def publish_message_change(
    event: ChangeEvent,
    *,
    new: dict[str, Any] | None = None,
    old: dict[str, Any] | None = None,
) -> None:
    await get_change_feed().publish(RowChange(MESSAGES_TABLE, event, new=new, old=old))


async def publish_reaction_change(
    event: ChangeEvent,
    *,
    new: dict[str, Any] | None = None,
    old: dict[str, Any] | None = None,
) -> None:
    await get_change_feed().publish(RowChange(REACTIONS_TABLE, event, new=new, old=old))
