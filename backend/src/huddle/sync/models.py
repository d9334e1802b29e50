"""Immutable value types held by the client-side message store."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Sequence

from .reactions import ReactionSummary, aggregate_reactions


def parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        return datetime.fromtimestamp(0, timezone.utc)
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=timezone.utc)


@dataclass(frozen=True, slots=True)
class CurrentUser:
    id: str
    email: str | None = None


@dataclass(frozen=True, slots=True)
class Channel:
    id: str
    name: str
    type: str = "public"

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Channel":
        return cls(id=str(record["id"]), name=str(record["name"]), type=str(record.get("type", "public")))


@dataclass(frozen=True, slots=True)
class Attachment:
    id: str
    name: str
    url: str

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Attachment":
        return cls(id=str(record["id"]), name=str(record.get("name", "")), url=str(record.get("url", "")))

    def to_record(self) -> dict[str, str]:
        return {"id": self.id, "name": self.name, "url": self.url}


@dataclass(frozen=True, slots=True)
class Author:
    id: str
    username: str
    full_name: str | None = None
    avatar_url: str | None = None

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Author":
        return cls(
            id=str(record["id"]),
            username=str(record.get("username", "")),
            full_name=record.get("full_name"),
            avatar_url=record.get("avatar_url"),
        )


@dataclass(frozen=True, slots=True)
class RawReaction:
    """One stored reaction row."""

    message_id: str
    user_id: str
    emoji: str

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "RawReaction":
        return cls(
            message_id=str(record["message_id"]),
            user_id=str(record["user_id"]),
            emoji=str(record["emoji"]),
        )


@dataclass(frozen=True, slots=True)
class Message:
    """A message as displayed; ``reactions`` is already aggregated."""

    id: str
    channel_id: str
    user_id: str | None
    parent_message_id: str | None
    content: str
    created_at: datetime
    updated_at: datetime
    attachments: tuple[Attachment, ...] = ()
    author: Author | None = None
    reactions: tuple[ReactionSummary, ...] = ()

    @property
    def is_reply(self) -> bool:
        return self.parent_message_id is not None

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Message":
        """Build a message from a row store record with its raw reaction rows."""

        author = record.get("author")
        raw = [RawReaction.from_record(row) for row in record.get("reactions") or []]
        parent = record.get("parent_message_id")
        user_id = record.get("user_id")
        return cls(
            id=str(record["id"]),
            channel_id=str(record["channel_id"]),
            user_id=str(user_id) if user_id is not None else None,
            parent_message_id=str(parent) if parent is not None else None,
            content=str(record.get("content") or ""),
            created_at=parse_timestamp(record.get("created_at")),
            updated_at=parse_timestamp(record.get("updated_at") or record.get("created_at")),
            attachments=tuple(Attachment.from_record(item) for item in record.get("attachments") or []),
            author=Author.from_record(author) if author else None,
            reactions=tuple(aggregate_reactions(raw)),
        )


@dataclass(frozen=True, slots=True)
class Thread:
    """Render snapshot of a top-level message and its replies."""

    message: Message
    replies: tuple[Message, ...] = field(default_factory=tuple)


@dataclass(frozen=True, slots=True)
class UploadFile:
    """A local file queued for sending."""

    name: str
    data: bytes
    content_type: str | None = None

    @property
    def size(self) -> int:
        return len(self.data)


_SIZE_UNITS = ("Bytes", "KB", "MB", "GB")


def format_file_size(size: int) -> str:
    """Human readable size such as ``1.5 KB``, shared by the API and the client."""

    if size <= 0:
        return "0 Bytes"
    exponent = 0
    while size >= 1024 ** (exponent + 1) and exponent < len(_SIZE_UNITS) - 1:
        exponent += 1
    value = round(size / 1024**exponent, 2)
    return f"{value:g} {_SIZE_UNITS[exponent]}"


def parse_thread(record: Mapping[str, Any]) -> tuple[Message, list[Message]]:
    message = Message.from_record(record)
    replies = [Message.from_record(reply) for reply in record.get("replies") or []]
    return message, replies


def parse_threads(records: Sequence[Mapping[str, Any]]) -> list[tuple[Message, list[Message]]]:
    return [parse_thread(record) for record in records]
