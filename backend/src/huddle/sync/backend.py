"""Collaborator contracts the chat client runs against.

The client never reaches for module level state: the signed-in user and the
backend handles travel together in a :class:`ChatContext` built once per
session and handed to every component.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Mapping, Protocol, Sequence

from .errors import AuthError
from .models import CurrentUser, UploadFile

MESSAGES_TABLE = "messages"
REACTIONS_TABLE = "reactions"

DEFAULT_MAX_UPLOAD_SIZE = 20 * 1024 * 1024

Record = Mapping[str, Any]


@dataclass(frozen=True, slots=True)
class ChangeNotice:
    """A row change as delivered by the realtime feed."""

    table: str
    event: str
    new: Record | None = None
    old: Record | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ChangeNotice":
        return cls(
            table=str(payload["table"]),
            event=str(payload["event"]).upper(),
            new=payload.get("new"),
            old=payload.get("old"),
        )


ChangeCallback = Callable[[ChangeNotice], Awaitable[None]]
AuthCallback = Callable[[CurrentUser | None], Awaitable[None]]


class Subscription(Protocol):
    async def close(self) -> None:
        ...


class AuthProvider(Protocol):
    async def current_user(self) -> CurrentUser | None:
        ...

    def on_auth_state_change(self, callback: AuthCallback) -> Callable[[], None]:
        """Call ``callback`` with the new user (``None`` on sign-out); returns an unregister function."""


class RowStore(Protocol):
    async def get_channel(self, channel_id: str) -> Record:
        ...

    async def resolve_direct_channel(self, peer_user_id: str) -> Record:
        """Find or create the direct channel shared with ``peer_user_id``."""

    async def list_channel_messages(self, channel_id: str) -> Sequence[Record]:
        """Top-level messages with one level of replies, authors and raw reactions."""

    async def fetch_message(self, message_id: str) -> Record:
        ...

    async def fetch_reactions(self, message_id: str) -> Sequence[Record]:
        ...

    async def insert_message(self, record: Record) -> Record:
        ...

    async def update_message(self, message_id: str, content: str) -> Record:
        ...

    async def toggle_reaction(self, message_id: str, user_id: str, emoji: str) -> Record:
        ...

    async def delete_message(self, message_id: str) -> None:
        ...


class ChangeFeedClient(Protocol):
    async def subscribe(
        self,
        table: str,
        callback: ChangeCallback,
        *,
        filter: Mapping[str, Any] | None = None,
        events: Iterable[str] | None = None,
    ) -> Subscription:
        ...


class BlobStore(Protocol):
    async def upload(self, channel_id: str, file: UploadFile) -> Record:
        """Store the file and return its ``{id, name, url}`` attachment record."""


class EmbeddingsClient(Protocol):
    async def request_embedding(self, message_id: str) -> None:
        ...

    async def search(self, query: str) -> Record:
        ...


@dataclass(frozen=True, slots=True)
class ChatContext:
    user: CurrentUser
    rows: RowStore
    feed: ChangeFeedClient
    blobs: BlobStore
    embeddings: EmbeddingsClient
    max_upload_size: int = DEFAULT_MAX_UPLOAD_SIZE

    @classmethod
    async def connect(
        cls,
        auth: AuthProvider,
        *,
        rows: RowStore,
        feed: ChangeFeedClient,
        blobs: BlobStore,
        embeddings: EmbeddingsClient,
        max_upload_size: int = DEFAULT_MAX_UPLOAD_SIZE,
    ) -> "ChatContext":
        user = await auth.current_user()
        if user is None:
            raise AuthError("Not signed in")
        return cls(
            user=user,
            rows=rows,
            feed=feed,
            blobs=blobs,
            embeddings=embeddings,
            max_upload_size=max_upload_size,
        )
