"""Shared pytest fixtures for backend and client tests."""

from __future__ import annotations

import asyncio
import itertools
import math
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, Mapping, Sequence

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from huddle.sync import (
    ChangeNotice,
    ChatContext,
    CurrentUser,
    NotFoundError,
    TransientBackendError,
    UploadFile,
)

from app.config import get_settings
from app.core.security import create_access_token
from app.core.slug import channel_name_for
from app.database import get_db, get_session_factory
from app.main import app
from app.models import Base, User
from app.services.embeddings import get_embedder


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture()
def test_engine() -> Iterator[Engine]:
    """Provide an in-memory SQLite engine for isolated tests."""

    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture()
def session_factory(test_engine) -> sessionmaker[Session]:
    """Return a session factory bound to the test engine."""

    return sessionmaker(bind=test_engine, future=True)


@pytest.fixture()
def db_session(session_factory) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def media_root(tmp_path, monkeypatch) -> Path:
    """Point blob storage at a per-test directory."""

    root = (tmp_path / "media").resolve()
    root.mkdir()
    monkeypatch.setattr(get_settings(), "media_root", root)
    return root


# ---------------------------------------------------------------------------
# Embeddings
# ---------------------------------------------------------------------------

VOCABULARY = ("release", "notes", "deploy", "budget", "lunch", "design", "bug", "roadmap")


class KeywordEmbedder:
    """Deterministic embedder: one dimension per vocabulary word plus a bias."""

    def __init__(self) -> None:
        self.calls: list[str] = []

    def vector(self, text: str) -> list[float]:
        lowered = text.lower()
        values = [float(lowered.count(word)) for word in VOCABULARY]
        values.append(0.1)
        norm = math.sqrt(sum(value * value for value in values))
        return [value / norm for value in values]

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        return self.vector(text)

    async def embed_many(self, texts: Sequence[str]) -> list[list[float]]:
        self.calls.extend(texts)
        return [self.vector(text) for text in texts]


@pytest.fixture()
def embedder() -> KeywordEmbedder:
    return KeywordEmbedder()


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


@pytest.fixture()
def client(session_factory, embedder) -> Iterator[TestClient]:
    """Yield a FastAPI TestClient with database and embeddings overridden."""

    def override_get_db() -> Iterator[Session]:
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_embedder] = lambda: embedder
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def make_user(session_factory) -> Callable[..., User]:
    counter = itertools.count(1)

    def factory(
        username: str | None = None,
        *,
        full_name: str | None = None,
        last_seen_at: datetime | None = None,
    ) -> User:
        name = username or f"user{next(counter)}"
        with session_factory() as session:
            user = User(
                username=name,
                email=f"{name}@example.com",
                full_name=full_name,
                last_seen_at=last_seen_at,
            )
            session.add(user)
            session.commit()
            session.refresh(user)
            session.expunge(user)
            return user

    return factory


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token({'sub': user.id})}"}


@pytest.fixture()
def headers_for() -> Callable[[User], dict[str, str]]:
    return auth_headers


# ---------------------------------------------------------------------------
# In-memory backend for the client library
# ---------------------------------------------------------------------------


class FakeSubscription:
    def __init__(self, backend: "FakeChatBackend", table: str, callback, filter, events) -> None:
        self.backend = backend
        self.table = table
        self.callback = callback
        self.filter = {key: str(value) for key, value in (filter or {}).items()}
        self.events = {event.upper() for event in events} if events else None
        self.closed = False

    def matches(self, notice: ChangeNotice) -> bool:
        if self.closed or notice.table != self.table:
            return False
        if self.events is not None and notice.event not in self.events:
            return False
        row = (notice.old if notice.event == "DELETE" else notice.new) or {}
        return all(str(row.get(key)) == value for key, value in self.filter.items())

    async def close(self) -> None:
        self.closed = True
        if self in self.backend.subscriptions:
            self.backend.subscriptions.remove(self)


class FakeChatBackend:
    """Row store, blob store, change feed and embeddings held in memory."""

    def __init__(self, user_id: str = "u1") -> None:
        self.user_id = user_id
        self.users: dict[str, dict[str, Any]] = {}
        self.channels: dict[str, dict[str, Any]] = {}
        self.messages: dict[str, dict[str, Any]] = {}
        self.reactions: list[dict[str, Any]] = []
        self.subscriptions: list[FakeSubscription] = []
        self.uploaded: list[str] = []
        self.failing_uploads: set[str] = set()
        self.embedding_requests: list[str] = []
        self.fail_embeddings = False
        self.network_calls = 0
        self.fetch_gate: asyncio.Event | None = None
        self.auth_listeners: list[Callable] = []
        self._ids = itertools.count(1)
        self._clock = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)
        self.add_user(user_id)

    # helpers -----------------------------------------------------------
    def _now(self) -> str:
        self._clock += timedelta(seconds=1)
        return self._clock.isoformat()

    def add_user(self, user_id: str, username: str | None = None) -> dict[str, Any]:
        record = {"id": user_id, "username": username or user_id, "full_name": None, "avatar_url": None}
        self.users[user_id] = record
        return record

    def add_channel(self, channel_id: str, name: str | None = None, type: str = "public") -> dict[str, Any]:
        record = {"id": channel_id, "name": name or channel_id, "type": type}
        self.channels[channel_id] = record
        return record

    def add_message(
        self,
        channel_id: str,
        content: str,
        *,
        user_id: str | None = None,
        parent_message_id: str | None = None,
        message_id: str | None = None,
    ) -> dict[str, Any]:
        now = self._now()
        record = {
            "id": message_id or f"m{next(self._ids)}",
            "channel_id": channel_id,
            "user_id": user_id or self.user_id,
            "parent_message_id": parent_message_id,
            "content": content,
            "attachments": [],
            "created_at": now,
            "updated_at": now,
        }
        self.messages[record["id"]] = record
        return record

    def full_record(self, message_id: str) -> dict[str, Any]:
        record = dict(self.messages[message_id])
        record["author"] = self.users.get(record["user_id"])
        record["reactions"] = [dict(row) for row in self.reactions if row["message_id"] == message_id]
        return record

    async def emit(
        self,
        table: str,
        event: str,
        *,
        new: Mapping[str, Any] | None = None,
        old: Mapping[str, Any] | None = None,
    ) -> None:
        notice = ChangeNotice(table=table, event=event, new=new, old=old)
        for subscription in list(self.subscriptions):
            if subscription.matches(notice):
                await subscription.callback(notice)

    # auth --------------------------------------------------------------
    async def current_user(self) -> CurrentUser | None:
        return CurrentUser(id=self.user_id, email=f"{self.user_id}@example.com")

    def on_auth_state_change(self, callback) -> Callable[[], None]:
        self.auth_listeners.append(callback)
        return lambda: self.auth_listeners.remove(callback)

    # row store ---------------------------------------------------------
    async def get_channel(self, channel_id: str) -> dict[str, Any]:
        self.network_calls += 1
        if channel_id not in self.channels:
            raise NotFoundError(channel_id)
        return self.channels[channel_id]

    async def resolve_direct_channel(self, peer_user_id: str) -> dict[str, Any]:
        self.network_calls += 1
        name = channel_name_for(self.user_id, peer_user_id)
        for channel in self.channels.values():
            if channel["name"] == name:
                return channel
        return self.add_channel(f"c{next(self._ids)}", name, "direct")

    async def list_channel_messages(self, channel_id: str) -> list[dict[str, Any]]:
        self.network_calls += 1
        top_level = [
            record
            for record in self.messages.values()
            if record["channel_id"] == channel_id and record["parent_message_id"] is None
        ]
        listing = []
        for record in sorted(top_level, key=lambda item: item["created_at"]):
            thread = self.full_record(record["id"])
            thread["replies"] = [
                self.full_record(reply["id"])
                for reply in self.messages.values()
                if reply["parent_message_id"] == record["id"]
            ]
            listing.append(thread)
        return listing

    async def fetch_message(self, message_id: str) -> dict[str, Any]:
        self.network_calls += 1
        if self.fetch_gate is not None:
            await self.fetch_gate.wait()
        if message_id not in self.messages:
            raise NotFoundError(message_id)
        return self.full_record(message_id)

    async def fetch_reactions(self, message_id: str) -> list[dict[str, Any]]:
        self.network_calls += 1
        return [dict(row) for row in self.reactions if row["message_id"] == message_id]

    async def insert_message(self, record: Mapping[str, Any]) -> dict[str, Any]:
        self.network_calls += 1
        stored = self.add_message(
            record["channel_id"],
            record.get("content", ""),
            user_id=record.get("user_id"),
            parent_message_id=record.get("parent_message_id"),
        )
        stored["attachments"] = list(record.get("attachments") or [])
        await self.emit("messages", "INSERT", new=stored)
        return self.full_record(stored["id"])

    async def update_message(self, message_id: str, content: str) -> dict[str, Any]:
        self.network_calls += 1
        old = dict(self.messages[message_id])
        self.messages[message_id]["content"] = content
        self.messages[message_id]["updated_at"] = self._now()
        await self.emit("messages", "UPDATE", new=self.messages[message_id], old=old)
        return self.full_record(message_id)

    async def toggle_reaction(self, message_id: str, user_id: str, emoji: str) -> dict[str, Any]:
        self.network_calls += 1
        for row in self.reactions:
            if (row["message_id"], row["user_id"], row["emoji"]) == (message_id, user_id, emoji):
                self.reactions.remove(row)
                await self.emit("reactions", "DELETE", old=row)
                return {"message_id": message_id, "emoji": emoji, "added": False}
        row = {"message_id": message_id, "user_id": user_id, "emoji": emoji}
        self.reactions.append(row)
        await self.emit("reactions", "INSERT", new=row)
        return {"message_id": message_id, "emoji": emoji, "added": True}

    async def delete_message(self, message_id: str) -> None:
        self.network_calls += 1
        if message_id not in self.messages:
            raise NotFoundError(message_id)
        doomed = [
            record for record in self.messages.values() if record["parent_message_id"] == message_id
        ]
        doomed.append(self.messages[message_id])
        for record in doomed:
            del self.messages[record["id"]]
            self.reactions = [row for row in self.reactions if row["message_id"] != record["id"]]
        for record in doomed:
            await self.emit("messages", "DELETE", old=record)

    # blob store --------------------------------------------------------
    async def upload(self, channel_id: str, file: UploadFile) -> dict[str, Any]:
        self.network_calls += 1
        await asyncio.sleep(0)
        if file.name in self.failing_uploads:
            raise TransientBackendError(f"upload of {file.name} failed")
        path = f"channel_{channel_id}/{file.name}"
        self.uploaded.append(path)
        return {"id": path, "name": file.name, "url": f"/api/attachments/{path}"}

    # embeddings --------------------------------------------------------
    async def request_embedding(self, message_id: str) -> None:
        self.embedding_requests.append(message_id)
        if self.fail_embeddings:
            raise TransientBackendError("embeddings unavailable")

    async def search(self, query: str) -> dict[str, Any]:
        self.network_calls += 1
        return {"query": query, "messages": [], "files": [], "people": []}

    # change feed -------------------------------------------------------
    async def subscribe(
        self,
        table: str,
        callback,
        *,
        filter: Mapping[str, Any] | None = None,
        events: Iterable[str] | None = None,
    ) -> FakeSubscription:
        subscription = FakeSubscription(self, table, callback, filter, events)
        self.subscriptions.append(subscription)
        return subscription


@pytest.fixture()
def fake_backend() -> FakeChatBackend:
    backend = FakeChatBackend()
    backend.add_user("u2", "bob")
    backend.add_channel("general")
    backend.add_channel("random")
    return backend


@pytest.fixture()
def chat_context(fake_backend) -> ChatContext:
    return ChatContext(
        user=CurrentUser(id=fake_backend.user_id, email=f"{fake_backend.user_id}@example.com"),
        rows=fake_backend,
        feed=fake_backend,
        blobs=fake_backend,
        embeddings=fake_backend,
    )
