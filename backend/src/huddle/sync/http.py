"""HTTP and websocket implementation of the client collaborator contracts."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import Any, Callable, Iterable, Mapping, Sequence
from urllib.parse import urlencode, urlsplit, urlunsplit

import httpx
import websockets

from .backend import AuthCallback, ChangeCallback, ChangeNotice, Record
from .errors import AuthError, ChatError, NotFoundError, TransientBackendError, ValidationError
from .models import CurrentUser, UploadFile

logger = logging.getLogger(__name__)

_VALIDATION_STATUSES = frozenset({400, 413, 422})


def _error_for(response: httpx.Response) -> ChatError:
    try:
        detail = response.json().get("detail", response.reason_phrase)
    except (ValueError, AttributeError):
        detail = response.reason_phrase
    message = f"{response.request.method} {response.request.url.path}: {detail}"
    if response.status_code in (401, 403):
        return AuthError(message)
    if response.status_code == 404:
        return NotFoundError(message)
    if response.status_code in _VALIDATION_STATUSES:
        return ValidationError(message)
    return TransientBackendError(message)


class WebSocketSubscription:
    """Reader task forwarding change notices from one websocket."""

    def __init__(self, url: str, callback: ChangeCallback) -> None:
        self._url = url
        self._callback = callback
        self._connection: Any | None = None
        self._reader: asyncio.Task[None] | None = None

    async def open(self) -> None:
        try:
            self._connection = await websockets.connect(self._url)
        except (OSError, websockets.WebSocketException) as exc:
            raise TransientBackendError(f"Could not open change feed: {exc}") from exc
        self._reader = asyncio.create_task(self._read(), name="change-feed-reader")

    async def _read(self) -> None:
        assert self._connection is not None
        try:
            async for raw in self._connection:
                try:
                    notice = ChangeNotice.from_payload(json.loads(raw))
                except (KeyError, TypeError, ValueError):
                    logger.warning("Discarded malformed change notice")
                    continue
                try:
                    await self._callback(notice)
                except Exception:
                    logger.exception("Change handler failed for %s", notice.table)
        except websockets.ConnectionClosed:
            logger.info("Change feed connection closed")

    async def close(self) -> None:
        if self._reader is not None and not self._reader.done():
            self._reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader
        self._reader = None
        if self._connection is not None:
            with contextlib.suppress(Exception):
                await self._connection.close()
            self._connection = None


class HttpChatBackend:
    """Talk to the Huddle API with a bearer token.

    Implements every collaborator the chat client needs: auth, row store,
    blob store, embeddings and the change feed.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        client: httpx.AsyncClient | None = None,
        ws_url: str | None = None,
    ) -> None:
        self._token = token
        self._client = client or httpx.AsyncClient(base_url=base_url)
        self._client.headers["Authorization"] = f"Bearer {token}"
        self._ws_url = (ws_url or self._default_ws_url(base_url)).rstrip("/")
        self._auth_listeners: list[AuthCallback] = []

    @staticmethod
    def _default_ws_url(base_url: str) -> str:
        parts = urlsplit(base_url)
        scheme = "wss" if parts.scheme == "https" else "ws"
        return urlunsplit((scheme, parts.netloc, parts.path, "", ""))

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise TransientBackendError(f"{method} {path} failed: {exc}") from exc
        if response.is_error:
            raise _error_for(response)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    # Auth ---------------------------------------------------------------
    async def current_user(self) -> CurrentUser | None:
        try:
            payload = await self._request("GET", "/api/auth/me")
        except AuthError:
            return None
        return CurrentUser(id=str(payload["id"]), email=payload.get("email"))

    def on_auth_state_change(self, callback: AuthCallback) -> Callable[[], None]:
        self._auth_listeners.append(callback)

        def unregister() -> None:
            if callback in self._auth_listeners:
                self._auth_listeners.remove(callback)

        return unregister

    async def set_token(self, token: str | None) -> CurrentUser | None:
        """Swap credentials after a refresh, or sign out with ``None``, and notify listeners."""

        self._token = token or ""
        if token:
            self._client.headers["Authorization"] = f"Bearer {token}"
            user = await self.current_user()
        else:
            self._client.headers.pop("Authorization", None)
            user = None
        for listener in list(self._auth_listeners):
            await listener(user)
        return user

    # Row store ----------------------------------------------------------
    async def get_channel(self, channel_id: str) -> Record:
        return await self._request("GET", f"/api/channels/{channel_id}")

    async def resolve_direct_channel(self, peer_user_id: str) -> Record:
        return await self._request("POST", f"/api/channels/direct/{peer_user_id}")

    async def list_channel_messages(self, channel_id: str) -> Sequence[Record]:
        return await self._request("GET", f"/api/channels/{channel_id}/messages")

    async def fetch_message(self, message_id: str) -> Record:
        return await self._request("GET", f"/api/messages/{message_id}")

    async def fetch_reactions(self, message_id: str) -> Sequence[Record]:
        return await self._request("GET", f"/api/messages/{message_id}/reactions")

    async def insert_message(self, record: Record) -> Record:
        body = {
            "channel_id": record["channel_id"],
            "content": record.get("content", ""),
            "parent_message_id": record.get("parent_message_id"),
            "attachments": list(record.get("attachments") or []),
        }
        return await self._request("POST", "/api/messages", json=body)

    async def update_message(self, message_id: str, content: str) -> Record:
        return await self._request("PATCH", f"/api/messages/{message_id}", json={"content": content})

    async def toggle_reaction(self, message_id: str, user_id: str, emoji: str) -> Record:
        # The API resolves the user from the bearer token.
        return await self._request("POST", f"/api/messages/{message_id}/reactions", json={"emoji": emoji})

    async def delete_message(self, message_id: str) -> None:
        await self._request("DELETE", f"/api/messages/{message_id}")

    # Blob store ---------------------------------------------------------
    async def upload(self, channel_id: str, file: UploadFile) -> Record:
        files = {"file": (file.name, file.data, file.content_type or "application/octet-stream")}
        return await self._request("POST", "/api/attachments", data={"channel_id": channel_id}, files=files)

    # Embeddings ---------------------------------------------------------
    async def request_embedding(self, message_id: str) -> None:
        await self._request("POST", "/api/embeddings", json={"messageId": message_id})

    async def search(self, query: str) -> Record:
        return await self._request("GET", "/api/embeddings/search", params={"query": query})

    # Change feed --------------------------------------------------------
    def change_feed_url(
        self,
        table: str,
        *,
        filter: Mapping[str, Any] | None = None,
        events: Iterable[str] | None = None,
    ) -> str:
        params: dict[str, str] = {"token": self._token}
        for column, value in (filter or {}).items():
            params[column] = str(value)
        if events:
            params["events"] = ",".join(event.upper() for event in events)
        return f"{self._ws_url}/ws/changes/{table}?{urlencode(params)}"

    async def subscribe(
        self,
        table: str,
        callback: ChangeCallback,
        *,
        filter: Mapping[str, Any] | None = None,
        events: Iterable[str] | None = None,
    ) -> WebSocketSubscription:
        subscription = WebSocketSubscription(self.change_feed_url(table, filter=filter, events=events), callback)
        await subscription.open()
        return subscription
