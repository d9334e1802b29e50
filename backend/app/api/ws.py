"""WebSocket endpoint streaming row changes to clients."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, Dict, TypeVar

from fastapi import APIRouter, Depends, WebSocket, status
from fastapi.exceptions import HTTPException
from fastapi.websockets import WebSocketDisconnect, WebSocketState
from sqlalchemy.orm import Session, sessionmaker

from huddle.realtime import MESSAGES_TABLE, REACTIONS_TABLE, ChangeEvent, ChangeFeed, RowChange, get_change_feed

from app.api.deps import can_view_channel, get_user_from_token
from app.config import get_settings
from app.database import get_db_session, get_session_factory
from app.models import Channel, Message, User

router = APIRouter(prefix="/ws", tags=["ws"])

settings = get_settings()

logger = logging.getLogger(__name__)

T = TypeVar("T")

FILTER_COLUMNS: dict[str, frozenset[str]] = {
    MESSAGES_TABLE: frozenset({"channel_id", "parent_message_id", "user_id"}),
    REACTIONS_TABLE: frozenset({"message_id", "user_id"}),
}


async def safe_send_json(websocket: WebSocket, data: dict[str, Any]) -> bool:
    """Send JSON, returning False instead of raising once the socket is gone."""

    if websocket.application_state != WebSocketState.CONNECTED:
        return False
    try:
        await websocket.send_json(data)
        return True
    except (WebSocketDisconnect, RuntimeError) as e:
        logger.debug("Failed to send websocket message: %s", e)
        return False


async def iter_keepalive_messages(
    websocket: WebSocket,
    receiver: Callable[[], Awaitable[T]],
    *,
    timeout_seconds: float | int | None,
    ping_interval_seconds: float | int | None,
    ping_payload: Dict[str, Any] | None = None,
) -> AsyncIterator[T]:
    """Yield messages from *receiver* while sending keepalive pings when idle."""

    ping_payload = ping_payload or {"type": "ping"}
    timeout = float(timeout_seconds) if timeout_seconds else 0.0
    interval = float(ping_interval_seconds) if ping_interval_seconds else 0.0
    last_activity = time.monotonic()
    last_ping_sent: float | None = None

    while True:
        try:
            if timeout > 0:
                message = await asyncio.wait_for(receiver(), timeout=timeout)
            else:
                message = await receiver()
        except asyncio.TimeoutError:
            if websocket.application_state != WebSocketState.CONNECTED:
                break
            now = time.monotonic()
            due = interval <= 0 or (
                now - last_activity >= interval
                and (last_ping_sent is None or now - last_ping_sent >= interval)
            )
            if due:
                if not await safe_send_json(websocket, ping_payload):
                    break
                last_ping_sent = now
            continue
        except (RuntimeError, WebSocketDisconnect):
            break
        else:
            last_activity = time.monotonic()
            last_ping_sent = None
            yield message


async def _resolve_user(websocket: WebSocket, factory: sessionmaker[Session]) -> User | None:
    token = websocket.query_params.get("token")
    if not token:
        auth_header = websocket.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            token = auth_header.removeprefix("Bearer ").strip()
    if not token:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Missing token")
        return None

    try:
        with get_db_session(factory) as db:
            user = get_user_from_token(token, db)
            db.expunge(user)
            return user
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Invalid token")
        return None


def _parse_events(raw: str | None) -> list[ChangeEvent] | None:
    if not raw:
        return None
    return [ChangeEvent(item.strip().upper()) for item in raw.split(",") if item.strip()]


@router.websocket("/changes/{table}")
async def websocket_changes(
    websocket: WebSocket,
    table: str,
    factory: sessionmaker[Session] = Depends(get_session_factory),
    feed: ChangeFeed = Depends(get_change_feed),
) -> None:
    """Forward committed changes of ``table`` matching the query filter.

    Message feeds must be scoped to a channel the caller can see. Reaction
    feeds may be unfiltered; changes on messages the caller cannot see are
    dropped before they are sent.
    """

    user = await _resolve_user(websocket, factory)
    if user is None:
        return

    allowed = FILTER_COLUMNS.get(table)
    if allowed is None:
        await websocket.close(code=status.WS_1003_UNSUPPORTED_DATA, reason="Unknown table")
        return

    filters = {key: value for key, value in websocket.query_params.items() if key in allowed}
    try:
        events = _parse_events(websocket.query_params.get("events"))
    except ValueError:
        await websocket.close(code=status.WS_1003_UNSUPPORTED_DATA, reason="Unknown event type")
        return

    if table == MESSAGES_TABLE:
        channel_id = filters.get("channel_id")
        if not channel_id:
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="channel_id is required")
            return
        with get_db_session(factory) as db:
            channel = db.get(Channel, channel_id)
            visible = channel is not None and can_view_channel(channel, user)
        if not visible:
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Channel not found")
            return

    await websocket.accept()

    visible_messages: dict[str, bool] = {}

    def can_see(change: RowChange) -> bool:
        message_id = change.row.get("message_id")
        if not message_id:
            return False
        if message_id not in visible_messages:
            with get_db_session(factory) as db:
                message = db.get(Message, message_id)
                if message is None:
                    return False
                visible_messages[message_id] = can_view_channel(message.channel, user)
        return visible_messages[message_id]

    async def forward(change: RowChange) -> None:
        if table == REACTIONS_TABLE and not can_see(change):
            return
        await safe_send_json(websocket, change.to_payload())

    subscription = feed.subscribe(table, forward, filter=filters, events=events)
    logger.debug("User %s subscribed to %s changes with %s", user.id, table, filters)
    try:
        async for raw_message in iter_keepalive_messages(
            websocket,
            websocket.receive_text,
            timeout_seconds=settings.websocket_keepalive_timeout_seconds,
            ping_interval_seconds=settings.websocket_keepalive_ping_interval_seconds,
        ):
            try:
                payload = json.loads(raw_message)
            except json.JSONDecodeError:
                continue
            if isinstance(payload, dict) and payload.get("type") == "ping":
                await safe_send_json(websocket, {"type": "pong"})
    finally:
        await subscription.close()
