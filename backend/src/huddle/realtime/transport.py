"""Redis relay carrying change events between backend nodes."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import redis.asyncio as redis_asyncio
from redis.exceptions import RedisError

from app.monitoring.metrics import change_relay_errors_total


logger = logging.getLogger(__name__)

_REDIS_ERRORS: tuple[type[BaseException], ...] = (
    RedisError,
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
)

_RECOVERY_BASE_DELAY = 0.5
_RECOVERY_MAX_DELAY = 30.0

CHANGES_TOPIC = "changes"

PayloadHandler = Callable[[dict[str, Any]], Awaitable[None]]


@dataclass(slots=True)
class RelayConfig:
    """Configuration used for wiring the change relay."""

    redis_url: str | None
    prefix: str = "huddle.realtime"
    node_id: str | None = None


class RelayUnavailableError(RuntimeError):
    """Raised when the relay backend is not configured or unreachable."""


class ChangeRelay:
    """Publish change payloads to Redis and feed remote ones back to a handler.

    Payloads carry the publishing node id so a node never re-delivers its own
    changes. A reader that dies is restarted with exponential backoff.
    """

    def __init__(self, config: RelayConfig) -> None:
        self._config = config
        self._redis: Any | None = None
        self._handler: PayloadHandler | None = None
        self._reader: asyncio.Task[Any] | None = None
        self._recovery: asyncio.Task[Any] | None = None
        self._stopping = False

    @property
    def node_id(self) -> str | None:
        return self._config.node_id

    @property
    def enabled(self) -> bool:
        return bool(self._config.redis_url)

    @property
    def channel(self) -> str:
        prefix = self._config.prefix.rstrip(".")
        return f"{prefix}.{CHANGES_TOPIC}" if prefix else CHANGES_TOPIC

    async def start(self, handler: PayloadHandler) -> None:
        if not self.enabled:
            return
        self._stopping = False
        self._handler = handler
        await self._connect()
        await self._attach_reader()

    async def stop(self) -> None:
        self._stopping = True
        for task in (self._recovery, self._reader):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._recovery = None
        self._reader = None
        if self._redis is not None:
            with contextlib.suppress(Exception):
                await self._redis.close()
            self._redis = None

    async def publish(self, payload: dict[str, Any]) -> None:
        if not self.enabled:
            return
        if self._redis is None:
            raise RelayUnavailableError("Redis relay is not connected")
        encoded = json.dumps({**payload, "origin": self._config.node_id}, default=str)
        try:
            await self._redis.publish(self.channel, encoded)
        except _REDIS_ERRORS as exc:
            self._schedule_recovery("publish_failed")
            raise RelayUnavailableError("Redis relay is unavailable") from exc
        logger.debug("Relayed change event via Redis", extra={"channel": self.channel})

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    async def _connect(self) -> None:
        client = redis_asyncio.from_url(
            self._config.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
        try:
            await client.ping()
        except _REDIS_ERRORS as exc:
            with contextlib.suppress(Exception):
                await client.close()
            raise RelayUnavailableError("Redis relay is unavailable") from exc
        self._redis = client

    async def _attach_reader(self) -> None:
        if self._redis is None:
            raise RelayUnavailableError("Redis relay is not connected")
        pubsub = self._redis.pubsub()
        try:
            await pubsub.subscribe(self.channel)
        except _REDIS_ERRORS as exc:
            await pubsub.close()
            raise RelayUnavailableError("Redis relay is unavailable") from exc

        async def reader() -> None:
            try:
                async for message in pubsub.listen():
                    if message.get("type") != "message":
                        continue
                    raw = message.get("data")
                    if not isinstance(raw, str):
                        continue
                    try:
                        payload = json.loads(raw)
                    except json.JSONDecodeError:
                        logger.warning("Discarded malformed change payload")
                        continue
                    if payload.get("origin") == self._config.node_id:
                        continue
                    if self._handler is not None:
                        await self._handler(payload)
            finally:
                with contextlib.suppress(Exception):
                    await pubsub.unsubscribe(self.channel)
                with contextlib.suppress(Exception):
                    await pubsub.close()

        self._reader = asyncio.create_task(reader(), name="change-relay-reader")
        self._reader.add_done_callback(self._on_reader_done)

    def _on_reader_done(self, task: asyncio.Task[Any]) -> None:
        if self._stopping or task.cancelled() or task is not self._reader:
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Change relay reader stopped due to error", exc_info=exc)
        else:
            logger.warning("Change relay reader exited unexpectedly")
        self._schedule_recovery("reader_stopped")

    def _schedule_recovery(self, reason: str) -> None:
        change_relay_errors_total.labels(reason).inc()
        if self._stopping or (self._recovery is not None and not self._recovery.done()):
            return
        logger.info("Scheduling change relay recovery", extra={"reason": reason})
        self._recovery = asyncio.create_task(self._recover(), name="change-relay-recovery")

    async def _recover(self) -> None:
        attempt = 0
        while not self._stopping:
            await asyncio.sleep(min(_RECOVERY_BASE_DELAY * (2**attempt), _RECOVERY_MAX_DELAY))
            stale_reader, self._reader = self._reader, None
            if stale_reader is not None and not stale_reader.done():
                stale_reader.cancel()
            try:
                if self._redis is not None:
                    with contextlib.suppress(Exception):
                        await self._redis.close()
                    self._redis = None
                await self._connect()
                await self._attach_reader()
            except RelayUnavailableError:
                attempt += 1
                logger.warning("Change relay recovery attempt %s failed", attempt)
                continue
            logger.info("Change relay recovered")
            break
