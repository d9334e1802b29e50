from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Any

import pytest

from app.monitoring.metrics import change_relay_errors_total
from huddle.realtime.transport import ChangeRelay, RelayConfig, RelayUnavailableError


class FakeBroker:
    """Channel registry shared by every client, like a real Redis server."""

    def __init__(self) -> None:
        self.channels: dict[str, set[FakePubSub]] = {}

    def register(self, channel: str, pubsub: FakePubSub) -> None:
        self.channels.setdefault(channel, set()).add(pubsub)

    def unregister(self, channel: str, pubsub: FakePubSub) -> None:
        subscribers = self.channels.get(channel)
        if not subscribers:
            return
        subscribers.discard(pubsub)
        if not subscribers:
            self.channels.pop(channel, None)


class FakePubSub:
    def __init__(self, redis: FakeRedis) -> None:
        self._redis = redis
        self._queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()
        self._channels: set[str] = set()

    async def subscribe(self, channel: str) -> None:
        if not self._redis.online:
            raise ConnectionError("offline")
        self._channels.add(channel)
        self._redis.broker.register(channel, self)

    async def unsubscribe(self, channel: str) -> None:
        if channel in self._channels:
            self._redis.broker.unregister(channel, self)
            self._channels.discard(channel)

    async def close(self) -> None:
        for channel in list(self._channels):
            await self.unsubscribe(channel)

    async def listen(self):
        while True:
            message = await self._queue.get()
            if message is None:
                break
            yield message

    def push(self, message: dict[str, Any] | None) -> None:
        self._queue.put_nowait(message)

    def drop(self) -> None:
        for channel in list(self._channels):
            self._redis.broker.unregister(channel, self)
        self._channels.clear()
        self.push(None)


class FakeRedis:
    def __init__(self, broker: FakeBroker) -> None:
        self.broker = broker
        self.online = True
        self._pubsubs: list[FakePubSub] = []

    async def ping(self) -> None:
        if not self.online:
            raise ConnectionError("offline")

    async def publish(self, channel: str, payload: str) -> None:
        if not self.online:
            raise ConnectionError("offline")
        for pubsub in list(self.broker.channels.get(channel, set())):
            pubsub.push({"type": "message", "data": payload})

    def pubsub(self) -> FakePubSub:
        pubsub = FakePubSub(self)
        self._pubsubs.append(pubsub)
        return pubsub

    async def close(self) -> None:
        self.fail()

    def fail(self) -> None:
        self.online = False
        for pubsub in self._pubsubs:
            pubsub.drop()
        self._pubsubs.clear()


class FakeRedisFactory:
    def __init__(self) -> None:
        self.broker = FakeBroker()
        self.instances: list[FakeRedis] = []

    def from_url(self, *_args: Any, **_kwargs: Any) -> FakeRedis:
        client = FakeRedis(self.broker)
        self.instances.append(client)
        return client


@pytest.fixture(autouse=True)
def reset_relay_error_metric() -> None:
    change_relay_errors_total._samples.clear()
    yield
    change_relay_errors_total._samples.clear()


@pytest.fixture()
def factory(monkeypatch) -> FakeRedisFactory:
    factory = FakeRedisFactory()
    monkeypatch.setattr(
        "huddle.realtime.transport.redis_asyncio",
        SimpleNamespace(from_url=factory.from_url),
    )
    monkeypatch.setattr("huddle.realtime.transport._RECOVERY_BASE_DELAY", 0.01)
    monkeypatch.setattr("huddle.realtime.transport._RECOVERY_MAX_DELAY", 0.05)
    return factory


@pytest.mark.anyio("asyncio")
async def test_relay_skips_its_own_payloads(factory) -> None:
    received: list[dict[str, Any]] = []
    event = asyncio.Event()

    async def handler(payload: dict[str, Any]) -> None:
        received.append(payload)
        event.set()

    local = ChangeRelay(RelayConfig(redis_url="redis://fake", node_id="a"))
    remote = ChangeRelay(RelayConfig(redis_url="redis://fake", node_id="b"))
    await local.start(handler)
    await remote.start(handler)

    await local.publish({"table": "messages", "event": "INSERT", "new": {"id": "m1"}})
    await asyncio.wait_for(event.wait(), timeout=1.0)
    await asyncio.sleep(0.01)

    assert received == [{"table": "messages", "event": "INSERT", "new": {"id": "m1"}, "origin": "a"}]
    assert local.channel == "huddle.realtime.changes"

    await local.stop()
    await remote.stop()


@pytest.mark.anyio("asyncio")
async def test_disabled_relay_is_a_no_op() -> None:
    relay = ChangeRelay(RelayConfig(redis_url=None))

    await relay.start(lambda payload: None)
    await relay.publish({"table": "messages"})
    await relay.stop()

    assert not relay.enabled


@pytest.mark.anyio("asyncio")
async def test_change_relay_recovers_after_disconnect(factory) -> None:
    relay = ChangeRelay(RelayConfig(redis_url="redis://fake", node_id="listener"))
    publisher = ChangeRelay(RelayConfig(redis_url="redis://fake", node_id="publisher"))

    received: list[dict[str, Any]] = []
    received_event = asyncio.Event()

    async def handler(payload: dict[str, Any]) -> None:
        received.append(payload)
        received_event.set()

    async def ignore(payload: dict[str, Any]) -> None:
        return None

    await relay.start(handler)
    await publisher.start(ignore)

    await publisher.publish({"value": 1})
    await asyncio.wait_for(received_event.wait(), timeout=1.0)
    received_event.clear()
    received.clear()

    first_client = factory.instances[0]
    first_client.fail()
    await asyncio.sleep(0)

    with pytest.raises(RelayUnavailableError):
        await relay.publish({"value": 2})

    async def wait_for_instances(expected: int) -> None:
        for _ in range(50):
            if len(factory.instances) >= expected:
                return
            await asyncio.sleep(0.02)
        raise AssertionError("Redis client was not recreated")

    await wait_for_instances(3)

    async def publish_with_retry(payload: dict[str, Any]) -> None:
        for _ in range(20):
            try:
                await relay.publish(payload)
                return
            except RelayUnavailableError:
                await asyncio.sleep(0.05)
        raise AssertionError("Change relay did not recover in time")

    await publish_with_retry({"marker": "recovered"})
    await asyncio.sleep(0.05)
    await publisher.publish({"value": 3})
    await asyncio.wait_for(received_event.wait(), timeout=1.5)

    assert received[-1] == {"value": 3, "origin": "publisher"}
    assert change_relay_errors_total._samples[("reader_stopped",)] >= 1.0

    await relay.stop()
    await publisher.stop()
