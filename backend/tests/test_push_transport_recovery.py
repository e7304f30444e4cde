from __future__ import annotations

import asyncio
import logging
from types import SimpleNamespace
from typing import Any

import pytest

from app.monitoring.metrics import realtime_subscriptions, realtime_transport_restarts_total
from murmur.realtime import BrokerPushSource, LiveUpdateMerger, channel_topic
from murmur.realtime.transport import BrokerConfig, PubSubTransport, TransportUnavailableError
from murmur.threads import ThreadStore

from conftest import CHANNEL_ID, make_message


class StubPubSub:
    """Mimics ``redis.asyncio.client.PubSub`` closely enough for the readers."""

    def __init__(self, server: StubRedis) -> None:
        self.server = server
        self.inbox: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()
        self.channels: set[str] = set()

    async def subscribe(self, channel: str) -> None:
        self.server.ensure_online()
        self.channels.add(channel)
        self.server.listeners.setdefault(channel, set()).add(self)

    async def unsubscribe(self, channel: str) -> None:
        self.channels.discard(channel)
        listeners = self.server.listeners.get(channel, set())
        listeners.discard(self)
        if not listeners:
            self.server.listeners.pop(channel, None)

    async def close(self) -> None:
        for channel in sorted(self.channels):
            await self.unsubscribe(channel)

    async def listen(self):
        while (item := await self.inbox.get()) is not None:
            yield item


class StubRedis:
    def __init__(self) -> None:
        self.online = True
        self.published: list[tuple[str, str]] = []
        self.listeners: dict[str, set[StubPubSub]] = {}

    def ensure_online(self) -> None:
        if not self.online:
            raise ConnectionError("redis is down")

    async def ping(self) -> None:
        self.ensure_online()

    async def publish(self, channel: str, payload: str) -> None:
        self.ensure_online()
        self.published.append((channel, payload))
        self.deliver(channel, payload)

    def deliver(self, channel: str, raw: str) -> None:
        for pubsub in list(self.listeners.get(channel, ())):
            pubsub.inbox.put_nowait({"type": "message", "data": raw})

    def pubsub(self) -> StubPubSub:
        return StubPubSub(self)

    def go_down(self) -> None:
        self.online = False
        for listeners in list(self.listeners.values()):
            for pubsub in list(listeners):
                pubsub.inbox.put_nowait(None)

    async def close(self) -> None:
        self.go_down()
        self.listeners.clear()


@pytest.fixture()
def redis_servers(monkeypatch) -> list[StubRedis]:
    """Every client the transport creates, in creation order."""

    servers: list[StubRedis] = []

    def from_url(*_args: Any, **_kwargs: Any) -> StubRedis:
        servers.append(StubRedis())
        return servers[-1]

    monkeypatch.setattr("murmur.realtime.transport.redis_asyncio", SimpleNamespace(from_url=from_url))
    monkeypatch.setattr("murmur.realtime.transport._RECOVERY_BASE_DELAY", 0.01)
    monkeypatch.setattr("murmur.realtime.transport._RECOVERY_MAX_DELAY", 0.05)
    return servers


async def _eventually(check, *, attempts: int = 40, delay: float = 0.025) -> None:
    for _ in range(attempts):
        if await check():
            return
        await asyncio.sleep(delay)
    raise AssertionError("condition not reached in time")


@pytest.mark.anyio("asyncio")
async def test_redis_transport_recovers_after_disconnect(redis_servers):
    transport = PubSubTransport(BrokerConfig(redis_url="redis://fake"))
    await transport.start()
    inbox: asyncio.Queue[dict[str, Any]] = asyncio.Queue()

    async def handler(payload: dict[str, Any]) -> None:
        inbox.put_nowait(payload)

    subscription = await transport.subscribe("channels.general", handler, backend="redis")
    assert realtime_subscriptions.value("redis") == 1

    await transport.publish("channels.general", {"seq": 1}, backend="redis")
    assert await asyncio.wait_for(inbox.get(), timeout=1.0) == {"seq": 1}

    redis_servers[0].go_down()
    await asyncio.sleep(0)

    with pytest.raises(TransportUnavailableError):
        await transport.publish("channels.general", {"seq": 2}, backend="redis")

    async def reconnected() -> bool:
        return len(redis_servers) >= 2

    async def published() -> bool:
        try:
            await transport.publish("channels.general", {"seq": 3}, backend="redis")
        except TransportUnavailableError:
            return False
        return True

    await _eventually(reconnected)
    await _eventually(published)

    assert await asyncio.wait_for(inbox.get(), timeout=1.5) == {"seq": 3}
    assert inbox.empty()
    assert realtime_transport_restarts_total.value("redis", "publish_failed") >= 1

    await subscription.close()
    assert realtime_subscriptions.value("redis") == 0
    await transport.stop()
    assert not transport.connected


@pytest.mark.anyio("asyncio")
async def test_redis_reader_skips_malformed_payloads(redis_servers, caplog, monkeypatch):
    # the transport logger does not propagate under the application logging config
    monkeypatch.setattr(logging.getLogger("murmur.realtime.transport"), "propagate", True)
    transport = PubSubTransport(BrokerConfig(redis_url="redis://fake", redis_prefix="test"))
    await transport.start()

    received: list[dict[str, Any]] = []
    delivered = asyncio.Event()

    async def handler(payload: dict[str, Any]) -> None:
        received.append(payload)
        delivered.set()

    subscription = await transport.subscribe("room", handler, backend="redis")
    client = redis_servers[0]
    client.deliver("test.room", "not json")
    client.deliver("test.room", "[1, 2]")
    await transport.publish("room", {"ok": True}, backend="redis")
    await asyncio.wait_for(delivered.wait(), timeout=1.0)

    assert received == [{"ok": True}]
    assert any("malformed push payload" in record.getMessage() for record in caplog.records)

    await subscription.close()
    await transport.stop()


@pytest.mark.anyio("asyncio")
async def test_broker_push_source_feeds_channel_merger(redis_servers):
    source = BrokerPushSource(
        PubSubTransport(BrokerConfig(redis_url="redis://fake", redis_prefix="murmur")),
        backend="redis",
    )
    await source.connect()
    store = ThreadStore.from_messages([make_message("1", t=1)], channel_id=CHANNEL_ID)
    merger = LiveUpdateMerger(CHANNEL_ID, source)
    await merger.start()
    merger.attach(store)

    reply = make_message("2", "1", t=2)
    await source.publish(
        CHANNEL_ID,
        {"type": "new_message", "channel_id": CHANNEL_ID, "message": reply.model_dump(mode="json")},
    )
    for _ in range(50):
        if "2" in store:
            break
        await asyncio.sleep(0.01)

    client = redis_servers[0]
    assert client.published[0][0] == f"murmur.{channel_topic(CHANNEL_ID)}"
    assert store.shape() == (("1", (("2", ()),)),)

    await merger.stop()
    assert realtime_subscriptions.value("redis") == 0
    await source.disconnect()
    assert not source.connected


@pytest.mark.anyio("asyncio")
async def test_publish_without_backend_raises():
    transport = PubSubTransport(BrokerConfig(redis_url=None))

    with pytest.raises(TransportUnavailableError):
        await transport.publish("room", {"value": 1})
