from __future__ import annotations

import logging
from types import SimpleNamespace
from typing import Any

import pytest

from murmur.realtime import (
    BrokerPushSource,
    LocalPushSource,
    TransportUnavailableError,
    build_push_source,
    channel_topic,
)


@pytest.mark.anyio("asyncio")
async def test_join_requires_connection():
    source = LocalPushSource()

    async def handler(payload: dict[str, Any]) -> None:  # pragma: no cover - never delivered
        raise AssertionError(payload)

    with pytest.raises(TransportUnavailableError):
        await source.join("general", handler)


@pytest.mark.anyio("asyncio")
async def test_events_reach_only_members_of_the_channel():
    source = LocalPushSource()
    await source.connect()
    general: list[dict[str, Any]] = []
    random_channel: list[dict[str, Any]] = []

    async def on_general(payload: dict[str, Any]) -> None:
        general.append(payload)

    async def on_random(payload: dict[str, Any]) -> None:
        random_channel.append(payload)

    await source.join("general", on_general)
    await source.join("random", on_random)

    await source.publish("general", {"type": "ping"})

    assert general == [{"type": "ping"}]
    assert random_channel == []


@pytest.mark.anyio("asyncio")
async def test_leave_is_idempotent_and_stops_delivery():
    source = LocalPushSource()
    await source.connect()
    received: list[dict[str, Any]] = []

    async def handler(payload: dict[str, Any]) -> None:
        received.append(payload)

    membership = await source.join("general", handler)
    await membership.leave()
    await membership.leave()

    assert not membership.active
    assert await source.emit("general", {"type": "ping"}) == 0
    assert received == []


@pytest.mark.anyio("asyncio")
async def test_failing_handler_does_not_block_other_members(caplog):
    source = LocalPushSource()
    await source.connect()
    received: list[dict[str, Any]] = []

    async def broken(payload: dict[str, Any]) -> None:
        raise RuntimeError("boom")

    async def healthy(payload: dict[str, Any]) -> None:
        received.append(payload)

    await source.join("general", broken)
    await source.join("general", healthy)

    with caplog.at_level(logging.ERROR):
        delivered = await source.emit("general", {"type": "ping"})

    assert delivered == 2
    assert received == [{"type": "ping"}]
    assert any("Push handler failed" in record.getMessage() for record in caplog.records)


@pytest.mark.anyio("asyncio")
async def test_disconnect_drops_all_memberships():
    source = LocalPushSource()
    await source.connect()

    async def handler(payload: dict[str, Any]) -> None:  # pragma: no cover - never delivered
        raise AssertionError(payload)

    await source.join("general", handler)
    await source.disconnect()

    assert not source.connected
    assert await source.emit("general", {"type": "ping"}) == 0


def test_channel_topic_is_namespaced_by_channel():
    assert channel_topic("42") == "channels.42"


def test_build_push_source_selects_backend():
    local = build_push_source(SimpleNamespace(realtime_backend="local"))
    broker = build_push_source(
        SimpleNamespace(
            realtime_backend="redis",
            realtime_redis_url="redis://localhost:6379/0",
            realtime_nats_url=None,
            realtime_namespace="murmur.realtime",
            realtime_node_id="node-1",
        )
    )

    assert isinstance(local, LocalPushSource)
    assert isinstance(broker, BrokerPushSource)
    assert not broker.connected
