"""Push sources delivering channel-scoped events to live update mergers."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, Protocol, Set

from .transport import BrokerConfig, PubSubTransport, Subscription, TransportUnavailableError


logger = logging.getLogger(__name__)

EventHandler = Callable[[dict[str, Any]], Awaitable[None]]


def channel_topic(channel_id: str) -> str:
    return f"channels.{channel_id}"


class ChannelMembership:
    """Result of joining a channel; ``leave()`` ends delivery to the handler."""

    def __init__(self, channel_id: str, leave: Callable[[], Awaitable[None]]) -> None:
        self.channel_id = channel_id
        self._leave = leave
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    async def leave(self) -> None:
        if not self._active:
            return
        self._active = False
        await self._leave()


class PushSource(Protocol):
    """Connection handle owned by whoever opens channel views."""

    @property
    def connected(self) -> bool: ...

    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    async def join(self, channel_id: str, handler: EventHandler) -> ChannelMembership: ...

    async def publish(self, channel_id: str, payload: dict[str, Any]) -> None: ...


class LocalPushSource:
    """In-process fan-out for single-node deployments and tests."""

    def __init__(self) -> None:
        self._handlers: Dict[str, Set[EventHandler]] = defaultdict(set)
        self._lock = asyncio.Lock()
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        self._connected = True

    async def disconnect(self) -> None:
        async with self._lock:
            self._handlers.clear()
        self._connected = False

    async def join(self, channel_id: str, handler: EventHandler) -> ChannelMembership:
        if not self._connected:
            raise TransportUnavailableError("Push source is not connected")
        async with self._lock:
            self._handlers[channel_id].add(handler)

        async def leave() -> None:
            async with self._lock:
                handlers = self._handlers.get(channel_id)
                if not handlers:
                    return
                handlers.discard(handler)
                if not handlers:
                    self._handlers.pop(channel_id, None)

        return ChannelMembership(channel_id, leave)

    async def publish(self, channel_id: str, payload: dict[str, Any]) -> None:
        await self.emit(channel_id, payload)

    async def emit(self, channel_id: str, payload: dict[str, Any]) -> int:
        """Deliver ``payload`` to every handler joined to ``channel_id``."""

        async with self._lock:
            targets = list(self._handlers.get(channel_id, set()))
        for handler in targets:
            try:
                await handler(dict(payload))
            except Exception:
                logger.exception("Push handler failed", extra={"channel_id": channel_id})
        return len(targets)


class BrokerPushSource:
    """Push source backed by the Redis/NATS pub/sub transport."""

    def __init__(self, transport: PubSubTransport, *, backend: str | None = None) -> None:
        self._transport = transport
        self._backend = backend
        self._memberships: set[ChannelMembership] = set()

    @property
    def connected(self) -> bool:
        return self._transport.connected

    async def connect(self) -> None:
        await self._transport.start()

    async def disconnect(self) -> None:
        for membership in list(self._memberships):
            await membership.leave()
        await self._transport.stop()

    async def join(self, channel_id: str, handler: EventHandler) -> ChannelMembership:
        subscription: Subscription = await self._transport.subscribe(
            channel_topic(channel_id), handler, backend=self._backend
        )

        async def leave() -> None:
            self._memberships.discard(membership)
            await subscription.close()

        membership = ChannelMembership(channel_id, leave)
        self._memberships.add(membership)
        return membership

    async def publish(self, channel_id: str, payload: dict[str, Any]) -> None:
        await self._transport.publish(channel_topic(channel_id), payload, backend=self._backend)


def build_push_source(settings: Any) -> PushSource:
    """Construct the push source selected by ``settings.realtime_backend``."""

    if settings.realtime_backend == "local":
        return LocalPushSource()
    transport = PubSubTransport(
        BrokerConfig(
            redis_url=settings.realtime_redis_url,
            redis_prefix=settings.realtime_namespace,
            nats_url=settings.realtime_nats_url,
            nats_prefix=settings.realtime_namespace,
            node_id=settings.realtime_node_id,
        )
    )
    return BrokerPushSource(transport, backend=settings.realtime_backend)
