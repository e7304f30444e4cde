"""Pub/sub transport carrying channel push events between nodes."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import redis.asyncio as redis_asyncio
from redis.exceptions import RedisError

try:  # pragma: no cover - optional dependency
    import nats
    from nats.errors import Error as NatsError
except ImportError:  # pragma: no cover - NATS support is an optional extra
    nats = None
    NatsError = None  # type: ignore[assignment,misc]

from app.monitoring.metrics import realtime_subscriptions, realtime_transport_restarts_total


logger = logging.getLogger(__name__)

_REDIS_ERRORS: tuple[type[BaseException], ...] = (
    RedisError,
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
)
_NATS_ERRORS: tuple[type[BaseException], ...] = (
    (NatsError, ConnectionError, TimeoutError, asyncio.TimeoutError)
    if NatsError is not None
    else (ConnectionError, TimeoutError, asyncio.TimeoutError)
)

_RECOVERY_BASE_DELAY = 0.5
_RECOVERY_MAX_DELAY = 30.0


MessageHandler = Callable[[dict[str, Any]], Awaitable[None]]


@dataclass(slots=True)
class BrokerConfig:
    """Configuration used for wiring the pub/sub transport."""

    redis_url: str | None
    redis_prefix: str = "murmur.realtime"
    nats_url: str | None = None
    nats_prefix: str = "murmur.realtime"
    node_id: str | None = None


class TransportUnavailableError(RuntimeError):
    """Raised when the requested broker backend cannot be used."""


class Subscription:
    """Closable handle for one topic subscription."""

    def __init__(
        self,
        name: str,
        cleanup: Callable[[], Awaitable[None]],
        task: asyncio.Task[Any] | None = None,
    ) -> None:
        self._name = name
        self._cleanup = cleanup
        self._task = task
        self._closed = False

    @property
    def name(self) -> str:
        return self._name

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        await self._cleanup()


@dataclass(slots=True)
class _RedisReader:
    """Bookkeeping for one Redis channel subscription, kept across reconnects."""

    topic: str
    channel: str
    handler: MessageHandler
    subscription: Subscription | None = None
    task: asyncio.Task[Any] | None = None
    pubsub: Any | None = None
    active: bool = True
    suspending: bool = False
    counted: bool = False


def _backoff(attempt: int) -> float:
    return min(_RECOVERY_BASE_DELAY * 2**attempt, _RECOVERY_MAX_DELAY)


def _decode(raw: Any) -> dict[str, Any] | None:
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8")
    if not isinstance(raw, str):
        return None
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return payload if isinstance(payload, dict) else None


class PubSubTransport:
    """JSON pub/sub over Redis, with NATS as an alternative backend.

    Redis subscriptions survive connection loss: a failed reader or publish
    schedules a reconnect with exponential backoff, after which every active
    subscription is attached again.
    """

    def __init__(self, config: BrokerConfig) -> None:
        self._config = config
        self._redis: Any | None = None
        self._readers: list[_RedisReader] = []
        self._recovery_lock = asyncio.Lock()
        self._recovery_task: asyncio.Task[Any] | None = None
        self._nats: Any | None = None
        self._subject_subscriptions: list[Subscription] = []
        self._nats_missing_reported = False

    @property
    def connected(self) -> bool:
        return self._redis is not None or (self._nats is not None and self._nats.is_connected)

    async def start(self) -> None:
        """Connect every configured broker; already connected ones are left alone."""

        if self._config.redis_url and self._redis is None:
            await self._connect_redis()
        if self._config.nats_url:
            await self._connect_nats()

    async def stop(self) -> None:
        readers, self._readers = list(self._readers), []
        for reader in readers:
            if reader.subscription is not None:
                await reader.subscription.close()
        recovery, self._recovery_task = self._recovery_task, None
        if recovery is not None:
            recovery.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await recovery
        subjects, self._subject_subscriptions = list(self._subject_subscriptions), []
        for subscription in subjects:
            await subscription.close()
        redis_client, self._redis = self._redis, None
        if redis_client is not None:
            await redis_client.close()
        nats_client, self._nats = self._nats, None
        if nats_client is not None and nats_client.is_connected:  # pragma: no cover - nats optional
            await nats_client.drain()
            await nats_client.close()

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------
    async def publish(
        self,
        topic: str,
        payload: dict[str, Any],
        *,
        backend: str | None = None,
    ) -> None:
        target = backend or self._pick_backend()
        encoded = json.dumps(payload, default=str)
        if target == "redis":
            if self._redis is None:
                await self.start()
            if self._redis is None:
                raise TransportUnavailableError("Redis push broker is not configured")
            channel = self._qualify(self._config.redis_prefix, topic)
            try:
                await self._redis.publish(channel, encoded)
            except _REDIS_ERRORS as exc:
                self._schedule_recovery("publish_failed")
                raise TransportUnavailableError("Redis push broker is unreachable") from exc
            logger.debug("Published push event via Redis", extra={"channel": channel})
            return
        if target == "nats":
            nats_client = self._require_nats()
            subject = self._qualify(self._config.nats_prefix, topic)
            try:
                await nats_client.publish(subject, encoded.encode("utf-8"))
            except _NATS_ERRORS as exc:  # pragma: no cover - nats optional
                raise TransportUnavailableError("NATS push broker is unreachable") from exc
            logger.debug("Published push event via NATS", extra={"subject": subject})
            return
        raise TransportUnavailableError(f"Unknown push broker '{target}'")

    # ------------------------------------------------------------------
    # Subscribing
    # ------------------------------------------------------------------
    async def subscribe(
        self,
        topic: str,
        handler: MessageHandler,
        *,
        backend: str | None = None,
    ) -> Subscription:
        target = backend or self._pick_backend()
        if target == "redis":
            return await self._subscribe_redis(topic, handler)
        if target == "nats":
            return await self._subscribe_nats(topic, handler)
        raise TransportUnavailableError(f"Unknown push broker '{target}'")

    async def _subscribe_redis(self, topic: str, handler: MessageHandler) -> Subscription:
        if self._redis is None:
            await self.start()
        if self._redis is None:
            raise TransportUnavailableError("Redis push broker is not configured")
        channel = self._qualify(self._config.redis_prefix, topic)
        reader = _RedisReader(topic=topic, channel=channel, handler=handler)

        async def cleanup() -> None:
            await self._retire_reader(reader)

        reader.subscription = Subscription(channel, cleanup)
        self._readers.append(reader)
        try:
            await self._attach_reader(reader)
        except Exception as exc:
            await self._retire_reader(reader)
            self._schedule_recovery("subscribe_failed")
            if isinstance(exc, TransportUnavailableError):
                raise
            raise TransportUnavailableError("Redis push broker is unreachable") from exc
        reader.counted = True
        realtime_subscriptions.labels("redis").inc()
        return reader.subscription

    async def _subscribe_nats(self, topic: str, handler: MessageHandler) -> Subscription:
        nats_client = self._require_nats()
        subject = self._qualify(self._config.nats_prefix, topic)

        async def callback(message: Any) -> None:  # pragma: no cover - nats optional
            payload = _decode(message.data)
            if payload is None:
                logger.warning("Discarded malformed push payload", extra={"subject": subject})
                return
            await handler(payload)

        nats_subscription = await nats_client.subscribe(subject, cb=callback)

        async def cleanup() -> None:
            await nats_subscription.unsubscribe()
            realtime_subscriptions.labels("nats").dec()
            if wrapper in self._subject_subscriptions:
                self._subject_subscriptions.remove(wrapper)

        wrapper = Subscription(subject, cleanup)
        self._subject_subscriptions.append(wrapper)
        realtime_subscriptions.labels("nats").inc()
        return wrapper

    # ------------------------------------------------------------------
    # Redis connection management
    # ------------------------------------------------------------------
    async def _connect_redis(self) -> None:
        client = redis_asyncio.from_url(
            self._config.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
        try:
            await client.ping()
        except OSError:
            logger.exception("Could not reach the Redis push broker")
            await client.close()
            raise
        self._redis = client

    async def _connect_nats(self) -> None:
        if nats is None:
            if not self._nats_missing_reported:
                logger.info("NATS push broker configured without the 'nats' extra; ignoring it")
                self._nats_missing_reported = True
            return
        if self._nats is None:
            self._nats = nats.aio.client.Client()
        if self._nats.is_connected:
            return
        try:
            await self._nats.connect(self._config.nats_url, name=self._config.node_id)
        except Exception:  # pragma: no cover - depends on a live broker
            logger.exception("Could not reach the NATS push broker")
            raise

    async def _attach_reader(self, reader: _RedisReader) -> None:
        if self._redis is None:
            raise TransportUnavailableError("Redis push broker is not configured")
        pubsub = self._redis.pubsub()
        try:
            await pubsub.subscribe(reader.channel)
        except _REDIS_ERRORS as exc:
            await pubsub.close()
            raise TransportUnavailableError("Redis push broker is unreachable") from exc
        reader.pubsub = pubsub

        async def pump() -> None:
            try:
                async for message in pubsub.listen():
                    if message.get("type") != "message":
                        continue
                    payload = _decode(message.get("data"))
                    if payload is None:
                        logger.warning(
                            "Discarded malformed push payload", extra={"channel": reader.channel}
                        )
                        continue
                    await reader.handler(payload)
            finally:
                with contextlib.suppress(Exception):
                    await pubsub.unsubscribe(reader.channel)
                with contextlib.suppress(Exception):
                    await pubsub.close()

        task = asyncio.create_task(pump(), name=f"push-redis-{reader.channel}")
        reader.task = task
        if reader.subscription is not None:
            reader.subscription._task = task
        task.add_done_callback(
            lambda finished: asyncio.create_task(self._reader_finished(reader, finished))
        )

    async def _suspend_reader(self, reader: _RedisReader) -> None:
        reader.suspending = True
        task = reader.task
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        reader.task = None
        pubsub = reader.pubsub
        if pubsub is not None:
            with contextlib.suppress(Exception):
                await pubsub.unsubscribe(reader.channel)
            with contextlib.suppress(Exception):
                await pubsub.close()
        reader.pubsub = None
        reader.suspending = False

    async def _retire_reader(self, reader: _RedisReader) -> None:
        reader.active = False
        await self._suspend_reader(reader)
        if reader in self._readers:
            self._readers.remove(reader)
        if reader.counted:
            reader.counted = False
            realtime_subscriptions.labels("redis").dec()

    async def _reader_finished(self, reader: _RedisReader, task: asyncio.Task[Any]) -> None:
        reader.task = None
        reader.pubsub = None
        if not reader.active or reader.suspending or task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(
                "Push reader for a Redis channel failed; reconnecting",
                exc_info=exc,
                extra={"channel": reader.channel},
            )
        else:
            logger.warning(
                "Push reader for a Redis channel ended; reconnecting",
                extra={"channel": reader.channel},
            )
        self._schedule_recovery("reader_stopped")

    def _schedule_recovery(self, reason: str) -> None:
        if self._config.redis_url is None:
            return
        if self._recovery_task is not None and not self._recovery_task.done():
            return
        logger.info("Redis push broker recovery scheduled", extra={"reason": reason})
        self._recovery_task = asyncio.create_task(
            self._recover(reason), name="push-redis-recovery"
        )

    async def _recover(self, reason: str) -> None:
        attempt = 0
        while True:
            await asyncio.sleep(_backoff(attempt))
            try:
                await self._reconnect_redis()
            except Exception:
                attempt += 1
                logger.exception(
                    "Redis push broker reconnect attempt failed",
                    extra={"attempt": attempt, "reason": reason},
                )
                continue
            break
        self._recovery_task = None
        realtime_transport_restarts_total.labels("redis", reason).inc()
        logger.info(
            "Redis realtime backend recovered",
            extra={"reason": reason, "subscriptions": len(self._readers)},
        )

    async def _reconnect_redis(self) -> None:
        async with self._recovery_lock:
            for reader in list(self._readers):
                await self._suspend_reader(reader)
            if self._redis is not None:
                with contextlib.suppress(Exception):
                    await self._redis.close()
                self._redis = None
            await self._connect_redis()
            for reader in [reader for reader in self._readers if reader.active]:
                await self._attach_reader(reader)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _require_nats(self) -> Any:
        if self._nats is None:
            raise TransportUnavailableError(
                "NATS backend is unavailable (install the 'nats' extra to enable it)"
            )
        if not self._nats.is_connected:
            raise TransportUnavailableError("NATS push broker is not connected")
        return self._nats

    @staticmethod
    def _qualify(prefix: str, topic: str) -> str:
        prefix = prefix.rstrip(".")
        return f"{prefix}.{topic}" if prefix else topic

    def _pick_backend(self) -> str:
        if self._redis is not None:
            return "redis"
        if self._nats is not None and self._nats.is_connected:
            return "nats"
        raise TransportUnavailableError("No push broker is configured")
