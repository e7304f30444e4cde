"""Apply a channel's push events to its thread store."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from app.monitoring.metrics import live_events_total
from app.schemas.events import (
    MessageDeletedEvent,
    MessageUpdatedEvent,
    NewMessageEvent,
    PushEvent,
    ReactionEvent,
    parse_push_event,
)
from app.schemas.messages import MessagePatch

from ..reactions.ledger import ReactionLedger
from ..threads.store import ThreadStore
from .push import ChannelMembership, PushSource


logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = frozenset({"content", "is_edited", "updated_at", "deleted_at", "reactions"})


class LiveUpdateMerger:
    """Merge live events for one channel into a :class:`ThreadStore`.

    Duplicate deliveries are harmless because every event is applied through
    the store's idempotent operations. Events received before a store is
    attached are held and replayed, in arrival order, by :meth:`attach`.
    """

    def __init__(self, channel_id: str, push_source: PushSource) -> None:
        self._channel_id = channel_id
        self._push = push_source
        self._store: ThreadStore | None = None
        self._pending: list[PushEvent] = []
        self._membership: ChannelMembership | None = None
        self._stopped = False

    @property
    def channel_id(self) -> str:
        return self._channel_id

    @property
    def joined(self) -> bool:
        return self._membership is not None and self._membership.active

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def start(self) -> None:
        if self._membership is not None:
            return
        self._stopped = False
        self._membership = await self._push.join(self._channel_id, self.handle)
        logger.debug("Joined channel push topic", extra={"channel_id": self._channel_id})

    async def stop(self) -> None:
        self._stopped = True
        self._store = None
        self._pending.clear()
        membership, self._membership = self._membership, None
        if membership is not None:
            await membership.leave()
            logger.debug("Left channel push topic", extra={"channel_id": self._channel_id})

    def attach(self, store: ThreadStore) -> int:
        """Start merging into ``store``; returns the number of replayed events."""

        self._store = store
        pending, self._pending = self._pending, []
        for event in pending:
            self.apply(event)
        return len(pending)

    def detach(self) -> ThreadStore | None:
        """Stop writing to the current store and buffer events until the next attach."""

        store, self._store = self._store, None
        return store

    async def handle(self, payload: dict[str, Any]) -> None:
        try:
            event = parse_push_event(payload)
        except ValidationError:
            live_events_total.labels(str(payload.get("type", "unknown")), "malformed").inc()
            logger.warning(
                "Discarded malformed push event", extra={"channel_id": self._channel_id}
            )
            return

        if event.channel_id is not None and event.channel_id != self._channel_id:
            live_events_total.labels(event.type, "foreign").inc()
            return
        if self._stopped:
            live_events_total.labels(event.type, "dropped").inc()
            return
        if self._store is None:
            self._pending.append(event)
            live_events_total.labels(event.type, "buffered").inc()
            return
        self.apply(event)

    def apply(self, event: PushEvent) -> bool:
        store = self._store
        if store is None:
            raise RuntimeError("No thread store attached")

        if isinstance(event, NewMessageEvent):
            applied = self._apply_new_message(store, event)
        elif isinstance(event, MessageUpdatedEvent):
            applied = self._apply_update(store, event)
        elif isinstance(event, MessageDeletedEvent):
            applied = self._apply_delete(store, event)
        else:
            applied = self._apply_reaction(store, event)

        live_events_total.labels(event.type, "applied" if applied else "ignored").inc()
        return applied

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------
    @staticmethod
    def _apply_new_message(store: ThreadStore, event: NewMessageEvent) -> bool:
        if store.was_removed(event.message.id):
            return False
        return store.merge_insert(event.message)

    @staticmethod
    def _apply_update(store: ThreadStore, event: MessageUpdatedEvent) -> bool:
        incoming = event.message
        node = store.get(incoming.id)
        if node is None:
            return False
        held = node.message
        if (
            incoming.updated_at is not None
            and held.updated_at is not None
            and incoming.updated_at < held.updated_at
        ):
            logger.debug("Ignoring stale message update", extra={"message_id": incoming.id})
            return False
        # Only fields the payload carried; omitted ones keep the held values.
        fields = incoming.model_fields_set & _UPDATABLE_FIELDS
        patch = MessagePatch(**{name: getattr(incoming, name) for name in fields})
        return store.update(incoming.id, patch)

    @staticmethod
    def _apply_delete(store: ThreadStore, event: MessageDeletedEvent) -> bool:
        if event.hard:
            return store.remove(event.message_id)
        deleted_at = event.deleted_at or datetime.now(timezone.utc)
        return store.update(event.message_id, MessagePatch(deleted_at=deleted_at))

    @staticmethod
    def _apply_reaction(store: ThreadStore, event: ReactionEvent) -> bool:
        node = store.get(event.message_id)
        if node is None:
            return False
        ledger = ReactionLedger(node.message.reactions)
        if event.type == "reaction_added":
            changed = ledger.add(event.emoji, event.user_id)
        else:
            changed = ledger.discard(event.emoji, event.user_id)
        if changed:
            store.update(event.message_id, MessagePatch(reactions=ledger.entries()))
        return changed
