"""Channel view sessions and the registry the gateway keeps them in."""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Dict

from app.core.errors import ViewClosedError
from app.models.enums import ChannelAction, ViewState
from app.monitoring.metrics import channel_views_open
from app.schemas.messages import Message, MessagePatch, ReactionSummary
from app.schemas.threads import ThreadForestRead, ThreadNodeRead, ViewRead
from murmur.reactions import ReactionLedger
from murmur.realtime import LiveUpdateMerger, PushSource
from murmur.threads import ThreadNode, ThreadStore

from .chat_api import ChatApiClient
from .permissions import MembershipGate


logger = logging.getLogger(__name__)


class ChannelSession:
    """State of one open channel view.

    Opening joins the channel's push topic before fetching the batch so no
    message published in between is missed; events that arrive while the
    batch is in flight are replayed once the forest exists. Every collaborator
    result that resolves after :meth:`close` is dropped.
    """

    def __init__(
        self,
        channel_id: str,
        *,
        viewer_id: str,
        api: ChatApiClient,
        push: PushSource,
        gate: MembershipGate | None = None,
        view_id: str | None = None,
    ) -> None:
        self.id = view_id or uuid.uuid4().hex
        self.channel_id = channel_id
        self.viewer_id = viewer_id
        self._api = api
        self._push = push
        self._gate = gate
        self._merger = LiveUpdateMerger(channel_id, push)
        self._store: ThreadStore | None = None
        self._state = ViewState.IDLE

    @property
    def state(self) -> ViewState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._state is ViewState.CLOSED

    @property
    def gate(self) -> MembershipGate | None:
        return self._gate

    @property
    def store(self) -> ThreadStore:
        if self._store is None:
            raise ViewClosedError(f"Channel view {self.id} has no thread store")
        return self._store

    async def open(self) -> None:
        if self._state is not ViewState.IDLE:
            raise RuntimeError(f"Channel view {self.id} is already {self._state.value}")
        self._state = ViewState.LOADING
        try:
            await self._merger.start()
            messages = await self._api.fetch_messages(self.channel_id)
            if self._gate is None:
                role = await self._api.fetch_member_role(self.channel_id, self.viewer_id)
                self._gate = MembershipGate(self.viewer_id, role)
        except BaseException:
            if not self.closed:
                await self._merger.stop()
                self._merger = LiveUpdateMerger(self.channel_id, self._push)
                self._state = ViewState.IDLE
            raise

        if self.closed:
            logger.debug("Dropping channel batch for closed view", extra={"view_id": self.id})
            return
        self._install(messages)
        self._state = ViewState.READY
        logger.info(
            "Channel view ready",
            extra={"view_id": self.id, "channel_id": self.channel_id, "messages": len(messages)},
        )

    async def resync(self) -> None:
        """Rebuild the forest from a fresh batch, e.g. after a long push outage."""

        self._require_ready()
        # Events pushed while the batch is in flight are replayed onto the new forest.
        previous = self._merger.detach()
        try:
            messages = await self._api.fetch_messages(self.channel_id)
        except BaseException:
            if not self.closed and previous is not None:
                self._merger.attach(previous)
            raise
        if self.closed:
            return
        self._install(messages)

    async def close(self) -> None:
        if self.closed:
            return
        self._state = ViewState.CLOSED
        self._store = None
        await self._merger.stop()
        logger.info("Channel view closed", extra={"view_id": self.id})

    def _install(self, messages: list[Message]) -> None:
        store = ThreadStore.from_messages(messages, channel_id=self.channel_id)
        self._store = store
        replayed = self._merger.attach(store)
        if replayed:
            logger.debug(
                "Replayed push events received during fetch",
                extra={"view_id": self.id, "events": replayed},
            )

    def _require_ready(self) -> ThreadStore:
        if self._state is not ViewState.READY or self._store is None:
            raise ViewClosedError(f"Channel view {self.id} is {self._state.value}")
        return self._store

    def _require_gate(self) -> MembershipGate:
        if self._gate is None:
            raise ViewClosedError(f"Channel view {self.id} has no membership information")
        return self._gate

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    async def send(self, content: str, *, parent_id: str | None = None) -> Message:
        self._require_ready()
        self._require_gate().ensure(ChannelAction.SEND_MESSAGES)
        message = await self._api.send_message(self.channel_id, content, parent_id=parent_id)
        if self.closed:
            logger.debug("Dropping send result for closed view", extra={"view_id": self.id})
            return message
        self.store.merge_insert(message)
        return message

    async def edit(self, message_id: str, content: str) -> Message | None:
        store = self._require_ready()
        node = store.get(message_id)
        if node is None:
            return None
        self._require_gate().ensure_can_edit(node.message)
        updated = await self._api.update_message(message_id, content)
        if self.closed:
            return updated
        self.store.update(
            message_id,
            MessagePatch(
                content=updated.content,
                is_edited=True,
                updated_at=updated.updated_at or datetime.now(timezone.utc),
            ),
        )
        return updated

    async def delete(self, message_id: str, *, hard: bool = False) -> bool:
        """Return ``True`` once the server accepted the delete, ``False`` for unknown ids."""

        store = self._require_ready()
        node = store.get(message_id)
        if node is None:
            return False
        self._require_gate().ensure_can_delete(node.message, hard=hard)
        await self._api.delete_message(message_id, hard=hard)
        if self.closed:
            return True
        # A push may already have applied the same delete.
        if hard:
            self.store.remove(message_id)
        else:
            self.store.update(message_id, MessagePatch(deleted_at=datetime.now(timezone.utc)))
        return True

    async def toggle_reaction(self, message_id: str, emoji: str) -> list[ReactionSummary] | None:
        """Add or remove the viewer's ``emoji`` depending on the current state.

        The local ledger is only written after the server accepted the change,
        using the idempotent primitive so a push for the same reaction that
        lands first does not flip it back.
        """

        store = self._require_ready()
        node = store.get(message_id)
        if node is None:
            return None
        self._require_gate().ensure(ChannelAction.ADD_REACTIONS)

        reacted = ReactionLedger(node.message.reactions).has_reacted(emoji, self.viewer_id)
        if reacted:
            await self._api.remove_reaction(message_id, emoji)
        else:
            await self._api.add_reaction(message_id, emoji)
        if self.closed:
            return None

        node = self.store.get(message_id)
        if node is None:
            return None
        ledger = ReactionLedger(node.message.reactions)
        if reacted:
            ledger.discard(emoji, self.viewer_id)
        else:
            ledger.add(emoji, self.viewer_id)
        self.store.update(message_id, MessagePatch(reactions=ledger.entries()))
        return ledger.grouped(self.viewer_id)

    # ------------------------------------------------------------------
    # Read models
    # ------------------------------------------------------------------
    def describe(self) -> ViewRead:
        return ViewRead(
            id=self.id,
            channel_id=self.channel_id,
            viewer_id=self.viewer_id,
            state=self._state,
            role=self._gate.role if self._gate is not None else None,
            message_count=len(self._store) if self._store is not None else 0,
        )

    def forest(self) -> ThreadForestRead:
        store = self._require_ready()

        def build(node: ThreadNode) -> ThreadNodeRead:
            replies = [build(child) for child in store.children(node.id)]
            return ThreadNodeRead(
                message=node.message,
                reactions=ReactionLedger(node.message.reactions).grouped(self.viewer_id),
                reply_count=len(replies),
                replies=replies,
            )

        return ThreadForestRead(
            channel_id=self.channel_id,
            message_count=len(store),
            roots=[build(root) for root in store.roots()],
        )


ApiFactory = Callable[[str | None], ChatApiClient]


class ViewRegistry:
    """Tracks the channel views opened through the gateway."""

    def __init__(self, push: PushSource, *, api_factory: ApiFactory | None = None) -> None:
        self._push = push
        self._api_factory: ApiFactory = api_factory or (lambda token: ChatApiClient(token=token))
        self._views: Dict[str, ChannelSession] = {}
        self._lock = asyncio.Lock()

    @property
    def push(self) -> PushSource:
        return self._push

    def __len__(self) -> int:
        return len(self._views)

    def get(self, view_id: str) -> ChannelSession | None:
        return self._views.get(view_id)

    async def open_view(
        self, channel_id: str, viewer_id: str, *, access_token: str | None = None
    ) -> ChannelSession:
        session = ChannelSession(
            channel_id,
            viewer_id=viewer_id,
            api=self._api_factory(access_token),
            push=self._push,
        )
        async with self._lock:
            self._views[session.id] = session
            channel_views_open.set(len(self._views))
        try:
            await session.open()
        except BaseException:
            await self.close_view(session.id)
            raise
        return session

    async def close_view(self, view_id: str) -> bool:
        async with self._lock:
            session = self._views.pop(view_id, None)
            channel_views_open.set(len(self._views))
        if session is None:
            return False
        await session.close()
        return True

    async def close_all(self) -> None:
        async with self._lock:
            sessions = list(self._views.values())
            self._views.clear()
            channel_views_open.set(0)
        for session in sessions:
            await session.close()
