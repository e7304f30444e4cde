"""Incrementally updatable reply forest for one channel view."""

from __future__ import annotations

import logging
from typing import Iterable, Iterator, Mapping

from app.monitoring.metrics import thread_inserts_total
from app.schemas.messages import Message, MessagePatch

from .assembler import ThreadForest, ThreadNode, assemble_threads, creates_cycle


logger = logging.getLogger(__name__)


class ThreadStore:
    """Mutable reply forest with idempotent merge semantics.

    All writes go through :meth:`merge_insert`, :meth:`update` and
    :meth:`remove`; the node arena itself is never handed out. Nodes refer to
    each other by message id only.
    """

    def __init__(self, forest: ThreadForest | None = None, *, channel_id: str | None = None) -> None:
        if forest is None:
            forest = ThreadForest(channel_id=channel_id)
        self._channel_id = channel_id if channel_id is not None else forest.channel_id
        self._roots: list[str] = list(forest.roots)
        # Own copies so later writes never reach the caller's forest.
        self._nodes: dict[str, ThreadNode] = {
            node_id: ThreadNode(node.message, node.parent_id, list(node.children))
            for node_id, node in forest.nodes.items()
        }
        self._removed: set[str] = set()

    @classmethod
    def from_messages(
        cls, messages: Iterable[Message], *, channel_id: str | None = None
    ) -> "ThreadStore":
        return cls(assemble_threads(messages, channel_id=channel_id), channel_id=channel_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    @property
    def channel_id(self) -> str | None:
        return self._channel_id

    def get(self, message_id: str) -> ThreadNode | None:
        return self._nodes.get(message_id)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def ids(self) -> set[str]:
        return set(self._nodes)

    def roots(self) -> list[ThreadNode]:
        return [self._nodes[root_id] for root_id in self._roots]

    def children(self, message_id: str) -> list[ThreadNode]:
        node = self._nodes.get(message_id)
        if node is None:
            return []
        return [self._nodes[child_id] for child_id in node.children]

    def was_removed(self, message_id: str) -> bool:
        return message_id in self._removed

    def walk(self) -> Iterator[tuple[int, ThreadNode]]:
        return self._view().walk()

    def shape(self) -> tuple:
        return self._view().shape()

    def _view(self) -> ThreadForest:
        return ThreadForest(channel_id=self._channel_id, roots=self._roots, nodes=self._nodes)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def merge_insert(self, message: Message) -> bool:
        """Insert ``message`` unless its id is already present.

        Returns True when a node was created. Existing nodes are left
        untouched; content changes go through :meth:`update`.
        """

        if message.id in self._nodes:
            thread_inserts_total.labels("duplicate").inc()
            return False
        if self._channel_id is not None and message.channel_id != self._channel_id:
            thread_inserts_total.labels("foreign").inc()
            logger.debug(
                "Ignoring message for another channel",
                extra={"message_id": message.id, "channel_id": message.channel_id},
            )
            return False

        node = ThreadNode(message=message)
        self._nodes[message.id] = node
        self._removed.discard(message.id)
        parent_ref = message.parent_message_id
        parent = self._nodes.get(parent_ref) if parent_ref and parent_ref != message.id else None
        if parent is not None:
            node.parent_id = parent.id
            parent.children.append(node.id)
        else:
            self._roots.append(node.id)

        adopted = self._adopt_waiting_replies(node)
        thread_inserts_total.labels("inserted").inc()
        if adopted:
            logger.debug(
                "Reattached replies that arrived before their parent",
                extra={"message_id": node.id, "adopted": adopted},
            )
        return True

    def update(self, message_id: str, patch: MessagePatch | Mapping[str, object]) -> bool:
        """Apply ``patch`` to the stored message in place; unknown ids are ignored."""

        node = self._nodes.get(message_id)
        if node is None:
            logger.debug("Ignoring update for unknown message", extra={"message_id": message_id})
            return False
        if not isinstance(patch, MessagePatch):
            patch = MessagePatch.model_validate(patch)
        for name, value in patch.changes().items():
            setattr(node.message, name, value)
        return True

    def remove(self, message_id: str) -> bool:
        """Drop a message; its replies become roots so their content stays visible."""

        node = self._nodes.pop(message_id, None)
        if node is None:
            logger.debug("Ignoring removal of unknown message", extra={"message_id": message_id})
            return False

        if node.parent_id is not None:
            parent = self._nodes.get(node.parent_id)
            if parent is not None:
                parent.children.remove(message_id)
        else:
            self._roots.remove(message_id)

        for child_id in node.children:
            child = self._nodes[child_id]
            child.parent_id = None
            self._insert_root(child)

        node.children = []
        self._removed.add(message_id)
        return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _insert_root(self, node: ThreadNode) -> None:
        key = node.message.sort_key
        for index, root_id in enumerate(self._roots):
            if self._nodes[root_id].message.sort_key > key:
                self._roots.insert(index, node.id)
                return
        self._roots.append(node.id)

    def _adopt_waiting_replies(self, node: ThreadNode) -> int:
        waiting = [
            root_id
            for root_id in self._roots
            if root_id != node.id
            and self._nodes[root_id].message.parent_message_id == node.id
            and not creates_cycle(self._nodes, root_id, node.id)
        ]
        for root_id in waiting:
            self._roots.remove(root_id)
            self._nodes[root_id].parent_id = node.id
            node.children.append(root_id)
        return len(waiting)
