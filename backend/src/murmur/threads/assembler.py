"""Build reply forests from an unordered batch of channel messages."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Iterator, Mapping

from app.schemas.messages import Message


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ThreadNode:
    """A message plus the ids of the replies attached beneath it.

    ``parent_id`` is the structural parent the node is attached to. It is
    ``None`` for roots, including replies whose declared parent is missing.
    """

    message: Message
    parent_id: str | None = None
    children: list[str] = field(default_factory=list)

    @property
    def id(self) -> str:
        return self.message.id

    @property
    def is_root(self) -> bool:
        return self.parent_id is None


@dataclass(slots=True)
class ThreadForest:
    """Root ids in display order plus the id -> node arena."""

    channel_id: str | None
    roots: list[str] = field(default_factory=list)
    nodes: dict[str, ThreadNode] = field(default_factory=dict)

    def get(self, message_id: str) -> ThreadNode | None:
        return self.nodes.get(message_id)

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self.nodes

    def root_nodes(self) -> list[ThreadNode]:
        return [self.nodes[root_id] for root_id in self.roots]

    def children_of(self, message_id: str) -> list[ThreadNode]:
        node = self.nodes.get(message_id)
        if node is None:
            return []
        return [self.nodes[child_id] for child_id in node.children]

    def walk(self) -> Iterator[tuple[int, ThreadNode]]:
        """Yield ``(depth, node)`` depth-first in display order."""

        stack: list[tuple[int, str]] = [(0, root_id) for root_id in reversed(self.roots)]
        while stack:
            depth, node_id = stack.pop()
            node = self.nodes[node_id]
            yield depth, node
            stack.extend((depth + 1, child_id) for child_id in reversed(node.children))

    def shape(self) -> tuple:
        """Nested ``(id, children)`` tuples, handy for structural comparison."""

        def build(node_id: str) -> tuple:
            node = self.nodes[node_id]
            return (node_id, tuple(build(child_id) for child_id in node.children))

        return tuple(build(root_id) for root_id in self.roots)


def message_sort_key(message: Message) -> tuple[datetime, str]:
    return message.sort_key


def creates_cycle(nodes: Mapping[str, ThreadNode], child_id: str, parent_id: str) -> bool:
    """Return True when attaching ``child_id`` under ``parent_id`` would loop."""

    cursor: str | None = parent_id
    while cursor is not None:
        if cursor == child_id:
            return True
        node = nodes.get(cursor)
        cursor = node.parent_id if node is not None else None
    return False


def assemble_threads(
    messages: Iterable[Message], *, channel_id: str | None = None
) -> ThreadForest:
    """Assemble a deterministic reply forest from ``messages``.

    Messages are ordered by creation time (ties broken by id) and indexed
    before any attachment happens, so a reply is attached even when its
    parent sorts after it. Replies whose parent is not part of the batch stay
    roots.
    """

    ordered = sorted(messages, key=message_sort_key)
    forest = ThreadForest(channel_id=channel_id)
    nodes = forest.nodes

    for message in ordered:
        if channel_id is not None and message.channel_id != channel_id:
            logger.debug(
                "Skipping message from another channel",
                extra={"message_id": message.id, "channel_id": message.channel_id},
            )
            continue
        if message.id in nodes:
            continue
        nodes[message.id] = ThreadNode(message=message)

    for node in nodes.values():
        parent_ref = node.message.parent_message_id
        parent = nodes.get(parent_ref) if parent_ref else None
        if parent is not None and not creates_cycle(nodes, node.id, parent.id):
            node.parent_id = parent.id
            parent.children.append(node.id)
        else:
            forest.roots.append(node.id)

    return forest
