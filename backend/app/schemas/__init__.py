"""Pydantic schemas for collaborator payloads and the gateway API."""

from .events import (
    MessageDeletedEvent,
    MessageUpdatedEvent,
    NewMessageEvent,
    PushEvent,
    ReactionEvent,
    parse_push_event,
)
from .messages import (
    Message,
    MessageAuthor,
    MessageCreate,
    MessagePatch,
    MessageUpdate,
    Reaction,
    ReactionRequest,
    ReactionSummary,
)
from .threads import ThreadForestRead, ThreadNodeRead, ViewCreate, ViewRead

__all__ = [
    "Message",
    "MessageAuthor",
    "MessageCreate",
    "MessagePatch",
    "MessageUpdate",
    "Reaction",
    "ReactionRequest",
    "ReactionSummary",
    "PushEvent",
    "NewMessageEvent",
    "MessageUpdatedEvent",
    "MessageDeletedEvent",
    "ReactionEvent",
    "parse_push_event",
    "ThreadNodeRead",
    "ThreadForestRead",
    "ViewCreate",
    "ViewRead",
]
