"""Schemas for events delivered on a channel's push topic."""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from .messages import Identifier, Message, Timestamp


class _ChannelEvent(BaseModel):
    channel_id: Identifier | None = None


class NewMessageEvent(_ChannelEvent):
    type: Literal["new_message"] = "new_message"
    message: Message


class MessageUpdatedEvent(_ChannelEvent):
    type: Literal["message_updated"] = "message_updated"
    message: Message


class MessageDeletedEvent(_ChannelEvent):
    type: Literal["message_deleted"] = "message_deleted"
    message_id: Identifier
    hard: bool = False
    deleted_at: Timestamp | None = None


class ReactionEvent(_ChannelEvent):
    type: Literal["reaction_added", "reaction_removed"]
    message_id: Identifier
    emoji: str = Field(..., min_length=1, max_length=32)
    user_id: Identifier


PushEvent = Annotated[
    Union[NewMessageEvent, MessageUpdatedEvent, MessageDeletedEvent, ReactionEvent],
    Field(discriminator="type"),
]

push_event_adapter: TypeAdapter[PushEvent] = TypeAdapter(PushEvent)


def parse_push_event(payload: dict[str, Any]) -> PushEvent:
    """Validate a raw push payload.

    Bare message payloads without an envelope are read as ``new_message``
    events, which is how the chat server announces messages on join.
    """

    if "type" not in payload and "id" in payload and "created_at" in payload:
        payload = {
            "type": "new_message",
            "channel_id": payload.get("channel_id"),
            "message": payload,
        }
    return push_event_adapter.validate_python(payload)
