"""Read models describing a channel view and its reply forest."""

from __future__ import annotations

from pydantic import BaseModel, Field

from app.models.enums import ChannelRole, ViewState

from .messages import Message, ReactionSummary


class ThreadNodeRead(BaseModel):
    """One message and its replies, ready for display."""

    message: Message
    reactions: list[ReactionSummary] = Field(default_factory=list)
    reply_count: int = Field(0, ge=0)
    replies: list["ThreadNodeRead"] = Field(default_factory=list)


class ThreadForestRead(BaseModel):
    """All reply trees of a channel view in display order."""

    channel_id: str
    message_count: int = Field(0, ge=0)
    roots: list[ThreadNodeRead] = Field(default_factory=list)


class ViewCreate(BaseModel):
    """Payload for opening a channel view."""

    channel_id: str = Field(..., min_length=1)
    viewer_id: str = Field(..., min_length=1)
    access_token: str | None = None


class ViewRead(BaseModel):
    """Descriptor of an open channel view."""

    id: str
    channel_id: str
    viewer_id: str
    state: ViewState
    role: ChannelRole | None = None
    message_count: int = Field(0, ge=0)


ThreadNodeRead.model_rebuild()
