"""Schemas related to chat messages."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any

from pydantic import (
    AfterValidator,
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    field_validator,
)

from app.config import get_settings


def _coerce_identifier(value: Any) -> Any:
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


def _ensure_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _normalize_content(value: str, empty_error: str) -> str:
    normalized = value.rstrip()
    if not normalized.strip():
        raise ValueError(empty_error)
    limit = get_settings().chat_message_max_length
    if len(normalized) > limit:
        raise ValueError(f"Message content exceeds {limit} characters")
    return normalized


Identifier = Annotated[str, BeforeValidator(_coerce_identifier)]
Timestamp = Annotated[datetime, AfterValidator(_ensure_aware)]


class MessageAuthor(BaseModel):
    """Lightweight author information for displaying messages."""

    id: Identifier | None = None
    username: str | None = None
    avatar_url: str | None = None


class Reaction(BaseModel):
    """A single (emoji, actor) marker attached to a message."""

    model_config = ConfigDict(populate_by_name=True)

    emoji: str = Field(..., min_length=1, max_length=32)
    user_id: Identifier = Field(
        ...,
        validation_alias=AliasChoices("user_id", "actor_id", "profile_id"),
        description="Identifier of the user who reacted",
    )
    created_at: Timestamp | None = None


class ReactionSummary(BaseModel):
    """Aggregated reaction information for a message."""

    emoji: str = Field(..., description="Emoji identifier, e.g. 👍 or :thumbsup:")
    count: int = Field(..., ge=0, description="Total reactions with the emoji")
    reacted: bool = Field(
        default=False,
        description="Indicates whether the current viewer added this reaction",
    )
    user_ids: list[str] = Field(
        default_factory=list,
        description="Identifiers of users who added this reaction",
    )


class Message(BaseModel):
    """A chat message as delivered by the chat server."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: Identifier
    channel_id: Identifier
    user_id: Identifier | None = None
    author: MessageAuthor | None = Field(
        default=None,
        validation_alias=AliasChoices("author", "sender", "user", "profiles"),
    )
    content: str = ""
    created_at: Timestamp
    updated_at: Timestamp | None = None
    is_edited: bool = False
    parent_message_id: Identifier | None = Field(
        default=None,
        validation_alias=AliasChoices("parent_message_id", "parent_id"),
    )
    reactions: list[Reaction] = Field(default_factory=list)
    deleted_at: Timestamp | None = None

    @field_validator("parent_message_id", mode="after")
    @classmethod
    def blank_parent_is_none(cls, value: str | None) -> str | None:
        return value or None

    @field_validator("reactions", mode="before")
    @classmethod
    def default_reactions(cls, value: Any) -> Any:
        return [] if value is None else value

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def sort_key(self) -> tuple[datetime, str]:
        """Ordering used for threads: creation time, then id."""

        return (self.created_at, self.id)


_NULLABLE_PATCH_FIELDS = frozenset({"updated_at", "deleted_at"})


class MessagePatch(BaseModel):
    """Mutable message fields accepted by the thread store.

    Identity and the declared parent are intentionally absent so an update can
    never reshape the tree.
    """

    model_config = ConfigDict(extra="forbid")

    content: str | None = None
    is_edited: bool | None = None
    updated_at: Timestamp | None = None
    deleted_at: Timestamp | None = None
    reactions: list[Reaction] | None = None

    def changes(self) -> dict[str, Any]:
        """Return explicitly provided fields, keeping model instances intact.

        ``None`` only clears the nullable timestamps; for the other fields it
        means "leave as is".
        """

        changes = {}
        for name in self.model_fields_set:
            value = getattr(self, name)
            if value is None and name not in _NULLABLE_PATCH_FIELDS:
                continue
            changes[name] = value
        return changes


class MessageCreate(BaseModel):
    """Payload for sending a message into a channel view."""

    content: str = Field(..., min_length=1)
    parent_id: str | None = None

    @field_validator("content")
    @classmethod
    def strip_content(cls, value: str) -> str:
        return _normalize_content(value, "Message content is required")


class MessageUpdate(BaseModel):
    """Payload for editing message content."""

    content: str = Field(..., min_length=1)

    @field_validator("content")
    @classmethod
    def strip_content(cls, value: str) -> str:
        return _normalize_content(value, "Message content cannot be empty")


class ReactionRequest(BaseModel):
    """Payload for toggling a reaction."""

    emoji: str = Field(..., min_length=1, max_length=32)
