from __future__ import annotations

from enum import Enum


class ChannelRole(str, Enum):
    """Roles that a user can have inside a channel."""

    ADMIN = "admin"
    MODERATOR = "moderator"
    MEMBER = "member"


class ChannelAction(str, Enum):
    """Mutations a viewer may attempt against a channel's messages."""

    SEND_MESSAGES = "send_messages"
    ADD_REACTIONS = "add_reactions"
    EDIT_OWN_MESSAGES = "edit_own_messages"
    EDIT_ANY_MESSAGE = "edit_any_message"
    DELETE_OWN_MESSAGES = "delete_own_messages"
    DELETE_ANY_MESSAGE = "delete_any_message"
    REMOVE_MESSAGES = "remove_messages"


class ViewState(str, Enum):
    """Lifecycle of a channel view session."""

    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    CLOSED = "closed"
