"""Application service helpers."""

from .chat_api import ChatApiClient
from .permissions import DEFAULT_ROLE_ACTIONS, MembershipGate
from .sessions import ChannelSession, ViewRegistry

__all__ = [
    "ChatApiClient",
    "DEFAULT_ROLE_ACTIONS",
    "MembershipGate",
    "ChannelSession",
    "ViewRegistry",
]
