"""Core utilities for the Murmur gateway."""

from .errors import (
    ChatApiConnectionError,
    ChatApiStatusError,
    ChatApiTimeoutError,
    ChatTransportError,
    PermissionDeniedError,
    ViewClosedError,
)

__all__ = [
    "ChatTransportError",
    "ChatApiTimeoutError",
    "ChatApiConnectionError",
    "ChatApiStatusError",
    "PermissionDeniedError",
    "ViewClosedError",
]
