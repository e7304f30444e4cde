"""Error taxonomy shared by the chat API client, sessions and the gateway."""

from __future__ import annotations


class ChatTransportError(RuntimeError):
    """A call to the chat server failed; no local state was changed."""

    def __init__(self, operation: str, message: str) -> None:
        super().__init__(f"{operation}: {message}")
        self.operation = operation


class ChatApiTimeoutError(ChatTransportError):
    """The chat server did not answer in time."""

    def __init__(self, operation: str, timeout: float) -> None:
        super().__init__(operation, f"request timed out after {timeout:g}s")
        self.timeout = timeout


class ChatApiConnectionError(ChatTransportError):
    """The chat server could not be reached."""


class ChatApiStatusError(ChatTransportError):
    """The chat server answered with an error status."""

    def __init__(self, operation: str, status_code: int, detail: str) -> None:
        super().__init__(operation, f"HTTP {status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


class PermissionDeniedError(PermissionError):
    """The viewer's channel role does not allow the requested mutation."""

    def __init__(self, action: str) -> None:
        super().__init__(f"Not allowed to {action.replace('_', ' ')}")
        self.action = action


class ViewClosedError(RuntimeError):
    """Raised when a torn-down channel view is asked to mutate."""
