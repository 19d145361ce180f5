"""Exception types shared by the bridge components."""

from __future__ import annotations

from typing import Any


class BridgeError(RuntimeError):
    """Base class for bridge errors."""


class RemoteApiError(BridgeError):
    """The task API answered with a status the call does not accept."""

    def __init__(self, status: int, body: Any, *, method: str = "", path: str = "") -> None:
        super().__init__(f"{method} {path} -> {status}".strip())
        self.status = status
        self.body = body
        self.method = method
        self.path = path

    @property
    def detail(self) -> str:
        """The API's `detail` message, the raw body text, or a placeholder."""
        if isinstance(self.body, dict) and self.body.get("detail"):
            return str(self.body["detail"])
        if isinstance(self.body, str) and self.body:
            return self.body
        return "unknown API error"


class NetworkError(BridgeError):
    """No response was received from the task API."""


class PersistenceError(BridgeError):
    """Reading or writing the thread/session directory failed."""


class ChatDeliveryError(BridgeError):
    """A Discord REST call failed (missing channel, rejected send, transport error)."""

    def __init__(self, message: str, *, status: int = 0, body: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.body = body


def user_facing_error(exc: BaseException) -> str:
    """Summarize an exception for a reply in Discord."""
    if isinstance(exc, RemoteApiError):
        return f"API error ({exc.status}): {exc.detail}"
    if isinstance(exc, NetworkError):
        return "No response from the task API."
    message = str(exc)
    return message or "An unknown error occurred."
