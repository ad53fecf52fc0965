"""Error taxonomy for the chat client.

Malformed stream payloads are never errors; the decoder degrades them to
plain text. Everything here is fatal to the operation that raised it.
"""

from __future__ import annotations


class ChatError(Exception):
    """Base class for chat client failures."""


class TransportError(ChatError, ConnectionError):
    """The API could not be reached or answered with a non-success status."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProtocolError(ChatError, RuntimeError):
    """The server reported a failure inside the event stream."""


class PreconditionError(ChatError, ValueError):
    """A send was rejected before any network activity."""


class EmptyMessageError(PreconditionError):
    def __init__(self) -> None:
        super().__init__("Message is empty")


class ReadOnlyChatError(PreconditionError):
    def __init__(self) -> None:
        super().__init__("Chat is read-only")


class BotNotReadyError(PreconditionError):
    def __init__(self) -> None:
        super().__init__("Bot not ready")
