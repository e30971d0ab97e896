"""Exception types raised by the conversation engine and its collaborators."""

from __future__ import annotations


class ConvoError(Exception):
    """Base class for all engine errors."""


class TransportError(ConvoError):
    """Connection or HTTP failure before a usable response arrived."""


class BadResponse(ConvoError):
    """The API answered with a non-2xx status."""

    def __init__(self, status: int, message: str | None = None) -> None:
        self.status = status
        self.message = message
        text = f"bad response: {status}."
        if message:
            text = f"{text} {message}"
        super().__init__(text)


class DecodeError(ConvoError):
    """A successful response carried a body that could not be decoded."""


class NotFound(ConvoError, KeyError):
    """No conversation is stored under the requested identifier."""

    def __init__(self, conversation_id: str) -> None:
        self.conversation_id = conversation_id
        super().__init__(f"no conversation with id {conversation_id}")

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message
        return self.args[0]


class OutOfRange(ConvoError, IndexError):
    """A history index outside the current history was supplied."""

    def __init__(self, index: int, size: int) -> None:
        self.index = index
        self.size = size
        super().__init__(f"index {index} out of range for history of {size} messages")


class InvalidArgument(ConvoError, ValueError):
    """An argument failed validation (e.g. an empty system prompt)."""


class NoStorage(ConvoError):
    """A persistence operation was requested but no storage is configured."""

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"{operation} requires a storage backend")
