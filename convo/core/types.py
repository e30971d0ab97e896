"""Shared data types: chat turns, conversations, and API wire payloads."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from convo.core.errors import DecodeError

TITLE_WORDS = 10


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    """Message role in conversation."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    FUNCTION = "function"


class GPTModel(str, Enum):
    """Model identifiers with a friendly display name."""

    GPT_3_5_TURBO = "gpt-3.5-turbo"
    GPT_4 = "gpt-4"

    @property
    def display_name(self) -> str:
        return {
            GPTModel.GPT_3_5_TURBO: "GPT-3.5 Turbo",
            GPTModel.GPT_4: "GPT-4",
        }[self]


@dataclass(frozen=True)
class Message:
    """A single turn in the conversation.

    Equality and hashing only look at ``role`` and ``content``; the id,
    timestamp and example flag are bookkeeping. Example turns survive
    ``ConversationEngine.delete_history(keep_examples=True)``.
    """

    role: Role
    content: str
    timestamp: datetime = field(default_factory=_now, compare=False)
    is_example: bool = field(default=False, compare=False)
    id: str = field(default_factory=lambda: str(uuid4()), compare=False, repr=False)

    def to_wire(self) -> dict[str, Any]:
        """Convert to the ``{role, content}`` shape the API expects."""
        return {"role": self.role.value, "content": self.content}

    @classmethod
    def from_wire(cls, raw: dict[str, Any]) -> Message:
        try:
            role = Role(raw["role"])
        except (KeyError, TypeError, ValueError) as e:
            raise DecodeError(f"invalid message role in {raw!r}") from e
        return cls(role=role, content=raw.get("content") or "")

    def to_dict(self) -> dict[str, Any]:
        """Full persisted form (used by storage backends)."""
        return {
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
            "is_example": self.is_example,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Message:
        ts = raw.get("timestamp")
        return cls(
            role=Role(raw["role"]),
            content=raw.get("content", ""),
            timestamp=datetime.fromisoformat(ts) if ts else _now(),
            is_example=bool(raw.get("is_example", False)),
        )


@dataclass
class Conversation:
    """An ordered chat session.

    At most one system message is kept and it always sits at index 0.
    A conversation built without an explicit ``id`` gets a fresh one, so the
    id has to be threaded through every load/save round trip.
    """

    messages: list[Message] = field(default_factory=list)
    id: str = field(default_factory=lambda: str(uuid4()))
    last_interaction: datetime = field(default_factory=_now)

    def __post_init__(self) -> None:
        self.messages = list(self.messages)
        system = next((m for m in self.messages if m.role == Role.SYSTEM), None)
        if system is not None:
            self.system_message = system

    @property
    def history_list(self) -> list[Message]:
        """Message history excluding system messages."""
        return [m for m in self.messages if m.role != Role.SYSTEM]

    @property
    def system_message(self) -> Message | None:
        return next((m for m in self.messages if m.role == Role.SYSTEM), None)

    @system_message.setter
    def system_message(self, message: Message | None) -> None:
        self.messages = [m for m in self.messages if m.role != Role.SYSTEM]
        if message is not None:
            self.messages.insert(0, message)

    @property
    def title(self) -> str:
        latest = self.last_message
        if latest is None:
            return "Empty Conversation"
        if len(latest.content) <= TITLE_WORDS:
            return latest.content
        words = list(re.finditer(r"\S+", latest.content))
        end = words[TITLE_WORDS - 1].end() if len(words) >= TITLE_WORDS else len(latest.content)
        return latest.content[:end] + "..."

    @property
    def last_message(self) -> Message | None:
        return self.messages[-1] if self.messages else None

    @property
    def message_count(self) -> int:
        return len(self.history_list)

    def add_message(self, message: Message) -> None:
        if message.role == Role.SYSTEM:
            self.system_message = message
        else:
            self.messages.append(message)

    def delete_message(self, index: int) -> None:
        """Remove the message at ``index``; out-of-range indices are ignored."""
        if 0 <= index < len(self.messages):
            del self.messages[index]

    def update_message(self, index: int, message: Message) -> None:
        """Replace the message at ``index``; out-of-range indices are ignored."""
        if 0 <= index < len(self.messages):
            self.messages[index] = message

    def add_example_interaction(self, user_text: str, assistant_text: str) -> None:
        self.add_message(Message(role=Role.USER, content=user_text, is_example=True))
        self.add_message(Message(role=Role.ASSISTANT, content=assistant_text, is_example=True))
        self.last_interaction = _now()

    def contains_message(self, message: Message) -> bool:
        return message in self.messages

    def copy(self) -> Conversation:
        """Snapshot that shares no mutable state with this conversation."""
        return Conversation(
            messages=list(self.messages),
            id=self.id,
            last_interaction=self.last_interaction,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "last_interaction": self.last_interaction.isoformat(),
            "messages": [m.to_dict() for m in self.messages],
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Conversation:
        return cls(
            messages=[Message.from_dict(m) for m in raw.get("messages", [])],
            id=raw["id"],
            last_interaction=datetime.fromisoformat(raw["last_interaction"]),
        )


# === Wire payloads ===


@dataclass
class ChatRequest:
    """Body of a chat-completions POST."""

    model: str
    temperature: float
    messages: list[Message]
    stream: bool = False
    max_tokens: int | None = None
    presence_penalty: float | None = None
    frequency_penalty: float | None = None
    logit_bias: dict[int, int] | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model,
            "temperature": self.temperature,
            "messages": [m.to_wire() for m in self.messages],
            "stream": self.stream,
        }
        optional = {
            "max_tokens": self.max_tokens,
            "presence_penalty": self.presence_penalty,
            "frequency_penalty": self.frequency_penalty,
            "logit_bias": self.logit_bias,
        }
        payload.update({k: v for k, v in optional.items() if v is not None})
        return payload


@dataclass
class CompletionResponse:
    """Decoded buffered (non-streaming) completion."""

    content: str
    role: Role = Role.ASSISTANT
    finish_reason: str | None = None
    usage: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, data: Any) -> CompletionResponse:
        try:
            choice = data["choices"][0]
            message = choice["message"]
            content = message.get("content") or ""
            role = Role(message.get("role", Role.ASSISTANT.value))
        except (KeyError, IndexError, TypeError, ValueError, AttributeError) as e:
            raise DecodeError(f"unexpected completion payload: {e}") from e

        usage: dict[str, int] = {}
        raw_usage = data.get("usage") or {}
        if not isinstance(raw_usage, dict):
            raise DecodeError(f"unexpected usage block: {raw_usage!r}")
        for key in ("prompt_tokens", "completion_tokens", "total_tokens"):
            if isinstance(raw_usage.get(key), int):
                usage[key] = raw_usage[key]

        return cls(
            content=content,
            role=role,
            finish_reason=choice.get("finish_reason"),
            usage=usage,
        )

    @classmethod
    def from_text(cls, text: str) -> CompletionResponse:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise DecodeError(f"response body is not JSON: {e}") from e
        return cls.from_payload(data)


def parse_error_message(text: str) -> str | None:
    """Extract ``error.message`` from an API error body, if decodable."""
    try:
        data = json.loads(text)
        message = data["error"]["message"]
    except (json.JSONDecodeError, KeyError, TypeError):
        return None
    return message if isinstance(message, str) else None
