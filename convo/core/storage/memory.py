"""In-memory storage backend, mostly for tests and throwaway sessions."""

from __future__ import annotations

from convo.core.errors import NotFound
from convo.core.storage.base import ChatStorage
from convo.core.types import Conversation


class InMemoryStorage(ChatStorage):
    """Dict-backed store. Copies on the way in and out."""

    def __init__(self) -> None:
        self._convos: dict[str, Conversation] = {}

    async def load(self, conversation_id: str) -> Conversation:
        try:
            return self._convos[conversation_id].copy()
        except KeyError:
            raise NotFound(conversation_id) from None

    async def save(self, conversation: Conversation) -> None:
        self._convos[conversation.id] = conversation.copy()

    async def all(self) -> list[Conversation]:
        convos = sorted(self._convos.values(), key=lambda c: c.last_interaction)
        return [c.copy() for c in convos]

    async def delete(self, conversation_id: str) -> bool:
        return self._convos.pop(conversation_id, None) is not None

    async def clear(self) -> None:
        self._convos.clear()
