"""Storage capability: the interface the engine persists snapshots through."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterable

from convo.core.errors import NotFound
from convo.core.types import Conversation


class ChatStorage(ABC):
    """Loads and stores conversation snapshots by id.

    ``load`` and ``save`` are all the engine needs. The listing helpers are
    for embedding applications and build on ``all()``.
    """

    @abstractmethod
    async def load(self, conversation_id: str) -> Conversation:
        """Return the snapshot stored under ``conversation_id``.

        Raises:
            NotFound: if no such conversation exists.
        """

    @abstractmethod
    async def save(self, conversation: Conversation) -> None:
        """Insert or replace the snapshot keyed by ``conversation.id``."""

    @abstractmethod
    async def all(self) -> list[Conversation]:
        """Every stored conversation, oldest interaction first."""

    @abstractmethod
    async def delete(self, conversation_id: str) -> bool:
        """Delete one conversation. Returns False if it did not exist."""

    async def clear(self) -> None:
        for conversation in await self.all():
            await self.delete(conversation.id)

    async def count(self) -> int:
        return len(await self.all())

    async def list_recent(self, n: int = 5) -> list[Conversation]:
        """The ``n`` most recently touched conversations, oldest first."""
        if n <= 0:
            return []
        return (await self.all())[-n:]

    async def most_recent(self) -> Conversation | None:
        convos = await self.all()
        return convos[-1] if convos else None

    async def get_many(self, ids: Iterable[str]) -> list[Conversation]:
        wanted = set(ids)
        return [c for c in await self.all() if c.id in wanted]

    async def exists(self, conversation_id: str) -> bool:
        try:
            await self.load(conversation_id)
        except NotFound:
            return False
        return True
