"""JSON file storage: every conversation in a single JSON document.

Suited to a handful of conversations. Each save rewrites the whole file.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import aiofiles
import structlog

from convo.config import get_convo_home
from convo.core.errors import NotFound
from convo.core.storage.base import ChatStorage
from convo.core.types import Conversation

logger = structlog.get_logger()


class JsonFileStorage(ChatStorage):
    """Stores a list of conversations in one JSON file."""

    def __init__(self, path: str | Path | None = None) -> None:
        self._path = Path(path) if path else get_convo_home() / "conversations.json"
        self._lock = asyncio.Lock()

    async def _read(self, for_write: bool = False) -> list[Conversation]:
        """Read every stored conversation.

        An unreadable file reads as empty. Before a write replaces it, the
        file is moved aside to ``<name>.corrupt`` so its records survive.
        """
        if not self._path.exists():
            return []
        async with aiofiles.open(self._path, "r", encoding="utf-8") as f:
            content = await f.read()
        try:
            raw = json.loads(content) if content.strip() else []
            return [Conversation.from_dict(item) for item in raw]
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.warning("conversation_file_corrupt", path=str(self._path), error=str(e))
            if for_write:
                backup = self._path.with_name(self._path.name + ".corrupt")
                self._path.replace(backup)
                logger.warning("conversation_file_moved_aside", path=str(self._path), backup=str(backup))
            return []

    async def _write(self, convos: list[Conversation]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        data = [c.to_dict() for c in convos]
        async with aiofiles.open(self._path, "w", encoding="utf-8") as f:
            await f.write(json.dumps(data, ensure_ascii=False, indent=2))

    async def load(self, conversation_id: str) -> Conversation:
        async with self._lock:
            convos = await self._read()
        for convo in convos:
            if convo.id == conversation_id:
                return convo
        raise NotFound(conversation_id)

    async def save(self, conversation: Conversation) -> None:
        async with self._lock:
            convos = await self._read(for_write=True)
            for i, existing in enumerate(convos):
                if existing.id == conversation.id:
                    convos[i] = conversation.copy()
                    break
            else:
                convos.append(conversation.copy())
            await self._write(convos)
        logger.debug("conversation_written", conversation_id=conversation.id, path=str(self._path))

    async def all(self) -> list[Conversation]:
        async with self._lock:
            convos = await self._read()
        return sorted(convos, key=lambda c: c.last_interaction)

    async def delete(self, conversation_id: str) -> bool:
        async with self._lock:
            convos = await self._read()
            kept = [c for c in convos if c.id != conversation_id]
            if len(kept) == len(convos):
                return False
            await self._write(kept)
        return True

    async def clear(self) -> None:
        logger.info("conversations_cleared", path=str(self._path))
        async with self._lock:
            await self._write([])
