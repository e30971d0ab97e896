"""SQLite storage: persistent conversation snapshots via aiosqlite.

Each save replaces the conversation row and all of its messages.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

import aiosqlite
import structlog

from convo.config import get_convo_home
from convo.core.errors import NotFound
from convo.core.storage.base import ChatStorage
from convo.core.types import Conversation, Message, Role

logger = structlog.get_logger()

CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS conversations (
    id TEXT PRIMARY KEY,
    last_interaction TEXT NOT NULL,
    message_count INTEGER DEFAULT 0
);

CREATE TABLE IF NOT EXISTS messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    conversation_id TEXT NOT NULL,
    role TEXT NOT NULL,
    content TEXT NOT NULL,
    is_example INTEGER NOT NULL DEFAULT 0,
    timestamp TEXT NOT NULL,
    FOREIGN KEY (conversation_id) REFERENCES conversations(id)
);

CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id);
CREATE INDEX IF NOT EXISTS idx_conversations_last ON conversations(last_interaction);
"""


class SQLiteStorage(ChatStorage):
    """Conversation snapshots stored in SQLite."""

    def __init__(self, db_path: str | None = None) -> None:
        self._db_path = db_path or str(get_convo_home() / "conversations.db")
        self._initialized = False

    async def _ensure_db(self) -> None:
        """Initialize database tables if needed."""
        if self._initialized:
            return
        Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(self._db_path) as db:
            await db.executescript(CREATE_TABLES_SQL)
            await db.commit()
        self._initialized = True

    async def save(self, conversation: Conversation) -> None:
        await self._ensure_db()

        async with aiosqlite.connect(self._db_path) as db:
            await db.execute(
                """INSERT INTO conversations (id, last_interaction, message_count)
                   VALUES (?, ?, ?)
                   ON CONFLICT(id) DO UPDATE SET
                     last_interaction = excluded.last_interaction,
                     message_count = excluded.message_count""",
                (conversation.id, conversation.last_interaction.isoformat(),
                 conversation.message_count),
            )

            # Full replace
            await db.execute(
                "DELETE FROM messages WHERE conversation_id = ?", (conversation.id,)
            )
            await db.executemany(
                """INSERT INTO messages (conversation_id, role, content, is_example, timestamp)
                   VALUES (?, ?, ?, ?, ?)""",
                [
                    (conversation.id, m.role.value, m.content,
                     int(m.is_example), m.timestamp.isoformat())
                    for m in conversation.messages
                ],
            )
            await db.commit()

        logger.debug("conversation_written", conversation_id=conversation.id)

    async def load(self, conversation_id: str) -> Conversation:
        await self._ensure_db()

        async with aiosqlite.connect(self._db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                "SELECT * FROM conversations WHERE id = ?", (conversation_id,)
            ) as cursor:
                row = await cursor.fetchone()
            if row is None:
                raise NotFound(conversation_id)
            return await self._hydrate(db, dict(row))

    async def all(self) -> list[Conversation]:
        await self._ensure_db()

        async with aiosqlite.connect(self._db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                "SELECT * FROM conversations ORDER BY last_interaction"
            ) as cursor:
                rows = await cursor.fetchall()
            return [await self._hydrate(db, dict(row)) for row in rows]

    async def count(self) -> int:
        await self._ensure_db()

        async with aiosqlite.connect(self._db_path) as db:
            async with db.execute("SELECT COUNT(*) FROM conversations") as cursor:
                (total,) = await cursor.fetchone()
        return total

    async def delete(self, conversation_id: str) -> bool:
        await self._ensure_db()

        async with aiosqlite.connect(self._db_path) as db:
            await db.execute(
                "DELETE FROM messages WHERE conversation_id = ?", (conversation_id,)
            )
            result = await db.execute(
                "DELETE FROM conversations WHERE id = ?", (conversation_id,)
            )
            await db.commit()
            return result.rowcount > 0

    async def clear(self) -> None:
        await self._ensure_db()

        async with aiosqlite.connect(self._db_path) as db:
            await db.execute("DELETE FROM messages")
            await db.execute("DELETE FROM conversations")
            await db.commit()
        logger.info("conversations_cleared", db_path=self._db_path)

    @staticmethod
    async def _hydrate(db: aiosqlite.Connection, row: dict) -> Conversation:
        async with db.execute(
            "SELECT * FROM messages WHERE conversation_id = ? ORDER BY id",
            (row["id"],),
        ) as cursor:
            msg_rows = await cursor.fetchall()

        messages = [
            Message(
                role=Role(mr["role"]),
                content=mr["content"],
                is_example=bool(mr["is_example"]),
                timestamp=datetime.fromisoformat(mr["timestamp"]),
            )
            for mr in msg_rows
        ]
        return Conversation(
            messages=messages,
            id=row["id"],
            last_interaction=datetime.fromisoformat(row["last_interaction"]),
        )
