"""Conversation storage backends.

The engine depends only on ``ChatStorage``; the embedding application picks
a backend (or writes its own) and injects it.
"""

from __future__ import annotations

from pathlib import Path

from convo.config import StorageConfig
from convo.core.storage.base import ChatStorage
from convo.core.storage.json_file import JsonFileStorage
from convo.core.storage.memory import InMemoryStorage
from convo.core.storage.sqlite import SQLiteStorage


def build_storage(config: StorageConfig | None = None) -> ChatStorage:
    """Create the backend named by ``config.backend``."""
    config = config or StorageConfig()
    backend = config.backend.lower()
    if backend == "memory":
        return InMemoryStorage()
    if backend == "json":
        return JsonFileStorage(Path(config.path) if config.path else None)
    if backend == "sqlite":
        return SQLiteStorage(config.path)
    raise ValueError(f"Unknown storage backend: {config.backend}")


__all__ = [
    "ChatStorage",
    "InMemoryStorage",
    "JsonFileStorage",
    "SQLiteStorage",
    "build_storage",
]
