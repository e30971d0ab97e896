"""Tests for the conversation storage backends."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from convo.config import StorageConfig
from convo.core.errors import NotFound
from convo.core.storage import (
    InMemoryStorage,
    JsonFileStorage,
    SQLiteStorage,
    build_storage,
)
from convo.core.types import Conversation, Message, Role

BASE = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_convo(convo_id: str, minutes: int = 0, text: str = "hello") -> Conversation:
    return Conversation(
        messages=[
            Message(role=Role.SYSTEM, content="sys"),
            Message(role=Role.USER, content=text),
            Message(role=Role.ASSISTANT, content="reply", is_example=True),
        ],
        id=convo_id,
        last_interaction=BASE + timedelta(minutes=minutes),
    )


@pytest.fixture(params=["memory", "json", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemoryStorage()
    if request.param == "json":
        return JsonFileStorage(tmp_path / "convos.json")
    return SQLiteStorage(str(tmp_path / "convos.db"))


class TestStorageBackends:

    @pytest.mark.asyncio
    async def test_save_then_load(self, store):
        convo = make_convo("c1")
        await store.save(convo)

        loaded = await store.load("c1")
        assert loaded.id == "c1"
        assert loaded.messages == convo.messages
        assert loaded.last_interaction == convo.last_interaction
        assert loaded.messages[2].is_example is True
        assert loaded.system_message.content == "sys"

    @pytest.mark.asyncio
    async def test_load_missing_raises_not_found(self, store):
        with pytest.raises(NotFound) as exc_info:
            await store.load("nope")
        assert exc_info.value.conversation_id == "nope"

    @pytest.mark.asyncio
    async def test_save_is_upsert(self, store):
        await store.save(make_convo("c1", text="first"))
        await store.save(make_convo("c1", minutes=5, text="second"))

        assert await store.count() == 1
        loaded = await store.load("c1")
        assert loaded.history_list[0].content == "second"

    @pytest.mark.asyncio
    async def test_saved_snapshot_is_a_copy(self, store):
        convo = make_convo("c1")
        await store.save(convo)
        convo.add_message(Message(role=Role.USER, content="later"))

        loaded = await store.load("c1")
        assert loaded.message_count == 2

    @pytest.mark.asyncio
    async def test_list_recent_orders_by_last_interaction(self, store):
        await store.save(make_convo("late", minutes=30))
        await store.save(make_convo("early", minutes=0))
        await store.save(make_convo("middle", minutes=10))

        assert [c.id for c in await store.all()] == ["early", "middle", "late"]
        assert [c.id for c in await store.list_recent(2)] == ["middle", "late"]
        assert await store.list_recent(0) == []
        assert (await store.most_recent()).id == "late"

    @pytest.mark.asyncio
    async def test_get_many_and_exists(self, store):
        for cid in ("a", "b", "c"):
            await store.save(make_convo(cid))
        assert sorted(c.id for c in await store.get_many(["a", "c", "zzz"])) == ["a", "c"]
        assert await store.exists("b")
        assert not await store.exists("zzz")

    @pytest.mark.asyncio
    async def test_delete_and_clear(self, store):
        await store.save(make_convo("a"))
        await store.save(make_convo("b"))

        assert await store.delete("a") is True
        assert await store.delete("a") is False
        assert await store.count() == 1

        await store.clear()
        assert await store.count() == 0
        assert await store.most_recent() is None


class TestJsonFileStorage:

    @pytest.mark.asyncio
    async def test_corrupt_file_reads_as_empty(self, tmp_path):
        path = tmp_path / "convos.json"
        path.write_text("{definitely not json", encoding="utf-8")
        store = JsonFileStorage(path)

        assert await store.all() == []
        assert path.read_text(encoding="utf-8") == "{definitely not json"

    @pytest.mark.asyncio
    async def test_save_over_corrupt_file_keeps_a_backup(self, tmp_path):
        path = tmp_path / "convos.json"
        good = make_convo("good").to_dict()
        bad = make_convo("bad").to_dict()
        bad["messages"][1]["role"] = "tool"
        original = json.dumps([good, bad])
        path.write_text(original, encoding="utf-8")
        store = JsonFileStorage(path)

        await store.save(make_convo("c1"))

        backup = tmp_path / "convos.json.corrupt"
        assert backup.read_text(encoding="utf-8") == original
        assert json.loads(backup.read_text(encoding="utf-8"))[0]["id"] == "good"
        assert [c.id for c in await store.all()] == ["c1"]

    @pytest.mark.asyncio
    async def test_delete_leaves_corrupt_file_alone(self, tmp_path):
        path = tmp_path / "convos.json"
        path.write_text("[{", encoding="utf-8")
        store = JsonFileStorage(path)

        assert await store.delete("c1") is False
        assert path.read_text(encoding="utf-8") == "[{"

    @pytest.mark.asyncio
    async def test_shared_file_visible_across_instances(self, tmp_path):
        path = tmp_path / "convos.json"
        await JsonFileStorage(path).save(make_convo("c1"))
        assert (await JsonFileStorage(path).load("c1")).id == "c1"


class TestBuildStorage:

    def test_default_is_sqlite(self, tmp_path):
        store = build_storage(StorageConfig(path=str(tmp_path / "x.db")))
        assert isinstance(store, SQLiteStorage)

    def test_json_and_memory(self, tmp_path):
        assert isinstance(build_storage(StorageConfig(backend="memory")), InMemoryStorage)
        store = build_storage(StorageConfig(backend="json", path=str(tmp_path / "x.json")))
        assert isinstance(store, JsonFileStorage)

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            build_storage(StorageConfig(backend="redis"))

    @pytest.mark.asyncio
    async def test_default_sqlite_path_created_under_fresh_home(self, tmp_path):
        home = tmp_path / "fresh" / "home"
        with patch.dict("os.environ", {"CONVO_HOME": str(home)}):
            store = build_storage(StorageConfig())

        await store.save(make_convo("c1"))
        assert (home / "conversations.db").exists()
        assert (await store.load("c1")).id == "c1"
