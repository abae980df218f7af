"""Tests for the storage backends and database initialization."""

import aiosqlite
import pytest

from serenis.core.exceptions import StorageError
from serenis.domain.session import load_session, save_session
from serenis.persistence.database import check_database_health, init_database
from serenis.persistence.kv_store import MemoryKeyValueStore, SqliteKeyValueStore


async def test_init_database_creates_table(tmp_path):
    db_path = tmp_path / "nested" / "test.db"

    assert await init_database(db_path) == db_path

    async with aiosqlite.connect(db_path) as db:
        cursor = await db.execute("SELECT name FROM sqlite_master WHERE type='table'")
        tables = [row[0] for row in await cursor.fetchall()]
    assert "kv_store" in tables


async def test_init_database_is_idempotent(test_db):
    store = SqliteKeyValueStore(test_db)
    await store.set("k", "v")

    await init_database(test_db)

    assert await store.get("k") == "v"


async def test_health_check(test_db):
    health = await check_database_health(test_db)

    assert health["status"] == "healthy"
    assert health["key_count"] == 0
    assert health["integrity"] == "ok"


async def test_health_check_without_schema(tmp_path):
    health = await check_database_health(tmp_path / "blank.db")

    assert health["status"] == "unhealthy"
    assert "kv_store" in health["error"]


class TestSqliteKeyValueStore:
    async def test_get_missing(self, test_db):
        assert await SqliteKeyValueStore(test_db).get("nope") is None

    async def test_set_overwrites(self, test_db):
        store = SqliteKeyValueStore(test_db)

        await store.set("k", "one")
        await store.set("k", "two")

        assert await store.get("k") == "two"
        assert (await check_database_health(test_db))["key_count"] == 1

    async def test_delete(self, test_db):
        store = SqliteKeyValueStore(test_db)
        await store.set("k", "v")

        await store.delete("k")
        await store.delete("k")

        assert await store.get("k") is None

    async def test_missing_table_raises_storage_error(self, tmp_path):
        store = SqliteKeyValueStore(tmp_path / "empty.db")

        with pytest.raises(StorageError):
            await store.get("k")

    async def test_session_round_trip(self, test_db, sample_session, now):
        store = SqliteKeyValueStore(test_db)

        await save_session(store, sample_session)

        assert await load_session(store, now=now) == sample_session


class TestMemoryKeyValueStore:
    async def test_basic_operations(self):
        store = MemoryKeyValueStore({"a": "1"})

        assert await store.get("a") == "1"
        await store.set("b", "2")
        await store.delete("a")

        assert store.keys() == ["b"]
