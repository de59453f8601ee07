"""Tests for SQLite-backed storage."""

import pytest

from chatsync.core.reporting import DatabaseReporter
from chatsync.storage.database import SCHEMA_VERSION, Database
from chatsync.storage.log_repo import LogRepository


class TestKeyValueStore:
    @pytest.mark.asyncio
    async def test_put_get_replace_delete(self, kv_store):
        await kv_store.put("acct:A", b"one")
        await kv_store.put("acct:A", b"two")

        assert await kv_store.get("acct:A") == b"two"

        await kv_store.delete("acct:A")
        assert await kv_store.get("acct:A") is None

    @pytest.mark.asyncio
    async def test_keys_by_prefix(self, kv_store):
        for key in ("a:1", "a:2", "ab:1", "b:1"):
            await kv_store.put(key, b"x")

        assert await kv_store.keys("a:") == ["a:1", "a:2"]
        assert len(await kv_store.keys()) == 4

    @pytest.mark.asyncio
    async def test_prefix_is_literal(self, kv_store):
        await kv_store.put("a_b:1", b"x")
        await kv_store.put("axb:1", b"x")

        assert await kv_store.keys("a_b:") == ["a_b:1"]


class TestLogRepository:
    @pytest.mark.asyncio
    async def test_add_and_read(self, db):
        repo = LogRepository(db)

        await repo.add("error", "API request failed after retries", {"status": 500}, account_id="1101000001")
        await repo.add("warning", "API returned a malformed body")

        records = await repo.recent()
        assert [r.level for r in records] == ["warn", "error"]
        assert records[1].meta == {"status": 500}
        assert records[1].account_id == "1101000001"
        assert len(await repo.recent(account_id="1101000001")) == 1

    @pytest.mark.asyncio
    async def test_database_reporter_writes_rows(self, db):
        repo = LogRepository(db)

        await DatabaseReporter(repo).report("error", "boom", {"endpoint": "sendMessage"}, account_id="x")

        records = await repo.recent()
        assert records[0].message == "boom"
        assert records[0].meta == {"endpoint": "sendMessage"}


class TestDatabase:
    @pytest.mark.asyncio
    async def test_schema_version_recorded(self, db):
        assert await db.schema_version() == SCHEMA_VERSION

    @pytest.mark.asyncio
    async def test_reopen_keeps_data(self, tmp_path):
        path = str(tmp_path / "nested" / "chatsync.db")
        first = Database(path)
        await first.initialize()
        await first.conn.execute("INSERT INTO kv_cache (key, value) VALUES ('k', x'01')")
        await first.conn.commit()
        await first.close()

        second = Database(path)
        await second.initialize()
        try:
            async with second.conn.execute("SELECT value FROM kv_cache WHERE key = 'k'") as cursor:
                row = await cursor.fetchone()
            assert row[0] == b"\x01"
            assert await second.schema_version() == SCHEMA_VERSION
        finally:
            await second.close()

    @pytest.mark.asyncio
    async def test_newer_schema_is_refused(self, tmp_path):
        path = str(tmp_path / "chatsync.db")
        db = Database(path)
        await db.initialize()
        await db.conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION + 1}")
        await db.conn.commit()
        await db.close()

        newer = Database(path)
        with pytest.raises(RuntimeError, match="newer than supported"):
            await newer.initialize()
        await newer.close()

    def test_conn_before_initialize(self):
        with pytest.raises(RuntimeError):
            Database(":memory:").conn
