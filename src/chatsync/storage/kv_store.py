"""Durable key-value store contract and its SQLite implementation."""

from __future__ import annotations

from typing import Optional, Protocol

from chatsync.storage.database import Database


class KeyValueStore(Protocol):
    """Byte-valued store with composite string keys (``"{account}:{chat}"``)."""

    async def get(self, key: str) -> Optional[bytes]:
        ...

    async def put(self, key: str, value: bytes) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...

    async def keys(self, prefix: str = "") -> list[str]:
        ...


class SqliteKeyValueStore:
    """``KeyValueStore`` backed by the ``kv_cache`` table. Writes replace whole values."""

    def __init__(self, db: Database):
        self._db = db

    async def get(self, key: str) -> Optional[bytes]:
        cursor = await self._db.conn.execute("SELECT value FROM kv_cache WHERE key = ?", (key,))
        row = await cursor.fetchone()
        if row is None:
            return None
        value = row["value"]
        return value.encode("utf-8") if isinstance(value, str) else bytes(value)

    async def put(self, key: str, value: bytes) -> None:
        await self._db.conn.execute(
            """INSERT INTO kv_cache (key, value) VALUES (?, ?)
               ON CONFLICT(key) DO UPDATE SET
                   value = excluded.value,
                   updated_at = strftime('%Y-%m-%dT%H:%M:%f','now')""",
            (key, value),
        )
        await self._db.conn.commit()

    async def delete(self, key: str) -> None:
        await self._db.conn.execute("DELETE FROM kv_cache WHERE key = ?", (key,))
        await self._db.conn.commit()

    async def keys(self, prefix: str = "") -> list[str]:
        # substr comparison avoids LIKE wildcards inside chat ids
        cursor = await self._db.conn.execute(
            "SELECT key FROM kv_cache WHERE substr(key, 1, ?) = ? ORDER BY key",
            (len(prefix), prefix),
        )
        rows = await cursor.fetchall()
        return [row["key"] for row in rows]
