"""aiosqlite connection holding the durable cache and the diagnostic log."""

from __future__ import annotations

from pathlib import Path

import aiosqlite

from chatsync.log import get_logger

logger = get_logger(__name__)

SCHEMA_VERSION = 1

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS kv_cache (
    key             TEXT    PRIMARY KEY,
    value           BLOB    NOT NULL,
    updated_at      TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now'))
);

CREATE TABLE IF NOT EXISTS logs (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    level           TEXT    NOT NULL CHECK(level IN ('debug','info','warn','error')),
    message         TEXT    NOT NULL,
    meta_json       TEXT,
    account_id      TEXT,
    created_at      TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now'))
);

CREATE INDEX IF NOT EXISTS idx_logs_account
    ON logs(account_id, created_at);
"""


class Database:
    """Single shared connection; repositories borrow it through ``conn``."""

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._conn: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Open the connection, enable WAL and bring the schema up to date."""
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(self._db_path)
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._migrate()
        logger.info("database_initialized", path=self._db_path, schema=SCHEMA_VERSION)

    async def _migrate(self) -> None:
        async with self.conn.execute("PRAGMA user_version") as cursor:
            row = await cursor.fetchone()
        current = row[0] if row else 0
        if current > SCHEMA_VERSION:
            raise RuntimeError(
                f"Database schema v{current} is newer than supported v{SCHEMA_VERSION}"
            )
        await self.conn.executescript(SCHEMA_SQL)
        if current != SCHEMA_VERSION:
            await self.conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
            logger.info("database_migrated", from_version=current, to_version=SCHEMA_VERSION)
        await self.conn.commit()

    async def schema_version(self) -> int:
        async with self.conn.execute("PRAGMA user_version") as cursor:
            row = await cursor.fetchone()
        return row[0] if row else 0

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self._conn

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None
            logger.info("database_closed")
