"""Persistent log entries shown on the dashboard's logs screen."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from chatsync.storage.database import Database

_LEVELS = ("debug", "info", "warn", "error")


@dataclass
class LogRecord:
    level: str
    message: str
    meta: Optional[dict[str, Any]]
    account_id: Optional[str]
    created_at: datetime
    id: Optional[int] = None


class LogRepository:
    """Append and read rows of the ``logs`` table."""

    def __init__(self, db: Database):
        self._db = db

    async def add(
        self,
        level: str,
        message: str,
        meta: Optional[dict[str, Any]] = None,
        account_id: Optional[str] = None,
    ) -> int:
        level = "warn" if level == "warning" else level
        if level not in _LEVELS:
            level = "error"
        cursor = await self._db.conn.execute(
            "INSERT INTO logs (level, message, meta_json, account_id) VALUES (?, ?, ?, ?)",
            (
                level,
                message,
                json.dumps(meta, default=str, ensure_ascii=False) if meta else None,
                account_id,
            ),
        )
        await self._db.conn.commit()
        return cursor.lastrowid  # type: ignore[return-value]

    async def recent(self, account_id: Optional[str] = None, limit: int = 50) -> list[LogRecord]:
        if account_id:
            cursor = await self._db.conn.execute(
                "SELECT * FROM logs WHERE account_id = ? ORDER BY id DESC LIMIT ?",
                (account_id, limit),
            )
        else:
            cursor = await self._db.conn.execute(
                "SELECT * FROM logs ORDER BY id DESC LIMIT ?", (limit,)
            )
        rows = await cursor.fetchall()
        return [
            LogRecord(
                id=row["id"],
                level=row["level"],
                message=row["message"],
                meta=json.loads(row["meta_json"]) if row["meta_json"] else None,
                account_id=row["account_id"],
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row in rows
        ]
