"""Durable per-chat message cache and the single message merge rule."""

from __future__ import annotations

import json
import time
from typing import Any, Callable, Iterable, Optional

from chatsync.config import CacheConfig
from chatsync.core.errors import CacheCorrupt
from chatsync.log import get_logger
from chatsync.messenger.models import ChatSummary, Message
from chatsync.storage.kv_store import KeyValueStore

logger = get_logger(__name__)

PAYLOAD_VERSION = 1
CHATS_KEY = "#chats"


def merge(existing: Iterable[Message], incoming: Iterable[Message]) -> list[Message]:
    """Union two message sets keyed by timestamp; ``incoming`` wins ties.

    A local echo is also dropped when ``incoming`` carries a server message
    with the same id. The result is ascending by timestamp, and merging the
    same batch twice changes nothing.
    """
    incoming = list(incoming)
    server_ids = {m.id for m in incoming if m.id and not m.local_echo}

    by_timestamp: dict[int, Message] = {}
    for message in existing:
        if message.local_echo and message.id in server_ids:
            continue
        by_timestamp[message.timestamp] = message
    for message in incoming:
        by_timestamp[message.timestamp] = message

    return sorted(by_timestamp.values(), key=lambda m: m.timestamp)


def cache_key(account_key: str, chat_id: str) -> str:
    return f"{account_key}:{chat_id}"


class DurableMessageCache:
    """Message history and chat-list snapshots persisted in a ``KeyValueStore``.

    Each value is a JSON document ``{"v": 1, "saved_at": ..., "items": [...]}``.
    Entries that fail to decode, carry another version, or are older than the
    configured max age are treated as misses; undecodable ones are deleted.
    """

    def __init__(
        self,
        store: KeyValueStore,
        config: CacheConfig | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._store = store
        self._config = config or CacheConfig()
        self._clock = clock

    @staticmethod
    def merge(existing: Iterable[Message], incoming: Iterable[Message]) -> list[Message]:
        return merge(existing, incoming)

    async def save(self, account_key: str, chat_id: str, messages: list[Message]) -> None:
        ordered = sorted(messages, key=lambda m: m.timestamp)
        limit = self._config.durable_max_messages
        if limit > 0 and len(ordered) > limit:
            ordered = ordered[-limit:]
        await self._write(cache_key(account_key, chat_id), [m.to_dict() for m in ordered])
        logger.debug("history_cached", account=account_key, chat_id=chat_id, count=len(ordered))

    async def load(self, account_key: str, chat_id: str) -> Optional[list[Message]]:
        """Cached messages ascending by timestamp, or None on a miss."""
        key = cache_key(account_key, chat_id)
        items = await self._read(key, self._config.durable_max_age)
        if items is None:
            return None
        try:
            messages = [Message.from_dict(item) for item in items]
        except (KeyError, TypeError, ValueError) as e:
            await self._discard(key, CacheCorrupt(f"bad message record: {e}"))
            return None
        return sorted(messages, key=lambda m: m.timestamp)

    async def clear(self, account_key: str, chat_id: str) -> None:
        await self._store.delete(cache_key(account_key, chat_id))

    async def save_chats(self, account_key: str, chats: list[ChatSummary]) -> None:
        await self._write(cache_key(account_key, CHATS_KEY), [c.to_dict() for c in chats])

    async def load_chats(self, account_key: str) -> Optional[list[ChatSummary]]:
        key = cache_key(account_key, CHATS_KEY)
        items = await self._read(key, self._config.durable_chat_list_max_age)
        if items is None:
            return None
        try:
            return [ChatSummary.from_dict(item) for item in items]
        except (KeyError, TypeError, ValueError) as e:
            await self._discard(key, CacheCorrupt(f"bad chat record: {e}"))
            return None

    async def clear_chats(self, account_key: str) -> None:
        await self._store.delete(cache_key(account_key, CHATS_KEY))

    async def clear_account(self, account_key: str) -> int:
        keys = await self._store.keys(f"{account_key}:")
        for key in keys:
            await self._store.delete(key)
        logger.info("account_cache_cleared", account=account_key, entries=len(keys))
        return len(keys)

    async def stats(self, account_key: str | None = None) -> dict[str, int]:
        keys = await self._store.keys(f"{account_key}:" if account_key else "")
        snapshots = sum(1 for k in keys if k.endswith(f":{CHATS_KEY}"))
        return {"entries": len(keys), "chats": len(keys) - snapshots, "chat_lists": snapshots}

    async def _write(self, key: str, items: list[dict[str, Any]]) -> None:
        payload = {"v": PAYLOAD_VERSION, "saved_at": self._clock(), "items": items}
        await self._store.put(key, json.dumps(payload, ensure_ascii=False).encode("utf-8"))

    async def _read(self, key: str, max_age: float) -> Optional[list[dict[str, Any]]]:
        raw = await self._store.get(key)
        if raw is None:
            return None
        try:
            payload = json.loads(raw)
        except (UnicodeDecodeError, ValueError) as e:
            await self._discard(key, CacheCorrupt(f"undecodable payload: {e}"))
            return None

        if (
            not isinstance(payload, dict)
            or payload.get("v") != PAYLOAD_VERSION
            or not isinstance(payload.get("items"), list)
        ):
            await self._discard(key, CacheCorrupt("unexpected payload shape or version"))
            return None

        saved_at = payload.get("saved_at")
        if not isinstance(saved_at, (int, float)) or self._clock() - saved_at > max_age:
            logger.debug("cache_entry_expired", key=key)
            return None
        return payload["items"]

    async def _discard(self, key: str, error: CacheCorrupt) -> None:
        logger.warning("cache_corrupt", key=key, error=str(error))
        await self._store.delete(key)
