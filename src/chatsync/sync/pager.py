"""Backward pagination over one chat's message history."""

from __future__ import annotations

from typing import Optional

from chatsync.core.client_registry import ClientRegistry
from chatsync.core.errors import MalformedResponse, OperationInFlight
from chatsync.core.result import ApiResult
from chatsync.core.single_flight import SingleFlight
from chatsync.log import get_logger
from chatsync.messenger.models import Account, HistoryPage, Message, PaginationCursor
from chatsync.storage.message_cache import merge

logger = get_logger(__name__)

PAGE_SIZE = 100


class HistoryPager:
    """Fetches a chat's newest page, then older pages on demand.

    The providers expose no cursor or total count, so ``has_more`` means
    "the last page came back full". At the true end of a history that costs
    one extra request which returns nothing new.

    ``load_more`` is single-flight per (account, chat) through the shared
    ``SingleFlight``; a poll refresh of the same chat uses the same key.
    """

    def __init__(
        self,
        registry: ClientRegistry,
        flights: SingleFlight | None = None,
        page_size: int = PAGE_SIZE,
    ):
        self._registry = registry
        self._flights = flights or SingleFlight()
        self._page_size = page_size
        self._cursors: dict[tuple[str, str], PaginationCursor] = {}

    @property
    def page_size(self) -> int:
        return self._page_size

    def cursor(self, account: Account, chat_id: str) -> PaginationCursor:
        return self._cursors.setdefault((account.key, chat_id), PaginationCursor())

    def reset(self, account: Account, chat_id: str) -> PaginationCursor:
        cursor = PaginationCursor()
        self._cursors[(account.key, chat_id)] = cursor
        return cursor

    async def load_initial(self, account: Account, chat_id: str) -> ApiResult[HistoryPage]:
        """Newest page of the chat. Resets the chat's cursor."""
        cursor = self.reset(account, chat_id)
        result = await self._registry.get(account).fetch_history(chat_id, self._page_size)
        if not result.ok:
            cursor.has_more = False
            logger.warning("history_load_failed", chat_id=chat_id, error=str(result.error))
            return ApiResult.failure(result.error)

        raw = result.data or []
        messages = merge([], (m for m in raw if m.chat_id in ("", chat_id)))
        cursor.has_more = len(raw) >= self._page_size
        if messages:
            cursor.oldest_timestamp = messages[0].timestamp
        logger.info("history_loaded", chat_id=chat_id, count=len(messages), has_more=cursor.has_more)
        return ApiResult.success(HistoryPage(messages=messages, has_more=cursor.has_more))

    async def load_more(
        self,
        account: Account,
        chat_id: str,
        before_timestamp: int,
        before_id: Optional[str] = None,
    ) -> ApiResult[HistoryPage]:
        """Messages strictly older than ``before_timestamp``, ascending."""
        cursor = self.cursor(account, chat_id)
        if not cursor.has_more:
            return ApiResult.success(HistoryPage(messages=[], has_more=False))

        key = (account.key, chat_id)
        if not self._flights.try_acquire(key, "load_more"):
            holder = self._flights.holder(key) or "operation"
            logger.debug("load_more_rejected", chat_id=chat_id, holder=holder)
            return ApiResult.failure(OperationInFlight(f"{holder} already in flight for {chat_id}"))

        cursor.busy = True
        try:
            result = await self._registry.get(account).fetch_history(
                chat_id, self._page_size, before_id=before_id
            )
        finally:
            cursor.busy = False
            self._flights.release(key)

        if not result.ok:
            # only a malformed page ends paging
            if isinstance(result.error, MalformedResponse):
                cursor.has_more = False
            logger.warning("history_page_failed", chat_id=chat_id, error=str(result.error))
            return ApiResult.failure(result.error)

        raw = result.data or []
        older = merge([], self._older_than(raw, chat_id, before_timestamp))
        cursor.has_more = len(raw) >= self._page_size and bool(older)
        if older:
            oldest = older[0].timestamp
            if cursor.oldest_timestamp is None or oldest < cursor.oldest_timestamp:
                cursor.oldest_timestamp = oldest

        logger.info(
            "history_page_loaded",
            chat_id=chat_id,
            received=len(raw),
            kept=len(older),
            has_more=cursor.has_more,
        )
        return ApiResult.success(HistoryPage(messages=older, has_more=cursor.has_more))

    @staticmethod
    def _older_than(raw: list[Message], chat_id: str, before_timestamp: int) -> list[Message]:
        return [m for m in raw if m.timestamp < before_timestamp and m.chat_id in ("", chat_id)]
