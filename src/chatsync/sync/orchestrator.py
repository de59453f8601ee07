"""Session coordinator: selected account and chat, caches, send, paging, polling."""

from __future__ import annotations

import time
from typing import Callable, Optional

from chatsync.config import AppConfig
from chatsync.core.client_registry import ClientRegistry
from chatsync.core.errors import OperationInFlight, SyncError
from chatsync.core.single_flight import SingleFlight
from chatsync.core.types import Direction, MessageKind, SyncState
from chatsync.log import bind_account, get_logger, unbind_account
from chatsync.messenger.base import MessagingApi
from chatsync.messenger.models import Account, ChatSummary, Message, PaginationCursor
from chatsync.services.scheduler import SchedulerService
from chatsync.storage.memory_cache import MemoryCache
from chatsync.storage.message_cache import DurableMessageCache, merge
from chatsync.sync.aggregator import ChatAggregator
from chatsync.sync.pager import HistoryPager
from chatsync.sync.poller import PollScheduler

logger = get_logger(__name__)

_Selection = tuple[Optional[str], Optional[str], int]


class SyncOrchestrator:
    """Owns one dashboard session's view of an account.

    Data flows memory cache -> durable cache -> remote API; fresh results are
    merged, written back to both caches, and exposed through read-only
    accessors. Every operation returns normally: failures set ``error`` and
    leave the previous chat list and history in place.

    A result is applied only if the account, chat and sync generation are
    unchanged since the operation started. ``full_sync`` bumps the generation.
    """

    def __init__(
        self,
        registry: ClientRegistry,
        durable: DurableMessageCache,
        config: AppConfig,
        scheduler: SchedulerService | None = None,
        flights: SingleFlight | None = None,
        clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self._registry = registry
        self._durable = durable
        self._config = config
        self._clock = clock
        self._flights = flights or SingleFlight()

        self._aggregator = ChatAggregator(registry, config.history.preview_labels)
        self._pager = HistoryPager(registry, self._flights, config.history.page_size)
        self._poller = PollScheduler(self, scheduler, config.polling, clock=monotonic, wall_clock=clock)

        self._chat_cache: MemoryCache[list[ChatSummary]] = MemoryCache(config.cache.chat_list_ttl, clock)
        self._history_cache: MemoryCache[list[Message]] = MemoryCache(config.cache.history_ttl, clock)

        self._account: Account | None = None
        self._chat_id: str | None = None
        self._chats: list[ChatSummary] = []
        self._messages: list[Message] = []
        self._state = SyncState.IDLE
        # token of the fetch that owns each loading flag, None when idle
        self._chats_fetch: int | None = None
        self._history_fetch: int | None = None
        self._fetch_seq = 0
        self._sending = False
        self._error: SyncError | None = None
        self._draft = ""
        self._generation = 0

    # -- accessors ---------------------------------------------------------

    @property
    def chats(self) -> list[ChatSummary]:
        return list(self._chats)

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_loading_chats(self) -> bool:
        return self._chats_fetch is not None

    @property
    def is_loading_history(self) -> bool:
        return self._history_fetch is not None

    @property
    def is_loading_more(self) -> bool:
        if self._account is None or self._chat_id is None:
            return False
        return self._pager.cursor(self._account, self._chat_id).busy

    @property
    def is_sending(self) -> bool:
        return self._sending

    @property
    def error(self) -> SyncError | None:
        return self._error

    @property
    def draft(self) -> str:
        return self._draft

    @property
    def cursor(self) -> PaginationCursor | None:
        if self._account is None or self._chat_id is None:
            return None
        return self._pager.cursor(self._account, self._chat_id)

    @property
    def selected_account(self) -> Account | None:
        return self._account

    @property
    def selected_chat_id(self) -> str | None:
        return self._chat_id

    @property
    def poller(self) -> PollScheduler:
        return self._poller

    def set_draft(self, text: str) -> None:
        self._draft = text

    def clear_error(self) -> None:
        self._error = None

    def client(self) -> MessagingApi | None:
        return self._registry.get(self._account) if self._account is not None else None

    # -- selection ---------------------------------------------------------

    def _selection(self) -> _Selection:
        return (self._account.key if self._account else None, self._chat_id, self._generation)

    def _is_current(self, selection: _Selection, operation: str) -> bool:
        if selection == self._selection():
            return True
        logger.info("stale_result_discarded", operation=operation, account=selection[0], chat_id=selection[1])
        return False

    def _next_fetch(self) -> int:
        self._fetch_seq += 1
        return self._fetch_seq

    async def select_account(self, account: Account) -> None:
        self.stop_polling()
        self._account = account
        self._chat_id = None
        self._chats = []
        self._messages = []
        self._error = None
        self._draft = ""
        self._state = SyncState.IDLE
        self._history_fetch = None
        bind_account(account.key)
        logger.info("account_selected", account=account.key, provider=account.provider)

        await self.load_chats()
        if self._account is account and self._config.polling.enabled:
            self.start_polling()

    async def select_chat(self, chat_id: str) -> None:
        account = self._account
        if account is None:
            logger.warning("select_chat_without_account", chat_id=chat_id)
            return

        self._chat_id = chat_id
        self._messages = []
        self._pager.reset(account, chat_id)
        selection = self._selection()

        warm = self._history_cache.get((account.key, chat_id))
        if warm is not None:
            self._messages = warm
            self._sync_cursor()
            self._history_fetch = None
            self._state = SyncState.HISTORY_LOADED
            logger.debug("history_cache_hit", chat_id=chat_id, count=len(warm))
            return

        self._state = SyncState.HISTORY_LOADING
        token = self._history_fetch = self._next_fetch()
        stored = await self._durable.load(account.key, chat_id)
        if not self._is_current(selection, "select_chat"):
            if self._history_fetch == token:
                self._history_fetch = None
            return
        if stored:
            self._messages = stored
            logger.debug("history_durable_hit", chat_id=chat_id, count=len(stored))

        await self._fetch_initial(account, chat_id, selection)

    # -- chat list ---------------------------------------------------------

    async def load_chats(self, force: bool = False) -> bool:
        """Show the chat list, from the memory cache unless ``force``. Returns False on failure."""
        account = self._account
        if account is None:
            return False
        selection = self._selection()

        if not force:
            warm = self._chat_cache.get(account.key)
            if warm is not None:
                self._chats = warm
                self._chats_fetch = None
                if self._chat_id is None:
                    self._state = SyncState.CHATS_LOADED
                return True

        token = self._chats_fetch = self._next_fetch()
        if self._chat_id is None:
            self._state = SyncState.CHATS_LOADING
        if not self._chats:
            stored = await self._durable.load_chats(account.key)
            if stored and self._is_current(selection, "load_chats") and not self._chats:
                self._chats = stored

        result = await self._aggregator.list_chats(account, self._config.history.window_minutes)
        chats = result.data or []
        if result.ok and self._config.history.avatar_limit > 0:
            chats = await self._aggregator.attach_avatars(account, chats, self._config.history.avatar_limit)
        if self._chats_fetch == token:
            self._chats_fetch = None
        if not self._is_current(selection, "load_chats"):
            return False

        if self._chat_id is None:
            self._state = SyncState.CHATS_LOADED
        if not result.ok:
            self._error = result.error
            return False

        self._chats = chats
        self._chat_cache.set(account.key, chats)
        await self._durable.save_chats(account.key, chats)
        logger.info("chats_loaded", account=account.key, count=len(chats))
        return True

    async def refresh_chats(self) -> bool:
        return await self.load_chats(force=True)

    # -- history -----------------------------------------------------------

    async def _fetch_initial(
        self, account: Account, chat_id: str, selection: _Selection, replace: bool = False
    ) -> bool:
        token = self._history_fetch = self._next_fetch()
        self._state = SyncState.HISTORY_LOADING
        result = await self._pager.load_initial(account, chat_id)
        if self._history_fetch == token:
            self._history_fetch = None
        if not self._is_current(selection, "load_history"):
            return False

        self._state = SyncState.HISTORY_LOADED
        if not result.ok:
            self._error = result.error
            return False

        page = result.data
        base = [] if replace else self._messages
        await self._apply_history(account, chat_id, merge(base, page.messages))
        return True

    async def refresh_history(self) -> bool:
        """Re-fetch the newest page of the selected chat and merge it in.

        Skipped while ``load_more`` holds the chat; returns False so the
        caller can retry later. Returns True when no chat is selected.
        """
        account, chat_id = self._account, self._chat_id
        if account is None or chat_id is None:
            return True

        key = (account.key, chat_id)
        if not self._flights.try_acquire(key, "refresh"):
            logger.info("history_refresh_skipped", chat_id=chat_id, holder=self._flights.holder(key))
            return False

        selection = self._selection()
        try:
            result = await self._registry.get(account).fetch_history(chat_id, self._pager.page_size)
        finally:
            self._flights.release(key)

        if not self._is_current(selection, "refresh_history"):
            return True
        if not result.ok:
            self._error = result.error
            return False

        fresh = [m for m in result.data or [] if m.chat_id in ("", chat_id)]
        await self._apply_history(account, chat_id, merge(self._messages, fresh))
        return True

    async def load_more(self) -> bool:
        """Prepend the next older page. Returns True if anything was loaded."""
        account, chat_id = self._account, self._chat_id
        if account is None or chat_id is None or not self._messages:
            return False

        selection = self._selection()
        oldest = self._messages[0]
        before_id = next((m.id for m in self._messages if m.id and not m.local_echo), None)
        result = await self._pager.load_more(account, chat_id, oldest.timestamp, before_id)
        if not self._is_current(selection, "load_more"):
            return False
        if not result.ok:
            if not isinstance(result.error, OperationInFlight):
                self._error = result.error
            return False

        page = result.data
        if not page.messages:
            return False
        await self._apply_history(account, chat_id, merge(self._messages, page.messages))
        return True

    async def _apply_history(self, account: Account, chat_id: str, messages: list[Message]) -> None:
        self._messages = messages
        self._sync_cursor()
        self._history_cache.set((account.key, chat_id), messages)
        await self._durable.save(account.key, chat_id, messages)

    def _sync_cursor(self) -> None:
        cursor = self.cursor
        if cursor is not None and self._messages:
            oldest = self._messages[0].timestamp
            if cursor.oldest_timestamp is None or oldest < cursor.oldest_timestamp:
                cursor.oldest_timestamp = oldest

    # -- send --------------------------------------------------------------

    async def send(self, text: Optional[str] = None) -> bool:
        """Send ``text`` (or the current draft) to the selected chat.

        On success a local echo is merged into the history, the chat-list
        cache is invalidated and the draft cleared. On failure nothing is
        added and the draft keeps the text.
        """
        if text is not None:
            self._draft = text
        body = self._draft.strip()
        account, chat_id = self._account, self._chat_id
        if not body or account is None or chat_id is None:
            logger.debug("send_ignored", has_text=bool(body), has_chat=chat_id is not None)
            return False

        self._sending = True
        try:
            result = await self._registry.get(account).send_text(chat_id, body)
        finally:
            self._sending = False

        if not result.ok:
            self._error = result.error
            logger.warning("send_failed", chat_id=chat_id, error=str(result.error))
            return False

        timestamp = int(self._clock())
        echo = Message(
            chat_id=chat_id,
            timestamp=timestamp,
            direction=Direction.OUTBOUND,
            kind=MessageKind.TEXT,
            text=body,
            id=result.data or f"local-{timestamp}",
            local_echo=True,
        )
        if self._account is account and self._chat_id == chat_id:
            await self._apply_history(account, chat_id, merge(self._messages, [echo]))
        else:
            stored = await self._durable.load(account.key, chat_id) or []
            await self._durable.save(account.key, chat_id, merge(stored, [echo]))
            self._history_cache.invalidate((account.key, chat_id))

        self._chat_cache.invalidate(account.key)
        if self._draft.strip() == body:
            self._draft = ""
        logger.info("message_sent", chat_id=chat_id, message_id=echo.id)
        return True

    # -- full sync ---------------------------------------------------------

    async def full_sync(self) -> bool:
        """Drop every cached copy for the current account and chat, then reload cold."""
        account = self._account
        if account is None:
            return False

        self._generation += 1
        chat_id = self._chat_id
        self._chat_cache.clear()
        self._history_cache.clear()
        self._aggregator.forget(account.key)
        await self._durable.clear_chats(account.key)
        if chat_id is not None:
            await self._durable.clear(account.key, chat_id)
        logger.info("full_sync_started", account=account.key, chat_id=chat_id, generation=self._generation)

        ok = await self.load_chats(force=True)
        if chat_id is not None and self._chat_id == chat_id:
            ok = await self._fetch_initial(account, chat_id, self._selection(), replace=True) and ok
        return ok

    # -- polling -----------------------------------------------------------

    def start_polling(self) -> bool:
        account = self._account
        if account is None:
            return False
        problem = account.credentials_problem()
        if problem:
            logger.warning("polling_not_started", account=account.key, reason=problem)
            return False
        self._poller.start(account)
        return True

    def stop_polling(self) -> None:
        self._poller.stop()

    async def close(self) -> None:
        """End the session: stop polling and drop in-memory state."""
        self.stop_polling()
        self._generation += 1
        self._chat_cache.clear()
        self._history_cache.clear()
        self._account = None
        self._chat_id = None
        self._chats_fetch = None
        self._history_fetch = None
        self._state = SyncState.IDLE
        unbind_account()
        logger.info("session_closed")
