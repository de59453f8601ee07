"""Pytest configuration and fixtures."""

from __future__ import annotations

import asyncio
from typing import Any, Optional

import pytest
import pytest_asyncio

from chatsync.config import AppConfig
from chatsync.core.client_registry import ClientRegistry
from chatsync.core.result import ApiResult
from chatsync.core.types import Direction, MessageKind
from chatsync.messenger.base import MessagingApi
from chatsync.messenger.models import Account, Message, Notification
from chatsync.storage.database import Database
from chatsync.storage.kv_store import SqliteKeyValueStore
from chatsync.storage.message_cache import DurableMessageCache

GREEN_ACCOUNT = Account(instance_id="1101000001", token="abc123token")
CHAT = "972501234567@c.us"


def make_message(
    timestamp: int,
    chat_id: str = CHAT,
    text: Optional[str] = None,
    direction: Direction = Direction.INBOUND,
    **kwargs: Any,
) -> Message:
    return Message(
        chat_id=chat_id,
        timestamp=timestamp,
        direction=direction,
        kind=kwargs.pop("kind", MessageKind.TEXT),
        text=text if text is not None else f"msg {timestamp}",
        id=kwargs.pop("id", f"ID{timestamp}"),
        **kwargs,
    )


class FakeClock:
    """Manually advanced clock usable for both wall and monotonic time."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeMessagingApi(MessagingApi):
    """Scripted provider. Scripted results are consumed before the defaults."""

    def __init__(self, account: Account):
        super().__init__(account)
        self.incoming: list[Message] = []
        self.outgoing: list[Message] = []
        self.history: dict[str, list[Message]] = {}
        self.incoming_result: Optional[ApiResult] = None
        self.outgoing_result: Optional[ApiResult] = None
        self.history_results: list[ApiResult] = []
        self.history_gate: Optional[asyncio.Event] = None
        self.list_gate: Optional[asyncio.Event] = None
        self.send_result: ApiResult = ApiResult.success("SENT1")
        self.notifications: list[ApiResult] = []
        self.avatars: dict[str, str] = {}
        self.calls: list[tuple[Any, ...]] = []
        self.closed = False

    @property
    def provider_name(self) -> str:
        return "fake"

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)

    async def list_incoming(self, window_minutes: int) -> ApiResult[list[Message]]:
        self.calls.append(("list_incoming", window_minutes))
        if self.list_gate is not None:
            await self.list_gate.wait()
        return self.incoming_result or ApiResult.success(list(self.incoming))

    async def list_outgoing(self) -> ApiResult[list[Message]]:
        self.calls.append(("list_outgoing",))
        return self.outgoing_result or ApiResult.success(list(self.outgoing))

    async def fetch_history(
        self, chat_id: str, count: int, before_id: Optional[str] = None
    ) -> ApiResult[list[Message]]:
        self.calls.append(("fetch_history", chat_id, count, before_id))
        if self.history_gate is not None:
            await self.history_gate.wait()
        if self.history_results:
            return self.history_results.pop(0)
        return ApiResult.success(list(self.history.get(chat_id, []))[:count])

    async def send_text(self, chat_id: str, text: str) -> ApiResult[Optional[str]]:
        self.calls.append(("send_text", chat_id, text))
        return self.send_result

    async def poll_notification(self) -> ApiResult[Optional[Notification]]:
        self.calls.append(("poll_notification",))
        if self.notifications:
            return self.notifications.pop(0)
        return ApiResult.success(None)

    async def delete_notification(self, receipt_id: int) -> ApiResult[None]:
        self.calls.append(("delete_notification", receipt_id))
        return ApiResult.success(None)

    async def fetch_avatar(self, chat_id: str) -> ApiResult[Optional[str]]:
        self.calls.append(("fetch_avatar", chat_id))
        return ApiResult.success(self.avatars.get(chat_id))

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def account() -> Account:
    return GREEN_ACCOUNT


@pytest.fixture
def fake_api(account) -> FakeMessagingApi:
    return FakeMessagingApi(account)


@pytest.fixture
def registry(fake_api) -> ClientRegistry:
    return ClientRegistry(lambda acc: fake_api if acc == fake_api.account else FakeMessagingApi(acc))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def app_config() -> AppConfig:
    return AppConfig()


@pytest_asyncio.fixture
async def db():
    """In-memory database for testing."""
    database = Database(":memory:")
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
def kv_store(db) -> SqliteKeyValueStore:
    return SqliteKeyValueStore(db)


@pytest.fixture
def durable_cache(kv_store, clock, app_config) -> DurableMessageCache:
    return DurableMessageCache(kv_store, app_config.cache, clock=clock)
