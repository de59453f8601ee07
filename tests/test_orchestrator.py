"""Tests for the session coordinator."""

import asyncio

import pytest

from chatsync.core.errors import InvalidCredentials, TransientNetworkError
from chatsync.core.result import ApiResult
from chatsync.core.types import Direction, SyncState
from chatsync.messenger.models import Account
from chatsync.sync.orchestrator import SyncOrchestrator

from conftest import CHAT, make_message

OTHER_CHAT = "972509999999@c.us"


async def wait_for(predicate, attempts=400):
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0.005)
    raise AssertionError("condition not reached")


@pytest.fixture
def orchestrator(registry, durable_cache, app_config, clock):
    return SyncOrchestrator(registry, durable_cache, app_config, clock=clock, monotonic=clock)


@pytest.fixture
def seeded(fake_api, clock):
    now = int(clock())
    fake_api.incoming = [make_message(now - 60, text="hi", sender_name="Dana")]
    fake_api.outgoing = [make_message(now - 30, chat_id=OTHER_CHAT, direction=Direction.OUTBOUND)]
    fake_api.history[CHAT] = [make_message(now - 300 + i) for i in range(3)]
    fake_api.history[OTHER_CHAT] = [make_message(now - 30, chat_id=OTHER_CHAT)]
    return fake_api


class TestSelectAccount:
    @pytest.mark.asyncio
    async def test_loads_chat_list_and_starts_polling(self, orchestrator, seeded, account):
        await orchestrator.select_account(account)

        assert orchestrator.state == SyncState.CHATS_LOADED
        assert [c.chat_id for c in orchestrator.chats] == [OTHER_CHAT, CHAT]
        assert orchestrator.chats[1].name == "Dana"
        assert orchestrator.selected_chat_id is None
        assert orchestrator.poller.running

    @pytest.mark.asyncio
    async def test_warm_chat_list_is_reused(self, orchestrator, seeded, account):
        await orchestrator.select_account(account)
        await orchestrator.select_account(account)

        assert seeded.count("list_incoming") == 1
        assert len(orchestrator.chats) == 2

    @pytest.mark.asyncio
    async def test_invalid_credentials_do_not_poll(self, orchestrator):
        await orchestrator.select_account(Account(instance_id="12", token="x y"))

        assert not orchestrator.poller.running

    @pytest.mark.asyncio
    async def test_switching_account_resets_selection(self, orchestrator, seeded, account):
        await orchestrator.select_account(account)
        await orchestrator.select_chat(CHAT)

        await orchestrator.select_account(Account(instance_id="1101000002", token="zzz"))

        assert orchestrator.selected_chat_id is None
        assert orchestrator.messages == []
        assert orchestrator.chats == []
        assert orchestrator.poller.state.account_key == "1101000002"


class TestSelectChat:
    @pytest.mark.asyncio
    async def test_loads_history(self, orchestrator, seeded, account, durable_cache):
        await orchestrator.select_account(account)
        await orchestrator.select_chat(CHAT)

        assert orchestrator.state == SyncState.HISTORY_LOADED
        assert len(orchestrator.messages) == 3
        assert orchestrator.cursor.has_more is False
        assert len(await durable_cache.load(account.key, CHAT)) == 3

    @pytest.mark.asyncio
    async def test_warm_history_is_honored(self, orchestrator, seeded, account):
        await orchestrator.select_account(account)
        await orchestrator.select_chat(CHAT)
        await orchestrator.select_chat(OTHER_CHAT)
        await orchestrator.select_chat(CHAT)

        assert seeded.count("fetch_history") == 2
        assert len(orchestrator.messages) == 3

    @pytest.mark.asyncio
    async def test_durable_copy_is_merged_with_fresh_page(self, orchestrator, seeded, account, durable_cache):
        await orchestrator.select_account(account)
        await durable_cache.save(account.key, CHAT, [make_message(10, text="from last week")])

        await orchestrator.select_chat(CHAT)

        assert orchestrator.messages[0].text == "from last week"
        assert len(orchestrator.messages) == 4

    @pytest.mark.asyncio
    async def test_failed_fetch_keeps_durable_copy(self, orchestrator, seeded, account, durable_cache):
        await orchestrator.select_account(account)
        await durable_cache.save(account.key, CHAT, [make_message(10)])
        seeded.history_results = [ApiResult.failure(TransientNetworkError("down", status=502))]

        await orchestrator.select_chat(CHAT)

        assert [m.timestamp for m in orchestrator.messages] == [10]
        assert isinstance(orchestrator.error, TransientNetworkError)

    @pytest.mark.asyncio
    async def test_result_for_previous_chat_is_discarded(self, orchestrator, seeded, account):
        await orchestrator.select_account(account)
        seeded.history_gate = asyncio.Event()

        first = asyncio.create_task(orchestrator.select_chat(CHAT))
        await wait_for(lambda: seeded.count("fetch_history") == 1)
        second = asyncio.create_task(orchestrator.select_chat(OTHER_CHAT))
        await wait_for(lambda: seeded.count("fetch_history") == 2)
        seeded.history_gate.set()
        await asyncio.gather(first, second)

        assert orchestrator.selected_chat_id == OTHER_CHAT
        assert {m.chat_id for m in orchestrator.messages} == {OTHER_CHAT}
        assert orchestrator.is_loading_history is False

    @pytest.mark.asyncio
    async def test_warm_switch_during_fetch_clears_loading(self, orchestrator, seeded, account):
        await orchestrator.select_account(account)
        await orchestrator.select_chat(OTHER_CHAT)
        seeded.history_gate = asyncio.Event()

        cold = asyncio.create_task(orchestrator.select_chat(CHAT))
        await wait_for(lambda: seeded.count("fetch_history") == 2)
        assert orchestrator.is_loading_history is True

        await orchestrator.select_chat(OTHER_CHAT)
        assert orchestrator.is_loading_history is False

        seeded.history_gate.set()
        await cold

        assert orchestrator.state == SyncState.HISTORY_LOADED
        assert orchestrator.is_loading_history is False
        assert orchestrator.selected_chat_id == OTHER_CHAT
        assert {m.chat_id for m in orchestrator.messages} == {OTHER_CHAT}

    @pytest.mark.asyncio
    async def test_warm_account_switch_during_chat_fetch_clears_loading(self, orchestrator, seeded, account):
        other = Account("1101000002", "zzz")
        await orchestrator.select_account(other)
        seeded.list_gate = asyncio.Event()

        cold = asyncio.create_task(orchestrator.select_account(account))
        await wait_for(lambda: seeded.count("list_incoming") == 1)
        assert orchestrator.is_loading_chats is True

        await orchestrator.select_account(other)
        assert orchestrator.is_loading_chats is False

        seeded.list_gate.set()
        await cold

        assert orchestrator.is_loading_chats is False
        assert orchestrator.selected_account is other
        assert orchestrator.state == SyncState.CHATS_LOADED


class TestSend:
    @pytest.mark.asyncio
    async def test_success_appends_echo(self, orchestrator, seeded, account, clock, durable_cache):
        await orchestrator.select_account(account)
        await orchestrator.select_chat(CHAT)

        sent = await orchestrator.send("  hello there  ")

        assert sent
        echo = orchestrator.messages[-1]
        assert echo.text == "hello there"
        assert echo.local_echo
        assert echo.id == "SENT1"
        assert echo.timestamp == int(clock())
        assert echo.direction == Direction.OUTBOUND
        assert orchestrator.draft == ""
        assert any(m.local_echo for m in await durable_cache.load(account.key, CHAT))

    @pytest.mark.asyncio
    async def test_success_invalidates_chat_list_without_refetch(self, orchestrator, seeded, account):
        await orchestrator.select_account(account)
        await orchestrator.select_chat(CHAT)

        await orchestrator.send("hi")

        assert seeded.count("list_incoming") == 1
        await orchestrator.load_chats()
        assert seeded.count("list_incoming") == 2

    @pytest.mark.asyncio
    async def test_failure_rolls_back(self, orchestrator, seeded, account):
        await orchestrator.select_account(account)
        await orchestrator.select_chat(CHAT)
        before = orchestrator.messages
        seeded.send_result = ApiResult.failure(TransientNetworkError("down", status=500))

        sent = await orchestrator.send("retry me")

        assert not sent
        assert orchestrator.messages == before
        assert orchestrator.draft == "retry me"
        assert orchestrator.error is not None
        assert not orchestrator.is_sending

    @pytest.mark.asyncio
    async def test_blank_text_is_not_sent(self, orchestrator, seeded, account):
        await orchestrator.select_account(account)
        await orchestrator.select_chat(CHAT)

        assert not await orchestrator.send("   ")
        assert seeded.count("send_text") == 0

    @pytest.mark.asyncio
    async def test_requires_selected_chat(self, orchestrator, seeded, account):
        await orchestrator.select_account(account)

        assert not await orchestrator.send("hi")
        assert seeded.count("send_text") == 0

    @pytest.mark.asyncio
    async def test_refresh_reconciles_echo(self, orchestrator, seeded, account, clock):
        await orchestrator.select_account(account)
        await orchestrator.select_chat(CHAT)
        await orchestrator.send("hi")
        server_copy = make_message(int(clock()) - 1, text="hi", id="SENT1", direction=Direction.OUTBOUND)
        seeded.history[CHAT] = seeded.history[CHAT] + [server_copy]

        await orchestrator.refresh_history()

        assert not any(m.local_echo for m in orchestrator.messages)
        assert orchestrator.messages[-1] == server_copy


class TestLoadMore:
    @pytest.mark.asyncio
    async def test_prepends_older_page(self, orchestrator, fake_api, account, app_config):
        fake_api.history[CHAT] = [make_message(1000 + i) for i in range(app_config.history.page_size)]
        await orchestrator.select_account(account)
        await orchestrator.select_chat(CHAT)
        fake_api.history_results = [ApiResult.success([make_message(900), make_message(901)])]

        loaded = await orchestrator.load_more()

        timestamps = [m.timestamp for m in orchestrator.messages]
        assert loaded
        assert timestamps[:3] == [900, 901, 1000]
        assert timestamps == sorted(timestamps)
        assert fake_api.calls[-1][3] == "ID1000"
        assert orchestrator.cursor.oldest_timestamp == 900
        assert orchestrator.cursor.has_more is False


class TestFullSync:
    @pytest.mark.asyncio
    async def test_reloads_cold(self, orchestrator, seeded, account):
        await orchestrator.select_account(account)
        await orchestrator.select_chat(CHAT)
        seeded.history[CHAT] = [make_message(5)]

        await orchestrator.full_sync()

        assert [m.timestamp for m in orchestrator.messages] == [5]
        assert seeded.count("list_incoming") == 2

    @pytest.mark.asyncio
    async def test_in_flight_refresh_does_not_resurrect_stale_data(self, orchestrator, seeded, account):
        await orchestrator.select_account(account)
        await orchestrator.select_chat(CHAT)
        seeded.history_gate = asyncio.Event()
        seeded.history_results = [ApiResult.success([make_message(99, text="stale")])]

        refresh = asyncio.create_task(orchestrator.refresh_history())
        await wait_for(lambda: seeded.count("fetch_history") == 2)
        seeded.history[CHAT] = [make_message(5)]
        sync = asyncio.create_task(orchestrator.full_sync())
        await wait_for(lambda: seeded.count("fetch_history") == 3)
        seeded.history_gate.set()
        await asyncio.gather(refresh, sync)

        assert [m.timestamp for m in orchestrator.messages] == [5]


class TestFailures:
    @pytest.mark.asyncio
    async def test_failed_refresh_keeps_chat_list(self, orchestrator, seeded, account):
        await orchestrator.select_account(account)
        seeded.incoming_result = ApiResult.failure(InvalidCredentials("nope"))
        seeded.outgoing_result = ApiResult.failure(InvalidCredentials("nope"))

        ok = await orchestrator.refresh_chats()

        assert not ok
        assert len(orchestrator.chats) == 2
        assert isinstance(orchestrator.error, InvalidCredentials)

    @pytest.mark.asyncio
    async def test_close_stops_polling(self, orchestrator, seeded, account):
        await orchestrator.select_account(account)

        await orchestrator.close()

        assert not orchestrator.poller.running
        assert orchestrator.selected_account is None
