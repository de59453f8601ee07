"""Tests for application wiring."""

import pytest

from chatsync.app import ChatSyncApp
from chatsync.config import AppConfig, StorageConfig
from chatsync.core.reporting import DatabaseReporter, LogReporter
from chatsync.core.types import Provider
from chatsync.messenger.evolution_api import EvolutionApiClient
from chatsync.messenger.green_api import GreenApiClient
from chatsync.messenger.models import Account


def make_app(**overrides):
    return ChatSyncApp(AppConfig(storage=StorageConfig(db_path=":memory:"), **overrides))


class TestChatSyncApp:
    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        app = make_app()

        await app.start()
        assert await app.scheduler.health_check()
        await app.stop()

        assert not await app.scheduler.health_check()

    def test_reporter_follows_storage_config(self):
        assert isinstance(make_app().reporter, DatabaseReporter)
        no_db = ChatSyncApp(AppConfig(storage=StorageConfig(db_path=":memory:", log_to_db=False)))
        assert isinstance(no_db.reporter, LogReporter)

    @pytest.mark.asyncio
    async def test_client_per_provider(self):
        app = make_app()

        green = app.create_client(Account(instance_id="1101000001", token="abc"))
        evolution = app.create_client(
            Account(instance_id="line", token="k", provider=Provider.EVOLUTION_API)
        )

        assert isinstance(green, GreenApiClient)
        assert isinstance(evolution, EvolutionApiClient)
        await green.close()
        await evolution.close()

    @pytest.mark.asyncio
    async def test_open_account_requires_configuration(self):
        app = make_app()
        await app.start()
        try:
            with pytest.raises(ValueError):
                await app.open_account()
        finally:
            await app.stop()
