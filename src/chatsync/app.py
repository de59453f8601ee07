"""Application wiring - builds the sync engine and manages its lifecycle."""

from __future__ import annotations

from typing import Optional

from chatsync.config import AccountConfig, AppConfig
from chatsync.core.client_registry import ClientRegistry
from chatsync.core.reporting import DatabaseReporter, ErrorReporter, LogReporter
from chatsync.core.types import Provider
from chatsync.log import get_logger
from chatsync.messenger.base import MessagingApi
from chatsync.messenger.models import Account
from chatsync.services.scheduler import SchedulerService
from chatsync.storage.database import Database
from chatsync.storage.kv_store import SqliteKeyValueStore
from chatsync.storage.log_repo import LogRepository
from chatsync.storage.message_cache import DurableMessageCache
from chatsync.sync.orchestrator import SyncOrchestrator

logger = get_logger(__name__)


class ChatSyncApp:
    """Top-level application object."""

    def __init__(self, config: AppConfig):
        self.config = config
        self.db = Database(config.storage.db_path)
        self.kv_store = SqliteKeyValueStore(self.db)
        self.log_repo = LogRepository(self.db)
        self.reporter: ErrorReporter = (
            DatabaseReporter(self.log_repo) if config.storage.log_to_db else LogReporter()
        )
        self.durable_cache = DurableMessageCache(self.kv_store, config.cache)
        self.scheduler = SchedulerService(config.timezone)
        self.client_registry = ClientRegistry(self.create_client)
        self.orchestrator = SyncOrchestrator(
            self.client_registry,
            self.durable_cache,
            config,
            scheduler=self.scheduler,
        )

    async def start(self) -> None:
        """Open storage and start background services."""
        await self.db.initialize()
        await self.scheduler.start()
        logger.info("chatsync_started", accounts=len(self.config.accounts))

    async def stop(self) -> None:
        """Gracefully shut down all components."""
        await self.orchestrator.close()
        await self.client_registry.close_all()
        await self.scheduler.stop()
        await self.db.close()
        logger.info("chatsync_stopped")

    async def open_account(self, account_id: Optional[str] = None) -> AccountConfig:
        """Select a configured account (the first one by default) and load its chats."""
        account_cfg = self.config.get_account(account_id)
        await self.orchestrator.select_account(account_cfg.to_account())
        return account_cfg

    def create_client(self, account: Account) -> MessagingApi:
        match account.provider:
            case Provider.GREEN_API:
                from chatsync.messenger.green_api import GreenApiClient

                return GreenApiClient(account, self.config.api, reporter=self.reporter)
            case Provider.EVOLUTION_API:
                from chatsync.messenger.evolution_api import EvolutionApiClient

                return EvolutionApiClient(account, self.config.api, reporter=self.reporter)
            case _:
                raise ValueError(f"Unknown provider: {account.provider}")
