"""Registry of per-account messaging API clients."""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable

from chatsync.log import get_logger

if TYPE_CHECKING:
    from chatsync.messenger.base import MessagingApi
    from chatsync.messenger.models import Account

logger = get_logger(__name__)


class ClientRegistry:
    """Creates one client per account on first use and keeps it for the session."""

    def __init__(self, factory: Callable[[Account], MessagingApi]):
        self._factory = factory
        self._clients: dict[str, MessagingApi] = {}
        self._retired: list[MessagingApi] = []

    def get(self, account: Account) -> MessagingApi:
        client = self._clients.get(account.key)
        if client is None or client.account != account:
            if client is not None:
                # credentials changed; the old client is closed with the rest
                self._retired.append(client)
            client = self._factory(account)
            self._clients[account.key] = client
            logger.info("api_client_created", account=account.key, provider=client.provider_name)
        return client

    def all(self) -> list[MessagingApi]:
        return list(self._clients.values())

    def keys(self) -> list[str]:
        return list(self._clients.keys())

    async def close_all(self) -> None:
        for client in self.all() + self._retired:
            try:
                await client.close()
            except Exception as e:
                logger.error("api_client_close_error", provider=client.provider_name, error=str(e))
        self._clients.clear()
        self._retired.clear()
