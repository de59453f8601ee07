"""Abstract messaging provider interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from chatsync.core.result import ApiResult
from chatsync.messenger.models import Account, Message, Notification


class MessagingApi(ABC):
    """Base class for all remote messaging providers.

    To add a new provider, subclass this (usually through
    ``RateLimitedApiClient``) and implement all abstract methods. Every
    operation returns an ``ApiResult``; expected failures are never raised.
    """

    def __init__(self, account: Account):
        self.account = account

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return provider identifier string."""
        ...

    @abstractmethod
    async def list_incoming(self, window_minutes: int) -> ApiResult[list[Message]]:
        """Inbound messages received in the last ``window_minutes``."""
        ...

    @abstractmethod
    async def list_outgoing(self) -> ApiResult[list[Message]]:
        """Recently sent messages across all chats."""
        ...

    @abstractmethod
    async def fetch_history(
        self, chat_id: str, count: int, before_id: Optional[str] = None
    ) -> ApiResult[list[Message]]:
        """Up to ``count`` messages of one chat, in provider order."""
        ...

    @abstractmethod
    async def send_text(self, chat_id: str, text: str) -> ApiResult[Optional[str]]:
        """Send a text message. Data is the provider message id when known."""
        ...

    @abstractmethod
    async def poll_notification(self) -> ApiResult[Optional[Notification]]:
        """Take the next queued notification, or None when the queue is empty."""
        ...

    @abstractmethod
    async def delete_notification(self, receipt_id: int) -> ApiResult[None]:
        """Acknowledge a processed notification."""
        ...

    @abstractmethod
    async def fetch_avatar(self, chat_id: str) -> ApiResult[Optional[str]]:
        """Avatar URL for a chat, or None when it has none."""
        ...

    async def close(self) -> None:
        """Release network resources."""
        return None
