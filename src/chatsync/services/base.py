"""Lifecycle contract for background services owned by the app."""

from __future__ import annotations

from abc import ABC, abstractmethod


class Service(ABC):
    """Started by ``ChatSyncApp.start`` and stopped, in reverse, by ``stop``."""

    @property
    @abstractmethod
    def service_name(self) -> str: ...

    @abstractmethod
    async def start(self) -> None:
        """Idempotent; a second call is a no-op."""

    @abstractmethod
    async def stop(self) -> None: ...

    @abstractmethod
    async def health_check(self) -> bool:
        """True while the service is running."""
