"""Structured-log collaborators for terminal API failures."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional, Protocol

from chatsync.log import get_logger

if TYPE_CHECKING:
    from chatsync.storage.log_repo import LogRepository

logger = get_logger(__name__)


class ErrorReporter(Protocol):
    """Receives failure reports. Callers never await the outcome."""

    async def report(
        self,
        level: str,
        message: str,
        meta: Optional[dict[str, Any]] = None,
        account_id: Optional[str] = None,
    ) -> None:
        ...


class LogReporter:
    """Reports to the process log."""

    async def report(
        self,
        level: str,
        message: str,
        meta: Optional[dict[str, Any]] = None,
        account_id: Optional[str] = None,
    ) -> None:
        log = getattr(logger, level, logger.error)
        log("api_failure_reported", detail=message, account_id=account_id, **(meta or {}))


class DatabaseReporter:
    """Persists reports to the ``logs`` table so the dashboard can show them."""

    def __init__(self, log_repo: LogRepository):
        self._repo = log_repo

    async def report(
        self,
        level: str,
        message: str,
        meta: Optional[dict[str, Any]] = None,
        account_id: Optional[str] = None,
    ) -> None:
        await self._repo.add(level=level, message=message, meta=meta, account_id=account_id)
