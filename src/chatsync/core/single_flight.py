"""Per-key single-flight guard.

At most one holder per key; a second caller is refused rather than queued.
All callers run on one event loop, so checking and claiming a key happen
without an intervening ``await``.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Hashable, Iterator

from chatsync.core.errors import OperationInFlight
from chatsync.log import get_logger

logger = get_logger(__name__)


class SingleFlight:
    """Tracks which keys currently have an operation in flight."""

    def __init__(self) -> None:
        self._active: dict[Hashable, str] = {}

    def is_busy(self, key: Hashable) -> bool:
        return key in self._active

    def holder(self, key: Hashable) -> str | None:
        return self._active.get(key)

    def try_acquire(self, key: Hashable, owner: str = "") -> bool:
        if key in self._active:
            return False
        self._active[key] = owner
        return True

    def release(self, key: Hashable) -> None:
        self._active.pop(key, None)

    @contextmanager
    def hold(self, key: Hashable, owner: str = "") -> Iterator[None]:
        """Claim ``key`` for the duration of the block or raise OperationInFlight."""
        if not self.try_acquire(key, owner):
            logger.debug("single_flight_rejected", key=str(key), owner=owner, holder=self._active[key])
            raise OperationInFlight(f"{self._active[key] or 'operation'} already in flight for {key}")
        try:
            yield
        finally:
            self.release(key)
