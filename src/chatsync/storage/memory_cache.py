"""In-process TTL cache."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Generic, Hashable, Optional, TypeVar

T = TypeVar("T")


@dataclass(slots=True)
class CacheEntry(Generic[T]):
    value: T
    written_at: float


class MemoryCache(Generic[T]):
    """Key-value cache whose entries are fresh while ``now - written_at < ttl``.

    Expired entries are dropped lazily on read.
    """

    def __init__(self, ttl: float, clock: Callable[[], float] = time.time):
        self._ttl = ttl
        self._clock = clock
        self._entries: dict[Hashable, CacheEntry[T]] = {}

    @property
    def ttl(self) -> float:
        return self._ttl

    def get(self, key: Hashable) -> Optional[T]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.written_at >= self._ttl:
            del self._entries[key]
            return None
        return entry.value

    def peek(self, key: Hashable) -> Optional[T]:
        """Return the stored value regardless of age."""
        entry = self._entries.get(key)
        return entry.value if entry is not None else None

    def set(self, key: Hashable, value: T) -> None:
        self._entries[key] = CacheEntry(value=value, written_at=self._clock())

    def invalidate(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
