"""Tagged result type returned by every remote-facing operation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from chatsync.core.errors import SyncError

T = TypeVar("T")


@dataclass(slots=True)
class ApiResult(Generic[T]):
    """Either ``data`` (success) or ``error`` (failure), never both."""

    data: Optional[T] = None
    error: Optional[SyncError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, data: Optional[T] = None) -> ApiResult[T]:
        return cls(data=data)

    @classmethod
    def failure(cls, error: SyncError) -> ApiResult[T]:
        return cls(error=error)

    def unwrap_or(self, default: T) -> T:
        if self.error is not None or self.data is None:
            return default
        return self.data
