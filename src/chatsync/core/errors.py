"""Error taxonomy for the sync engine.

These are carried inside ``ApiResult`` values rather than raised, so callers
can degrade to a stale or empty view instead of crashing.
"""

from __future__ import annotations

from typing import Optional


class SyncError(Exception):
    """Base class for every expected failure in the engine."""

    retryable = False


class ApiError(SyncError):
    """A remote call did not produce a usable result."""


class InvalidCredentials(ApiError):
    """Account data has the wrong shape for its provider. Never retried."""


class RateLimited(ApiError):
    """The provider answered 429 on every attempt."""

    retryable = True

    def __init__(self, message: str, retry_after: float = 0.0):
        super().__init__(message)
        self.retry_after = retry_after


class TransientNetworkError(ApiError):
    """Transport failure or non-2xx status."""

    retryable = True

    def __init__(self, message: str, status: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body


class MalformedResponse(ApiError):
    """The provider answered 2xx with a payload we cannot parse."""


class RequestFailed(ApiError):
    """The retry budget was exhausted."""

    def __init__(self, last_error: ApiError):
        super().__init__(f"request failed after retries: {last_error}")
        self.last_error = last_error

    @property
    def status(self) -> Optional[int]:
        return getattr(self.last_error, "status", None)


class OperationInFlight(SyncError):
    """Another operation already holds the single-flight key."""


class CacheCorrupt(SyncError):
    """A durable cache entry could not be decoded."""
