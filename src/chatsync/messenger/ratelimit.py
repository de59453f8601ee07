"""HTTP transport shared by all providers: credential check, 429 courtesy wait, backoff."""

from __future__ import annotations

import asyncio
import time
from abc import abstractmethod
from typing import Any, Awaitable, Callable, Optional

import httpx

from chatsync.config import ApiConfig
from chatsync.core.errors import (
    ApiError,
    InvalidCredentials,
    MalformedResponse,
    RateLimited,
    RequestFailed,
    TransientNetworkError,
)
from chatsync.core.reporting import ErrorReporter
from chatsync.core.result import ApiResult
from chatsync.log import get_logger
from chatsync.messenger.base import MessagingApi
from chatsync.messenger.models import Account

logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class RateLimitedApiClient(MessagingApi):
    """Wraps every remote call with validation, retries and failure reporting.

    Two retry paths share one attempt budget (``ApiConfig.max_attempts``):

    - HTTP 429: wait for the server's ``Retry-After`` hint, then try again.
    - Anything else non-2xx, or a transport error: exponential backoff
      starting at ``ApiConfig.backoff_base`` seconds.

    A 429 also pauses the whole client: any call issued before the hinted
    time has passed waits it out before touching the network.

    A 2xx body that is not JSON is a ``MalformedResponse`` and is not retried.
    """

    def __init__(
        self,
        account: Account,
        config: ApiConfig,
        reporter: ErrorReporter | None = None,
        http_client: httpx.AsyncClient | None = None,
        sleep: Sleep = asyncio.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        super().__init__(account)
        self._config = config
        self._reporter = reporter
        self._http = http_client or httpx.AsyncClient(timeout=config.timeout)
        self._owns_http = http_client is None
        self._sleep = sleep
        self._monotonic = monotonic
        self._backoff_until = 0.0
        self._pending_reports: set[asyncio.Task[None]] = set()

    @abstractmethod
    def _build_url(self, endpoint: str) -> str:
        """Absolute URL for a provider endpoint."""
        ...

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    async def call(
        self,
        endpoint: str,
        method: str = "GET",
        body: Optional[dict[str, Any]] = None,
        query_params: Optional[dict[str, Any]] = None,
    ) -> ApiResult[Any]:
        """Issue one logical request. Never raises for network or HTTP failures."""
        problem = self.account.credentials_problem()
        if problem:
            logger.warning(
                "api_invalid_credentials",
                provider=self.provider_name,
                endpoint=endpoint,
                reason=problem,
            )
            return ApiResult.failure(InvalidCredentials(problem))

        await self._wait_for_backoff(endpoint)
        url = self._build_url(endpoint)
        attempts = max(1, self._config.max_attempts)
        backoff = self._config.backoff_base
        last_error: ApiError | None = None

        for attempt in range(1, attempts + 1):
            try:
                response = await self._http.request(
                    method,
                    url,
                    params=query_params or None,
                    json=body,
                    headers=self._headers(),
                )
            except httpx.HTTPError as e:
                last_error = TransientNetworkError(f"{type(e).__name__}: {e}")
            else:
                if response.status_code == 429:
                    retry_after = self._retry_after(response)
                    last_error = RateLimited(f"rate limited on {endpoint}", retry_after=retry_after)
                    self._backoff_until = max(self._backoff_until, self._monotonic() + retry_after)
                    logger.warning(
                        "api_rate_limited",
                        endpoint=endpoint,
                        attempt=attempt,
                        retry_after=retry_after,
                    )
                    if attempt < attempts:
                        await self._sleep(retry_after)
                    continue

                if response.is_success:
                    return self._decode(response, endpoint)

                text = response.text[:500]
                last_error = TransientNetworkError(
                    f"HTTP {response.status_code}: {text}",
                    status=response.status_code,
                    body=text,
                )

            logger.warning(
                "api_call_failed",
                endpoint=endpoint,
                attempt=attempt,
                max_attempts=attempts,
                error=str(last_error),
            )
            if attempt < attempts:
                await self._sleep(backoff)
                backoff *= 2

        if last_error is None:
            raise RuntimeError(f"no request attempted for {endpoint}")
        error: ApiError = last_error if isinstance(last_error, RateLimited) else RequestFailed(last_error)
        self._report(
            "error",
            "API request failed after retries",
            {
                "endpoint": endpoint,
                "provider": self.provider_name,
                "status": getattr(last_error, "status", None),
                "error": str(last_error),
            },
        )
        return ApiResult.failure(error)

    async def _wait_for_backoff(self, endpoint: str) -> None:
        remaining = self._backoff_until - self._monotonic()
        if remaining > 0:
            logger.info("api_backoff_wait", endpoint=endpoint, seconds=round(remaining, 3))
            await self._sleep(remaining)

    def _decode(self, response: httpx.Response, endpoint: str) -> ApiResult[Any]:
        if not response.content:
            return ApiResult.success(None)
        try:
            return ApiResult.success(response.json())
        except ValueError as e:
            logger.warning("api_malformed_response", endpoint=endpoint, error=str(e))
            self._report(
                "warn",
                "API returned a malformed body",
                {"endpoint": endpoint, "provider": self.provider_name, "body": response.text[:200]},
            )
            return ApiResult.failure(MalformedResponse(f"{endpoint}: {e}"))

    def _retry_after(self, response: httpx.Response) -> float:
        header = response.headers.get("Retry-After")
        try:
            seconds = float(header) if header is not None else self._config.default_retry_after
        except ValueError:
            seconds = self._config.default_retry_after
        return min(max(seconds, 0.0), self._config.max_retry_after)

    def _report(self, level: str, message: str, meta: dict[str, Any]) -> None:
        """Hand a failure to the reporter without waiting for it."""
        if self._reporter is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self._safe_report(level, message, meta))
        self._pending_reports.add(task)
        task.add_done_callback(self._pending_reports.discard)

    async def _safe_report(self, level: str, message: str, meta: dict[str, Any]) -> None:
        try:
            await self._reporter.report(level, message, meta, account_id=self.account.key)
        except Exception as e:
            logger.warning("error_report_failed", error=str(e))

    async def flush_reports(self) -> None:
        """Wait for outstanding failure reports (used on shutdown)."""
        if self._pending_reports:
            await asyncio.gather(*self._pending_reports, return_exceptions=True)

    async def close(self) -> None:
        await self.flush_reports()
        if self._owns_http:
            await self._http.aclose()
