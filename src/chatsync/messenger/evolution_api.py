"""Evolution API provider client.

Evolution is webhook-driven and has no notification queue, so
``poll_notification`` always reports an empty queue and the poller relies on
its history fallback. The incoming/outgoing listings are served from
``chat/findMessages`` filtered on ``key.fromMe``.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Optional

from chatsync.core.result import ApiResult
from chatsync.core.types import Provider
from chatsync.log import get_logger
from chatsync.messenger.models import Message, Notification
from chatsync.messenger.normalize import extract_list, normalize_evolution_message
from chatsync.messenger.ratelimit import RateLimitedApiClient

logger = get_logger(__name__)

LISTING_LIMIT = 200


class EvolutionApiClient(RateLimitedApiClient):
    """Evolution API (Baileys) instance client."""

    def __init__(self, *args: Any, clock: Callable[[], float] = time.time, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._clock = clock

    @property
    def provider_name(self) -> str:
        return Provider.EVOLUTION_API

    def _build_url(self, endpoint: str) -> str:
        base = (self.account.base_url or self._config.evolution_api_url).rstrip("/")
        return f"{base}/{endpoint}/{self.account.instance_id}"

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "apikey": self.account.token,
        }

    async def list_incoming(self, window_minutes: int) -> ApiResult[list[Message]]:
        result = await self._find_messages({"key": {"fromMe": False}}, LISTING_LIMIT)
        if not result.ok:
            return result
        cutoff = int(self._clock()) - window_minutes * 60
        return ApiResult.success([m for m in result.data or [] if m.timestamp >= cutoff])

    async def list_outgoing(self) -> ApiResult[list[Message]]:
        return await self._find_messages({"key": {"fromMe": True}}, LISTING_LIMIT)

    async def fetch_history(
        self, chat_id: str, count: int, before_id: Optional[str] = None
    ) -> ApiResult[list[Message]]:
        # findMessages has no "before message" cursor; the pager filters by timestamp
        return await self._find_messages({"key": {"remoteJid": chat_id}}, count, chat_id=chat_id)

    async def send_text(self, chat_id: str, text: str) -> ApiResult[Optional[str]]:
        result = await self.call(
            "message/sendText", method="POST", body={"number": chat_id, "text": text}
        )
        if not result.ok:
            return ApiResult.failure(result.error)
        data = result.data if isinstance(result.data, dict) else {}
        key = data.get("key") if isinstance(data.get("key"), dict) else {}
        return ApiResult.success(key.get("id"))

    async def poll_notification(self) -> ApiResult[Optional[Notification]]:
        return ApiResult.success(None)

    async def delete_notification(self, receipt_id: int) -> ApiResult[None]:
        return ApiResult.success(None)

    async def fetch_avatar(self, chat_id: str) -> ApiResult[Optional[str]]:
        result = await self.call(
            "chat/fetchProfilePictureUrl", method="POST", body={"number": chat_id}
        )
        if not result.ok:
            return ApiResult.failure(result.error)
        data = result.data if isinstance(result.data, dict) else {}
        return ApiResult.success(data.get("profilePictureUrl") or None)

    async def _find_messages(
        self, where: dict[str, Any], limit: int, chat_id: Optional[str] = None
    ) -> ApiResult[list[Message]]:
        result = await self.call(
            "chat/findMessages", method="POST", body={"where": where, "limit": limit}
        )
        if not result.ok:
            return ApiResult.failure(result.error)

        items = extract_list(result.data, "messages", "records")
        if items is None:
            if result.data is not None:
                logger.warning("malformed_response", endpoint="chat/findMessages")
            return ApiResult.success([])

        messages = [m for m in (normalize_evolution_message(raw, chat_id) for raw in items) if m]
        return ApiResult.success(messages)
