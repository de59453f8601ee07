"""Green API provider client."""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Optional

from chatsync.core.result import ApiResult
from chatsync.core.types import Direction, Provider
from chatsync.log import get_logger
from chatsync.messenger.models import Message, Notification
from chatsync.messenger.normalize import (
    extract_list,
    normalize_green_message,
    normalize_green_notification,
)
from chatsync.messenger.ratelimit import RateLimitedApiClient

logger = get_logger(__name__)


class GreenApiClient(RateLimitedApiClient):
    """Green API instance client.

    URLs have the shape ``{base}/waInstance{id}/{method}/{token}[/{arg}]``.
    """

    @property
    def provider_name(self) -> str:
        return Provider.GREEN_API

    def _build_url(self, endpoint: str) -> str:
        base = (self.account.base_url or self._config.green_api_url).rstrip("/")
        method, _, arg = endpoint.partition("/")
        url = f"{base}/waInstance{self.account.instance_id}/{method}/{self.account.token}"
        return f"{url}/{arg}" if arg else url

    async def list_incoming(self, window_minutes: int) -> ApiResult[list[Message]]:
        result = await self.call("lastIncomingMessages", query_params={"minutes": window_minutes})
        return self._messages(result, "lastIncomingMessages", direction=Direction.INBOUND)

    async def list_outgoing(self) -> ApiResult[list[Message]]:
        result = await self.call("lastOutgoingMessages")
        return self._messages(result, "lastOutgoingMessages", direction=Direction.OUTBOUND)

    async def fetch_history(
        self, chat_id: str, count: int, before_id: Optional[str] = None
    ) -> ApiResult[list[Message]]:
        body: dict[str, Any] = {"chatId": chat_id, "count": count}
        if before_id:
            body["idMessage"] = before_id
        result = await self.call("getChatHistory", method="POST", body=body)
        return self._messages(result, "getChatHistory", chat_id=chat_id)

    async def send_text(self, chat_id: str, text: str) -> ApiResult[Optional[str]]:
        result = await self.call(
            "sendMessage", method="POST", body={"chatId": chat_id, "message": text}
        )
        if not result.ok:
            return ApiResult.failure(result.error)
        data = result.data if isinstance(result.data, dict) else {}
        return ApiResult.success(data.get("idMessage"))

    async def poll_notification(self) -> ApiResult[Optional[Notification]]:
        result = await self.call("receiveNotification")
        if not result.ok:
            return ApiResult.failure(result.error)
        if result.data is None:
            return ApiResult.success(None)
        notification = normalize_green_notification(result.data)
        if notification is None:
            logger.warning("malformed_notification", payload_type=type(result.data).__name__)
        return ApiResult.success(notification)

    async def delete_notification(self, receipt_id: int) -> ApiResult[None]:
        result = await self.call(f"deleteNotification/{receipt_id}", method="DELETE")
        if not result.ok:
            return ApiResult.failure(result.error)
        return ApiResult.success(None)

    async def fetch_avatar(self, chat_id: str) -> ApiResult[Optional[str]]:
        result = await self.call("getAvatar", method="POST", body={"chatId": chat_id})
        if not result.ok:
            return ApiResult.failure(result.error)
        data = result.data if isinstance(result.data, dict) else {}
        return ApiResult.success(data.get("urlAvatar") or None)

    def _messages(
        self,
        result: ApiResult[Any],
        endpoint: str,
        chat_id: Optional[str] = None,
        direction: Optional[Direction] = None,
    ) -> ApiResult[list[Message]]:
        if not result.ok:
            return ApiResult.failure(result.error)

        items = extract_list(result.data, "messages", "data")
        if items is None:
            if result.data is not None:
                logger.warning(
                    "malformed_response",
                    endpoint=endpoint,
                    payload_type=type(result.data).__name__,
                )
            return ApiResult.success([])

        messages: list[Message] = []
        dropped = 0
        for raw in items:
            message = normalize_green_message(raw, chat_id)
            if message is None:
                dropped += 1
                continue
            if direction is not None and message.direction != direction:
                message = replace(message, direction=direction)
            messages.append(message)

        if dropped:
            logger.debug("messages_unparsable", endpoint=endpoint, dropped=dropped)
        return ApiResult.success(messages)
