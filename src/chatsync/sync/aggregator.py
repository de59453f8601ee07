"""Build the chat list from the recent inbound and outbound message streams."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from typing import Mapping, Optional

from chatsync.core.client_registry import ClientRegistry
from chatsync.core.result import ApiResult
from chatsync.core.types import Direction, MessageKind
from chatsync.log import get_logger
from chatsync.messenger.models import Account, ChatSummary, Message, display_id, looks_like_jid

logger = get_logger(__name__)

PREVIEW_LABELS: dict[str, str] = {
    MessageKind.IMAGE: "📷 Image",
    MessageKind.VIDEO: "🎥 Video",
    MessageKind.AUDIO: "🎵 Audio",
    MessageKind.DOCUMENT: "📄 Document",
    MessageKind.STICKER: "🩹 Sticker",
    MessageKind.LOCATION: "📍 Location",
    MessageKind.CONTACT: "👤 Contact",
    MessageKind.POLL: "📊 Poll",
    MessageKind.REACTION: "Reaction",
    MessageKind.DELETED: "🚫 This message was deleted",
}
ATTACHMENT_LABEL = "📎 Attachment"


def preview_text(message: Message, labels: Mapping[str, str] | None = None) -> str:
    """One-line chat-list preview for a message."""
    table = {**PREVIEW_LABELS, **(labels or {})}
    if message.kind in (MessageKind.TEXT, MessageKind.QUOTED) and message.text:
        return message.text
    if message.kind == MessageKind.REACTION and message.text:
        return f"{message.text} {table[MessageKind.REACTION]}"
    if message.kind == MessageKind.DOCUMENT and message.attachment:
        filename = message.attachment.get("fileName")
        if filename:
            return f"📄 {filename}"
    if message.kind in table:
        return table[message.kind]
    return message.text or table.get("attachment", ATTACHMENT_LABEL)


@dataclass(slots=True)
class _ChatDraft:
    chat_id: str
    name: Optional[str]
    preview: str
    timestamp: int
    last_id: Optional[str]


def _name_of(message: Message) -> Optional[str]:
    name = message.chat_name
    if not name and message.direction == Direction.INBOUND:
        name = message.sender_name
    if not name or looks_like_jid(name):
        return None
    return name


class ChatAggregator:
    """Union of inbound and outbound messages grouped into ``ChatSummary`` rows."""

    def __init__(self, registry: ClientRegistry, preview_labels: Mapping[str, str] | None = None):
        self._registry = registry
        self._labels = dict(preview_labels or {})
        self._avatars: dict[str, dict[str, Optional[str]]] = {}

    async def list_chats(self, account: Account, window_minutes: int) -> ApiResult[list[ChatSummary]]:
        client = self._registry.get(account)
        incoming, outgoing = await asyncio.gather(
            client.list_incoming(window_minutes),
            client.list_outgoing(),
        )

        if not incoming.ok and not outgoing.ok:
            logger.warning(
                "chat_list_failed",
                account=account.key,
                incoming_error=str(incoming.error),
                outgoing_error=str(outgoing.error),
            )
            return ApiResult.failure(incoming.error)
        for side, result in (("incoming", incoming), ("outgoing", outgoing)):
            if not result.ok:
                logger.warning("chat_list_partial", account=account.key, failed=side, error=str(result.error))

        messages = incoming.unwrap_or([]) + outgoing.unwrap_or([])
        chats = self.group(messages)
        logger.info("chats_aggregated", account=account.key, messages=len(messages), chats=len(chats))
        return ApiResult.success(chats)

    def group(self, messages: list[Message]) -> list[ChatSummary]:
        """Collapse messages into one summary per chat, newest chat first."""
        drafts: dict[str, _ChatDraft] = {}
        dropped = 0

        for message in messages:
            if not message.chat_id:
                dropped += 1
                continue
            draft = drafts.get(message.chat_id)
            if draft is None:
                drafts[message.chat_id] = _ChatDraft(
                    chat_id=message.chat_id,
                    name=_name_of(message),
                    preview=preview_text(message, self._labels),
                    timestamp=message.timestamp,
                    last_id=message.id,
                )
                continue
            if message.timestamp > draft.timestamp:
                draft.preview = preview_text(message, self._labels)
                draft.timestamp = message.timestamp
                draft.last_id = message.id
            if not draft.name:
                draft.name = _name_of(message)

        if dropped:
            logger.debug("messages_without_chat_dropped", dropped=dropped)

        summaries = [
            ChatSummary(
                chat_id=d.chat_id,
                name=d.name or display_id(d.chat_id),
                last_message=d.preview,
                timestamp=d.timestamp,
                last_message_id=d.last_id,
            )
            for d in drafts.values()
        ]
        # sorted() is stable, so equal timestamps keep first-seen order
        return sorted(summaries, key=lambda c: c.timestamp, reverse=True)

    async def attach_avatars(
        self, account: Account, chats: list[ChatSummary], limit: int = 20
    ) -> list[ChatSummary]:
        """Fill avatar URLs for up to ``limit`` chats that have none, one request at a time."""
        known = self._avatars.setdefault(account.key, {})
        client = self._registry.get(account)
        fetched = 0
        result: list[ChatSummary] = []

        for chat in chats:
            if chat.avatar:
                result.append(chat)
                continue
            if chat.chat_id not in known and fetched < limit:
                fetched += 1
                avatar = await client.fetch_avatar(chat.chat_id)
                if avatar.ok:
                    known[chat.chat_id] = avatar.data
                else:
                    logger.debug("avatar_fetch_failed", chat_id=chat.chat_id, error=str(avatar.error))
            url = known.get(chat.chat_id)
            result.append(replace(chat, avatar=url) if url else chat)

        return result

    def forget(self, account_key: str) -> None:
        self._avatars.pop(account_key, None)
