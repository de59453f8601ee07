"""Unified message models for all messaging providers."""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from chatsync.core.types import Direction, MessageKind, Provider

_GREEN_INSTANCE_ID = re.compile(r"^\d{10}$")
_GREEN_TOKEN = re.compile(r"^[a-zA-Z0-9]+$")
_EVOLUTION_INSTANCE = re.compile(r"^[A-Za-z0-9_-]+$")

JID_SUFFIXES = ("@c.us", "@g.us", "@s.whatsapp.net", "@lid", "@broadcast")


@dataclass(frozen=True, slots=True)
class Account:
    """One configured messaging-provider instance."""

    instance_id: str
    token: str = field(repr=False)
    provider: Provider = Provider.GREEN_API
    base_url: Optional[str] = None

    @property
    def key(self) -> str:
        return self.instance_id

    def credentials_problem(self) -> Optional[str]:
        """Return why the credentials cannot work for this provider, or None."""
        if not self.instance_id or not self.token:
            return "missing instance id or token"
        if self.provider == Provider.GREEN_API:
            if not _GREEN_INSTANCE_ID.match(self.instance_id):
                return "invalid instance id format (must be 10 digits)"
            if not _GREEN_TOKEN.match(self.token):
                return "invalid token format"
        elif self.provider == Provider.EVOLUTION_API:
            if not _EVOLUTION_INSTANCE.match(self.instance_id):
                return "invalid instance name format"
            if any(ch.isspace() for ch in self.token):
                return "invalid token format"
        return None


@dataclass(frozen=True, slots=True)
class Message:
    """One chat message, normalized across providers.

    ``timestamp`` (epoch seconds) is the ordering and identity key within a chat.
    """

    chat_id: str
    timestamp: int
    direction: Direction
    kind: MessageKind = MessageKind.TEXT
    text: Optional[str] = None
    id: Optional[str] = None
    attachment: Optional[dict[str, Any]] = None
    sender_name: Optional[str] = None
    chat_name: Optional[str] = None
    local_echo: bool = False

    @property
    def is_outbound(self) -> bool:
        return self.direction == Direction.OUTBOUND

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        return cls(
            chat_id=str(data["chat_id"]),
            timestamp=int(data["timestamp"]),
            direction=Direction(data["direction"]),
            kind=MessageKind(data.get("kind", MessageKind.UNKNOWN)),
            text=data.get("text"),
            id=data.get("id"),
            attachment=data.get("attachment"),
            sender_name=data.get("sender_name"),
            chat_name=data.get("chat_name"),
            local_echo=bool(data.get("local_echo", False)),
        )


@dataclass(frozen=True, slots=True)
class ChatSummary:
    """One conversation as shown in the chat list."""

    chat_id: str
    name: str
    last_message: str
    timestamp: int
    avatar: Optional[str] = None
    last_message_id: Optional[str] = None

    @property
    def is_group(self) -> bool:
        return self.chat_id.endswith("@g.us")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatSummary:
        return cls(
            chat_id=str(data["chat_id"]),
            name=str(data.get("name") or display_id(data["chat_id"])),
            last_message=str(data.get("last_message") or ""),
            timestamp=int(data.get("timestamp") or 0),
            avatar=data.get("avatar"),
            last_message_id=data.get("last_message_id"),
        )


@dataclass(slots=True)
class HistoryPage:
    messages: list[Message]  # ascending by timestamp
    has_more: bool


@dataclass(slots=True)
class PaginationCursor:
    oldest_timestamp: Optional[int] = None
    has_more: bool = True
    busy: bool = False


@dataclass(frozen=True, slots=True)
class Notification:
    """One entry from the provider's notification queue."""

    receipt_id: Optional[int]
    webhook_type: str
    chat_id: Optional[str] = None
    message: Optional[Message] = None

    @property
    def carries_message(self) -> bool:
        return self.webhook_type in MESSAGE_WEBHOOK_TYPES


@dataclass(slots=True)
class PollState:
    account_key: str
    enabled: bool = True
    last_receipt_id: Optional[int] = None
    last_refresh_at: Optional[float] = None
    pending_refresh: bool = False
    webhook_mode: bool = False
    seen_timestamps: set[int] = field(default_factory=set)


MESSAGE_WEBHOOK_TYPES = frozenset({
    "incomingMessageReceived",
    "outgoingMessageReceived",
    "outgoingAPIMessageReceived",
    "outgoingMessageStatus",
})


def display_id(chat_id: str) -> str:
    """Strip the provider suffix from a chat id (``972501234567@c.us`` -> ``972501234567``)."""
    for suffix in JID_SUFFIXES:
        if chat_id.endswith(suffix):
            return chat_id[: -len(suffix)]
    return chat_id


def looks_like_jid(name: Optional[str]) -> bool:
    return bool(name) and any(suffix in name for suffix in JID_SUFFIXES)
