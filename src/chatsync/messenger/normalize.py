"""Convert provider-shaped JSON into ``Message``/``Notification`` values.

Green API returns flat message objects with a ``typeMessage`` discriminator.
Evolution API returns Baileys records (``key`` + nested ``message``), which are
unwrapped here first.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional

from chatsync.core.types import Direction, MessageKind
from chatsync.log import get_logger
from chatsync.messenger.models import Message, Notification

logger = get_logger(__name__)

GREEN_KINDS: dict[str, MessageKind] = {
    "textMessage": MessageKind.TEXT,
    "extendedTextMessage": MessageKind.TEXT,
    "imageMessage": MessageKind.IMAGE,
    "videoMessage": MessageKind.VIDEO,
    "audioMessage": MessageKind.AUDIO,
    "ptt": MessageKind.AUDIO,
    "documentMessage": MessageKind.DOCUMENT,
    "stickerMessage": MessageKind.STICKER,
    "locationMessage": MessageKind.LOCATION,
    "liveLocationMessage": MessageKind.LOCATION,
    "contactMessage": MessageKind.CONTACT,
    "contactsArrayMessage": MessageKind.CONTACT,
    "pollMessage": MessageKind.POLL,
    "pollCreationMessage": MessageKind.POLL,
    "reactionMessage": MessageKind.REACTION,
    "quotedMessage": MessageKind.QUOTED,
    "deletedMessage": MessageKind.DELETED,
    "revokedMessage": MessageKind.DELETED,
}

# Baileys wrappers that only carry an inner ``message``
_EVOLUTION_WRAPPERS = (
    "viewOnceMessage",
    "viewOnceMessageV2",
    "viewOnceMessageV2Extension",
    "ephemeralMessage",
    "documentWithCaptionMessage",
    "groupMentionedMessage",
)

_EVOLUTION_KINDS: tuple[tuple[str, MessageKind], ...] = (
    ("imageMessage", MessageKind.IMAGE),
    ("videoMessage", MessageKind.VIDEO),
    ("audioMessage", MessageKind.AUDIO),
    ("documentMessage", MessageKind.DOCUMENT),
    ("stickerMessage", MessageKind.STICKER),
    ("locationMessage", MessageKind.LOCATION),
    ("contactMessage", MessageKind.CONTACT),
    ("contactsArrayMessage", MessageKind.CONTACT),
    ("pollCreationMessage", MessageKind.POLL),
    ("pollCreationMessageV3", MessageKind.POLL),
    ("reactionMessage", MessageKind.REACTION),
    ("protocolMessage", MessageKind.DELETED),
    ("extendedTextMessage", MessageKind.TEXT),
    ("conversation", MessageKind.TEXT),
)

_ATTACHMENT_KEYS = (
    "downloadUrl",
    "urlFile",
    "url",
    "mediaUrl",
    "jpegThumbnail",
    "caption",
    "fileName",
    "mimeType",
    "mimetype",
    "seconds",
    "duration",
    "latitude",
    "longitude",
    "nameLocation",
    "address",
    "displayName",
    "vcard",
    "name",
    "options",
)


def _first(*values: Any) -> Any:
    for value in values:
        if value not in (None, ""):
            return value
    return None


def _pick_attachment(*sources: Optional[Mapping[str, Any]]) -> Optional[dict[str, Any]]:
    """Collect rendering fields from the given sources, earlier sources winning."""
    picked: dict[str, Any] = {}
    for source in sources:
        if not isinstance(source, Mapping):
            continue
        for key in _ATTACHMENT_KEYS:
            value = source.get(key)
            if value not in (None, "") and key not in picked:
                picked[key] = value
    return picked or None


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    if isinstance(value, Mapping) and "low" in value:
        # protobuf Long serialized by Baileys
        return _as_int(value.get("low"))
    return None


def green_kind(type_message: Optional[str]) -> MessageKind:
    if not type_message:
        return MessageKind.UNKNOWN
    return GREEN_KINDS.get(type_message, MessageKind.UNKNOWN)


def normalize_green_message(raw: Any, chat_id: Optional[str] = None) -> Optional[Message]:
    """Normalize one Green API message. Returns None when it cannot be ordered."""
    if not isinstance(raw, Mapping):
        return None

    timestamp = _as_int(raw.get("timestamp"))
    if timestamp is None:
        return None

    kind = green_kind(raw.get("typeMessage"))
    direction = (
        Direction.OUTBOUND
        if raw.get("type") in ("outgoing", "outgoingMessage") or raw.get("fromMe") is True
        else Direction.INBOUND
    )

    extended = raw.get("extendedTextMessage") or raw.get("extendedTextMessageData") or {}
    text = _first(
        raw.get("textMessage"),
        extended.get("text") if isinstance(extended, Mapping) else None,
        raw.get("caption"),
    )

    attachment = None
    if kind not in (MessageKind.TEXT, MessageKind.UNKNOWN):
        nested = raw.get(raw.get("typeMessage") or "")
        location = raw.get("location") or raw.get("locationMessageData")
        contact = raw.get("contact") or raw.get("contactMessageData")
        poll = raw.get("pollMessageData")
        attachment = _pick_attachment(raw, nested, location, contact, poll)
    if kind == MessageKind.QUOTED:
        quoted = raw.get("quotedMessage")
        if isinstance(quoted, Mapping):
            attachment = dict(attachment or {})
            attachment["quoted"] = {
                "id": quoted.get("stanzaId") or quoted.get("idMessage"),
                "text": _first(quoted.get("textMessage"), quoted.get("caption")),
                "participant": quoted.get("participant"),
            }
    if kind == MessageKind.REACTION and text is None:
        text = _first(raw.get("reaction"), extended.get("text") if isinstance(extended, Mapping) else None)

    resolved_chat = _first(raw.get("chatId"), raw.get("remoteJid"), chat_id)

    return Message(
        chat_id=str(resolved_chat) if resolved_chat else "",
        timestamp=timestamp,
        direction=direction,
        kind=kind,
        text=text,
        id=_first(raw.get("idMessage"), raw.get("id")),
        attachment=attachment,
        sender_name=_first(raw.get("senderName"), raw.get("senderContactName")),
        chat_name=_first(raw.get("chatName")),
    )


def _unwrap_evolution(message: Mapping[str, Any]) -> Mapping[str, Any]:
    for wrapper in _EVOLUTION_WRAPPERS:
        inner = message.get(wrapper)
        if isinstance(inner, Mapping) and isinstance(inner.get("message"), Mapping):
            message = inner["message"]
    return message


def normalize_evolution_message(raw: Any, chat_id: Optional[str] = None) -> Optional[Message]:
    """Normalize one Evolution API (Baileys) record."""
    if not isinstance(raw, Mapping) or not isinstance(raw.get("key"), Mapping):
        return None

    key = raw["key"]
    timestamp = _as_int(raw.get("messageTimestamp"))
    if timestamp is None:
        return None

    body = _unwrap_evolution(raw.get("message") or {})
    kind = MessageKind.UNKNOWN
    kind_field = None
    for field_name, candidate in _EVOLUTION_KINDS:
        if body.get(field_name):
            kind, kind_field = candidate, field_name
            break

    nested = body.get(kind_field) if kind_field else None
    extended = body.get("extendedTextMessage") or {}
    text = _first(
        body.get("conversation"),
        extended.get("text") if isinstance(extended, Mapping) else None,
        nested.get("caption") if isinstance(nested, Mapping) else None,
    )
    if kind == MessageKind.TEXT and isinstance(extended, Mapping):
        context = extended.get("contextInfo") or {}
        if isinstance(context, Mapping) and context.get("quotedMessage"):
            kind = MessageKind.QUOTED
    if kind == MessageKind.REACTION and isinstance(nested, Mapping):
        text = nested.get("text")

    attachment = None
    if kind not in (MessageKind.TEXT, MessageKind.UNKNOWN) and isinstance(nested, Mapping):
        attachment = _pick_attachment(nested)
        if kind == MessageKind.LOCATION:
            attachment = dict(attachment or {})
            attachment.setdefault("latitude", nested.get("degreesLatitude"))
            attachment.setdefault("longitude", nested.get("degreesLongitude"))

    resolved_chat = _first(key.get("remoteJid"), chat_id)
    from_me = bool(key.get("fromMe"))

    return Message(
        chat_id=str(resolved_chat) if resolved_chat else "",
        timestamp=timestamp,
        direction=Direction.OUTBOUND if from_me else Direction.INBOUND,
        kind=kind,
        text=text,
        id=key.get("id"),
        attachment=attachment,
        sender_name=None if from_me else _first(raw.get("pushName")),
        chat_name=None,
    )


def normalize_green_notification(raw: Any) -> Optional[Notification]:
    """Normalize a ``receiveNotification`` payload (``{"receiptId", "body"}``)."""
    if not isinstance(raw, Mapping):
        return None

    body = raw.get("body") if isinstance(raw.get("body"), Mapping) else {}
    webhook_type = str(body.get("typeWebhook") or "")
    sender = body.get("senderData") if isinstance(body.get("senderData"), Mapping) else {}
    chat_id = _first(sender.get("chatId"), body.get("chatId"))

    message = None
    data = body.get("messageData")
    if isinstance(data, Mapping):
        flat = dict(data)
        # textMessageData / extendedTextMessageData carry the text one level down
        for nested_key in ("textMessageData", "extendedTextMessageData", "fileMessageData", "locationMessageData"):
            nested = data.get(nested_key)
            if isinstance(nested, Mapping):
                for k, v in nested.items():
                    flat.setdefault(k, v)
        flat.setdefault("idMessage", body.get("idMessage"))
        flat.setdefault("timestamp", body.get("timestamp"))
        flat.setdefault("chatId", chat_id)
        flat.setdefault("senderName", sender.get("senderName"))
        flat.setdefault("chatName", sender.get("chatName"))
        if webhook_type.startswith("outgoing"):
            flat.setdefault("type", "outgoing")
        message = normalize_green_message(flat)

    return Notification(
        receipt_id=_as_int(raw.get("receiptId")),
        webhook_type=webhook_type,
        chat_id=chat_id,
        message=message,
    )


def extract_list(payload: Any, *keys: str) -> Optional[list[Any]]:
    """Return the message list from a payload, or None when its shape is unknown.

    Accepts a bare list or a dict wrapping one under any of ``keys`` (one level
    of nesting, e.g. ``{"messages": {"records": [...]}}``).
    """
    if isinstance(payload, list):
        return payload
    if isinstance(payload, Mapping):
        for key in keys:
            value = payload.get(key)
            if isinstance(value, list):
                return value
            if isinstance(value, Mapping):
                nested = extract_list(value, *keys)
                if nested is not None:
                    return nested
    return None
