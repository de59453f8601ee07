"""Shared types and enumerations."""

from __future__ import annotations

from enum import StrEnum


class Provider(StrEnum):
    GREEN_API = "green-api"
    EVOLUTION_API = "evolution-api"


class Direction(StrEnum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class MessageKind(StrEnum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"
    STICKER = "sticker"
    LOCATION = "location"
    CONTACT = "contact"
    POLL = "poll"
    REACTION = "reaction"
    QUOTED = "quoted"
    DELETED = "deleted"
    UNKNOWN = "unknown"


class SyncState(StrEnum):
    IDLE = "idle"
    CHATS_LOADING = "chats_loading"
    CHATS_LOADED = "chats_loaded"
    HISTORY_LOADING = "history_loading"
    HISTORY_LOADED = "history_loaded"
