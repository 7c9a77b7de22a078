"""Pydantic schemas for the room websocket and HTTP API."""

from .events import (
    AdminAnnouncement,
    AdminKick,
    ChatMessage,
    Credentials,
    DjUpdate,
    PingReport,
    PrivateMessage,
    ProfileUpdate,
    StreamSignal,
    StreamTarget,
    TokenPayload,
    VoiceSignal,
    VoiceState,
    coerce_payload,
)

__all__ = [
    "AdminAnnouncement",
    "AdminKick",
    "ChatMessage",
    "Credentials",
    "DjUpdate",
    "PingReport",
    "PrivateMessage",
    "ProfileUpdate",
    "StreamSignal",
    "StreamTarget",
    "TokenPayload",
    "VoiceSignal",
    "VoiceState",
    "coerce_payload",
]
