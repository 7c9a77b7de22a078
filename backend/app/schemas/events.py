"""Schemas for payloads received on the room websocket."""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, FiniteFloat, constr

from digitalroom.room.playback import PlaybackUpdate


class EventPayload(BaseModel):
    """Base for inbound payloads: camelCase aliases, unknown keys ignored."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Credentials(EventPayload):
    """Payload of ``register`` and ``login``; the account service judges content."""

    username: str = Field(default="", description="Requested or existing username")
    password: str = Field(default="", description="Plain text password")


class TokenPayload(EventPayload):
    """Any request that only carries a session token."""

    token: constr(min_length=1) = Field(..., description="Session token issued by login")


class ProfileUpdate(TokenPayload):
    badge: str | None = None
    password: str | None = None
    name_style: str | None = Field(default=None, alias="nameStyle")
    status: str | None = None


class AdminKick(TokenPayload):
    target_socket_id: constr(min_length=1) = Field(..., alias="targetSocketId")


class AdminAnnouncement(TokenPayload):
    text: str | None = Field(default=None, description="Announcement text; empty clears it")


class ChatMessage(EventPayload):
    text: str = ""


class PrivateMessage(EventPayload):
    target_name: str = Field(default="", alias="targetName")
    text: str = ""


class PingReport(EventPayload):
    latency: int = Field(..., ge=0, description="Round trip measured by the client in ms")


class DjUpdate(EventPayload):
    """Playback report from the DJ client.

    Older clients send ``track``/``theme`` instead of ``currentTrack`` and
    ``currentTheme``; both spellings are accepted.
    """

    is_playing: bool = Field(default=False, alias="isPlaying")
    seek_position: FiniteFloat | None = Field(
        default=0,
        validation_alias=AliasChoices("seekPosition", "seekPositionMs", "seek_position"),
        description="Position in ms",
    )
    current_track: str | None = Field(default=None, alias="currentTrack")
    track: str | None = None
    track_title: str | None = Field(default=None, alias="trackTitle")
    current_theme: str | None = Field(default=None, alias="currentTheme")
    theme: str | None = None

    def to_update(self) -> PlaybackUpdate:
        return PlaybackUpdate(
            is_playing=self.is_playing,
            seek_position_ms=max(0, int(self.seek_position or 0)),
            current_track=self.current_track or self.track,
            track_title=self.track_title,
            theme=self.current_theme or self.theme,
        )


class VoiceState(EventPayload):
    muted: bool | None = None
    deafened: bool | None = None


class VoiceSignal(EventPayload):
    to: constr(min_length=1)
    signal: Any = None


class StreamTarget(EventPayload):
    streamer_id: constr(min_length=1) = Field(..., alias="streamerId")


class StreamSignal(EventPayload):
    to: constr(min_length=1)
    signal: Any = None
    streamer_id: str | None = Field(default=None, alias="streamerId")


# Events whose clients send a bare value instead of an object.
SCALAR_FIELDS: dict[str, str] = {
    "authenticate": "token",
    "reportPing": "latency",
    "stream-join": "streamerId",
    "stream-leave": "streamerId",
}


def coerce_payload(event: str, data: Any) -> Any:
    field = SCALAR_FIELDS.get(event)
    if field is not None and not isinstance(data, dict):
        return {field: data}
    return {} if data is None else data


__all__ = [
    "AdminAnnouncement",
    "AdminKick",
    "ChatMessage",
    "Credentials",
    "DjUpdate",
    "EventPayload",
    "PingReport",
    "PrivateMessage",
    "ProfileUpdate",
    "SCALAR_FIELDS",
    "StreamSignal",
    "StreamTarget",
    "TokenPayload",
    "VoiceSignal",
    "VoiceState",
    "coerce_payload",
]
