"""Authoritative room state shared by every connection."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class RoomState:
    current_track: str = ""
    track_title: str | None = None
    current_theme: str | None = None
    is_playing: bool = False
    started_at: int | None = None
    paused_at: int = 0
    announcement: str | None = None
    dj_id: str | None = None
    dj_name: str | None = None
    last_update_at: int | None = None

    def to_public(self, *, server_time: int | None = None) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "currentTrack": self.current_track,
            "trackTitle": self.track_title,
            "currentTheme": self.current_theme,
            "isPlaying": self.is_playing,
            "startedAt": self.started_at,
            "pausedAt": self.paused_at,
            "announcement": self.announcement,
            "djId": self.dj_id,
            "djName": self.dj_name,
            "lastUpdateAt": self.last_update_at,
        }
        if server_time is not None:
            payload["serverTime"] = server_time
        return payload


__all__ = ["RoomState"]
