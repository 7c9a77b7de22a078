"""Authoritative playback timeline updates submitted by the DJ."""

from __future__ import annotations

from dataclasses import dataclass

from .state import RoomState

DEFAULT_DRIFT_TOLERANCE_MS = 2000


@dataclass(slots=True, frozen=True)
class PlaybackUpdate:
    is_playing: bool
    seek_position_ms: int = 0
    current_track: str | None = None
    track_title: str | None = None
    theme: str | None = None


@dataclass(slots=True, frozen=True)
class PlaybackOutcome:
    resynced: bool
    reason: str | None = None
    drift_ms: int | None = None


def compute_drift(state: RoomState, seek_position_ms: int, now: int) -> int | None:
    """Distance between the server timeline and the DJ's reported position."""

    if state.started_at is None:
        return None
    return abs((now - state.started_at) - seek_position_ms)


def apply_update(
    state: RoomState,
    update: PlaybackUpdate,
    now: int,
    *,
    tolerance_ms: int = DEFAULT_DRIFT_TOLERANCE_MS,
) -> PlaybackOutcome:
    """Fold a DJ update into ``state``.

    While playing, ``started_at`` only moves when playback (re)starts or when
    the reported position is more than ``tolerance_ms`` away from the server
    timeline; smaller differences are treated as jitter.
    """

    if update.current_track:
        state.current_track = update.current_track
    if update.track_title:
        state.track_title = update.track_title
    if update.theme:
        state.current_theme = update.theme

    seek = max(0, int(update.seek_position_ms))
    outcome = PlaybackOutcome(resynced=False)

    if update.is_playing:
        drift = compute_drift(state, seek, now)
        if not state.is_playing:
            state.started_at = now - seek
            outcome = PlaybackOutcome(resynced=True, reason="start", drift_ms=drift)
        elif drift is None or drift > tolerance_ms:
            state.started_at = now - seek
            outcome = PlaybackOutcome(resynced=True, reason="drift", drift_ms=drift)
        else:
            outcome = PlaybackOutcome(resynced=False, drift_ms=drift)
        state.is_playing = True
    else:
        state.paused_at = seek
        state.is_playing = False

    state.last_update_at = now
    return outcome


__all__ = [
    "DEFAULT_DRIFT_TOLERANCE_MS",
    "PlaybackOutcome",
    "PlaybackUpdate",
    "apply_update",
    "compute_drift",
]
