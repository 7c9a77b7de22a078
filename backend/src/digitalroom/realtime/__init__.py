"""Realtime layer: connection hub and the room managers built on it."""

from .hub import Acknowledgement, ConnectionHub, encode_frame, safe_send_json
from .managers import (
    PlaybackManager,
    PresenceManager,
    RoomManager,
    RoomReconciler,
    SignalRelayManager,
    get_room_manager,
    shutdown_realtime,
    startup_realtime,
)
from .ratelimit import ConnectionRateLimiter

__all__ = [
    "Acknowledgement",
    "ConnectionHub",
    "ConnectionRateLimiter",
    "PlaybackManager",
    "PresenceManager",
    "RoomManager",
    "RoomReconciler",
    "SignalRelayManager",
    "encode_frame",
    "get_room_manager",
    "safe_send_json",
    "shutdown_realtime",
    "startup_realtime",
]
