"""Room state, DJ authority and the playback clock."""

from .booth import AuthorityDecision, Booth, BoothStatus, ClaimResult
from .clock import ClockSkew, now_ms, reconcile, target_position
from .playback import PlaybackOutcome, PlaybackUpdate, apply_update
from .state import RoomState

__all__ = [
    "AuthorityDecision",
    "Booth",
    "BoothStatus",
    "ClaimResult",
    "ClockSkew",
    "PlaybackOutcome",
    "PlaybackUpdate",
    "RoomState",
    "apply_update",
    "now_ms",
    "reconcile",
    "target_position",
]
