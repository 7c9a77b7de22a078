"""Server clock helpers and the client-side skew handshake.

The server is the only authority on time. Every client receives ``serverNow``
in its ``init`` payload, derives a fixed offset from it once and afterwards
translates its own wall clock into server time. The offset is never refreshed
during a session.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable

Clock = Callable[[], int]

DEFAULT_CLIENT_TOLERANCE_MS = 1500


def now_ms() -> int:
    """Return the current wall clock time in integer milliseconds."""

    return int(time.time() * 1000)


@dataclass(slots=True, frozen=True)
class ClockSkew:
    """One-shot linear offset between a client clock and the server clock."""

    offset_ms: int

    @classmethod
    def from_handshake(cls, local_now: int, server_now: int) -> "ClockSkew":
        return cls(offset_ms=int(local_now) - int(server_now))

    def server_now(self, local_now: int) -> int:
        return int(local_now) - self.offset_ms


def target_position(
    *,
    is_playing: bool,
    started_at: int | None,
    paused_at: int,
    server_now: int,
) -> int:
    """Return the authoritative playback position in milliseconds."""

    if is_playing and started_at is not None:
        return max(0, int(server_now) - int(started_at))
    return max(0, int(paused_at))


@dataclass(slots=True, frozen=True)
class Reconciliation:
    target_ms: int
    drift_ms: int
    seek: bool


def reconcile(
    local_position_ms: int,
    *,
    is_playing: bool,
    started_at: int | None,
    paused_at: int,
    server_now: int,
    tolerance_ms: int = DEFAULT_CLIENT_TOLERANCE_MS,
) -> Reconciliation:
    """Decide whether a listener has to hard seek to the authoritative position.

    Small drift is left alone so natural playback absorbs network jitter; only
    a drift larger than ``tolerance_ms`` while playing asks for a seek. A paused
    player is always moved to the paused offset.
    """

    target = target_position(
        is_playing=is_playing,
        started_at=started_at,
        paused_at=paused_at,
        server_now=server_now,
    )
    drift = abs(int(local_position_ms) - target)
    if is_playing:
        return Reconciliation(target_ms=target, drift_ms=drift, seek=drift > tolerance_ms)
    return Reconciliation(target_ms=target, drift_ms=drift, seek=drift > 0)


__all__ = [
    "Clock",
    "ClockSkew",
    "DEFAULT_CLIENT_TOLERANCE_MS",
    "Reconciliation",
    "now_ms",
    "reconcile",
    "target_position",
]
