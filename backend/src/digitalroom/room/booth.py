"""Single-writer DJ authority ("the booth").

The booth is either vacant or held by one identity bound to one connection
handle. The binding survives reconnects: when the same identity shows up on a
new handle the booth follows it (healing) instead of being lost. Dead bindings
are only reclaimed by the periodic reconciler, never on disconnect.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Callable

from .clock import Clock, now_ms
from .state import RoomState

logger = logging.getLogger(__name__)


class BoothStatus(str, enum.Enum):
    VACANT = "vacant"
    HELD = "held"


@dataclass(slots=True, frozen=True)
class ClaimResult:
    """Outcome of a claim request."""

    granted: bool
    changed: bool
    holder_id: str | None
    holder_name: str | None


@dataclass(slots=True, frozen=True)
class AuthorityDecision:
    """Whether a playback update may be applied and whether it healed the booth."""

    accepted: bool
    healed: bool = False


class Booth:
    """State machine guarding ``RoomState.dj_id``/``RoomState.dj_name``."""

    def __init__(
        self,
        state: RoomState,
        *,
        clock: Clock = now_ms,
        max_hold_seconds: float | None = None,
    ) -> None:
        self._state = state
        self._clock = clock
        self._max_hold_seconds = max_hold_seconds
        self._held_since: int | None = None

    @property
    def status(self) -> BoothStatus:
        return BoothStatus.HELD if self._state.dj_id else BoothStatus.VACANT

    @property
    def holder_id(self) -> str | None:
        return self._state.dj_id

    @property
    def holder_name(self) -> str | None:
        return self._state.dj_name

    @property
    def held_since(self) -> int | None:
        return self._held_since

    def claim(self, handle: str, name: str | None) -> ClaimResult:
        if not name:
            return ClaimResult(False, False, self._state.dj_id, self._state.dj_name)
        if self._state.dj_id and self._state.dj_id != handle:
            logger.info(
                "Booth claim refused",
                extra={"requester": handle, "holder": self._state.dj_name},
            )
            return ClaimResult(False, False, self._state.dj_id, self._state.dj_name)
        if self._state.dj_id == handle and self._state.dj_name == name:
            return ClaimResult(True, False, handle, name)
        self._state.dj_id = handle
        self._state.dj_name = name
        self._held_since = self._clock()
        logger.info("Booth assigned to %s", name, extra={"handle": handle})
        return ClaimResult(True, True, handle, name)

    def should_heal(self, handle: str, name: str | None) -> bool:
        """Return True when ``name`` holds the booth through a different handle."""

        return (
            self._state.dj_id is not None
            and bool(name)
            and name == self._state.dj_name
            and handle != self._state.dj_id
        )

    def heal(self, handle: str, name: str | None) -> bool:
        if not self.should_heal(handle, name):
            return False
        previous = self._state.dj_id
        self._state.dj_id = handle
        logger.info(
            "Booth session healed for %s",
            name,
            extra={"previous": previous, "handle": handle},
        )
        return True

    def authorize_update(self, handle: str, name: str | None) -> AuthorityDecision:
        if self._state.dj_id is not None and handle == self._state.dj_id:
            return AuthorityDecision(accepted=True)
        if self.heal(handle, name):
            return AuthorityDecision(accepted=True, healed=True)
        logger.warning("Playback update rejected from %s (not DJ)", handle)
        return AuthorityDecision(accepted=False)

    def reset(self) -> bool:
        if self._state.dj_id is None and self._state.dj_name is None:
            return False
        logger.info("Booth reset", extra={"holder": self._state.dj_name})
        self._vacate()
        return True

    def reclaim_if_orphaned(self, is_present: Callable[[str], bool]) -> bool:
        """Vacate the booth when its bound handle is no longer present."""

        handle = self._state.dj_id
        if handle is None or is_present(handle):
            return False
        logger.info(
            "Booth reclaimed from departed holder %s",
            self._state.dj_name,
            extra={"handle": handle},
        )
        self._vacate()
        return True

    def hold_expired(self) -> bool:
        if self._max_hold_seconds is None or self._held_since is None:
            return False
        if self._state.dj_id is None:
            return False
        return self._clock() - self._held_since > self._max_hold_seconds * 1000

    def _vacate(self) -> None:
        self._state.dj_id = None
        self._state.dj_name = None
        self._held_since = None


__all__ = ["AuthorityDecision", "Booth", "BoothStatus", "ClaimResult"]
