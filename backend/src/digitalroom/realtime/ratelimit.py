"""Per-connection fixed-window event limiter."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict

from ..room.clock import Clock, now_ms

logger = logging.getLogger(__name__)


@dataclass
class _Window:
    count: int
    started_at: int


class ConnectionRateLimiter:
    """Allow at most ``max_events`` per ``window_ms`` for every connection."""

    def __init__(self, *, window_ms: int = 1000, max_events: int = 10, clock: Clock = now_ms) -> None:
        self._window_ms = window_ms
        self._max_events = max_events
        self._clock = clock
        self._windows: Dict[str, _Window] = {}

    def __len__(self) -> int:
        return len(self._windows)

    def check(self, handle: str) -> bool:
        now = self._clock()
        window = self._windows.get(handle)
        if window is None or now - window.started_at > self._window_ms:
            self._windows[handle] = _Window(count=1, started_at=now)
            return True
        if window.count >= self._max_events:
            logger.debug("Rate limit exceeded", extra={"handle": handle})
            return False
        window.count += 1
        return True

    def forget(self, handle: str) -> None:
        self._windows.pop(handle, None)

    def prune(self) -> int:
        """Drop windows idle for more than two window lengths."""

        now = self._clock()
        stale = [
            handle
            for handle, window in self._windows.items()
            if now - window.started_at > self._window_ms * 2
        ]
        for handle in stale:
            self._windows.pop(handle, None)
        return len(stale)


__all__ = ["ConnectionRateLimiter"]
