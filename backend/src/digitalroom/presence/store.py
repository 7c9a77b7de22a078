"""Live presence of authenticated connections."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable

DEFAULT_BADGE = "https://i.giphy.com/media/L88y6SAsjGvNmsC4Eq/giphy.gif"

# Attributes a participant may change about itself after authenticating.
MUTABLE_ATTRIBUTES = {"badge", "name_style", "status", "is_live", "ping"}

_PUBLIC_KEYS = {
    "badge": "badge",
    "name_style": "nameStyle",
    "status": "status",
    "is_live": "isLive",
    "ping": "ping",
}


@dataclass
class Participant:
    id: str
    name: str
    db_id: int | None = None
    badge: str = DEFAULT_BADGE
    name_style: str = ""
    status: str = ""
    is_authenticated: bool = True
    is_live: bool = False
    ping: int | None = None

    def to_public(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "dbId": self.db_id,
            "name": self.name,
            "badge": self.badge,
            "nameStyle": self.name_style,
            "status": self.status,
            "isAuthenticated": self.is_authenticated,
            "isLive": self.is_live,
            "ping": self.ping,
        }


class PresenceStore:
    """Maps connection handles to participant snapshots.

    An identity may be present through several handles at once; the public
    user list collapses them by name, keeping the earliest connection.
    """

    def __init__(self) -> None:
        self._participants: Dict[str, Participant] = {}

    def __contains__(self, handle: object) -> bool:
        return handle in self._participants

    def __len__(self) -> int:
        return len(self._participants)

    def get(self, handle: str) -> Participant | None:
        return self._participants.get(handle)

    def add(self, participant: Participant) -> bool:
        """Store ``participant``; return True if its identity was not yet present."""

        was_present = any(
            existing.name == participant.name
            for handle, existing in self._participants.items()
            if handle != participant.id
        )
        self._participants[participant.id] = participant
        return not was_present

    def remove(self, handle: str) -> Participant | None:
        return self._participants.pop(handle, None)

    def handles_for(self, name: str) -> list[str]:
        return [handle for handle, participant in self._participants.items() if participant.name == name]

    def update(self, handle: str, **attributes: Any) -> dict[str, Any] | None:
        """Apply ``attributes`` and return the public delta, or None if absent."""

        participant = self._participants.get(handle)
        if participant is None:
            return None
        delta: dict[str, Any] = {"id": handle}
        for key, value in attributes.items():
            if key not in MUTABLE_ATTRIBUTES:
                raise ValueError(f"Attribute '{key}' cannot be updated")
            setattr(participant, key, value)
            delta[_PUBLIC_KEYS[key]] = value
        return delta

    def unique_users(self) -> list[dict[str, Any]]:
        unique: dict[str, Participant] = {}
        for participant in self._participants.values():
            unique.setdefault(participant.name, participant)
        return [participant.to_public() for participant in unique.values()]

    def participants(self) -> Iterable[Participant]:
        return list(self._participants.values())


__all__ = ["DEFAULT_BADGE", "Participant", "PresenceStore"]
