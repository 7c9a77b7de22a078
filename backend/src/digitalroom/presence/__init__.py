"""Presence and identity bookkeeping for live connections."""

from .store import DEFAULT_BADGE, Participant, PresenceStore

__all__ = ["DEFAULT_BADGE", "Participant", "PresenceStore"]
