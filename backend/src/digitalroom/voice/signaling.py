"""Membership bookkeeping for the WebRTC signalling relays.

Two topologies share the relay:

* voice is a full mesh. A joiner gets the list of current members and offers
  to each of them itself; the server only tracks who is in the channel.
* screen share is a star per broadcaster. Viewers ask to watch a specific
  broadcaster and every SDP/ICE message is tagged with that broadcaster's
  handle, since a viewer may watch several streams and a broadcaster serves
  several viewers at once.

Nothing here inspects SDP or ICE payloads.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

DEFAULT_MAX_STREAMS = 10


# ---------------------------------------------------------------------------
# Voice mesh
# ---------------------------------------------------------------------------


@dataclass
class VoiceMember:
    id: str
    name: str
    badge: str | None = None
    name_style: str = ""
    muted: bool = False
    deafened: bool = False

    def to_public(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "badge": self.badge,
            "nameStyle": self.name_style,
            "muted": self.muted,
            "deafened": self.deafened,
        }


class VoiceRoster:
    """Members of the single voice channel, keyed by connection handle."""

    def __init__(self) -> None:
        self._members: Dict[str, VoiceMember] = {}

    def __contains__(self, handle: object) -> bool:
        return handle in self._members

    def __len__(self) -> int:
        return len(self._members)

    def join(self, member: VoiceMember) -> list[str]:
        """Add ``member`` and return the handles it should offer to."""

        self._members[member.id] = member
        return [handle for handle in self._members if handle != member.id]

    def leave(self, handle: str) -> VoiceMember | None:
        return self._members.pop(handle, None)

    def set_state(
        self,
        handle: str,
        *,
        muted: bool | None = None,
        deafened: bool | None = None,
    ) -> bool:
        member = self._members.get(handle)
        if member is None:
            return False
        changed = False
        if muted is not None and member.muted != muted:
            member.muted = muted
            changed = True
        if deafened is not None and member.deafened != deafened:
            member.deafened = deafened
            changed = True
        return changed

    def handles(self) -> list[str]:
        return list(self._members)

    def roster(self) -> list[dict[str, Any]]:
        return [member.to_public() for member in self._members.values()]


# ---------------------------------------------------------------------------
# Screen share
# ---------------------------------------------------------------------------


@dataclass
class StreamSession:
    streamer_id: str
    streamer_name: str
    started_at: int | None = None

    def to_public(self) -> dict[str, Any]:
        return {"streamerId": self.streamer_id, "streamerName": self.streamer_name}


@dataclass(slots=True, frozen=True)
class WatchEdge:
    viewer_id: str
    streamer_id: str


@dataclass(slots=True, frozen=True)
class StreamTeardown:
    """What disappeared when a connection left the screen share relay."""

    ended_session: StreamSession | None
    orphaned_viewers: tuple[str, ...]
    abandoned_streamers: tuple[str, ...]


class StreamRoster:
    """Active broadcasters and the viewers watching each of them."""

    def __init__(self, *, max_streams: int = DEFAULT_MAX_STREAMS) -> None:
        self._max_streams = max_streams
        self._sessions: Dict[str, StreamSession] = {}
        self._edges: set[WatchEdge] = set()

    @property
    def max_streams(self) -> int:
        return self._max_streams

    def __contains__(self, handle: object) -> bool:
        return handle in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def start(self, handle: str, name: str, *, now: int | None = None) -> bool:
        """Register ``handle`` as a broadcaster; False when the cap is reached."""

        if handle in self._sessions:
            return True
        if len(self._sessions) >= self._max_streams:
            return False
        self._sessions[handle] = StreamSession(streamer_id=handle, streamer_name=name, started_at=now)
        return True

    def stop(self, handle: str) -> StreamTeardown:
        session = self._sessions.pop(handle, None)
        if session is None:
            return StreamTeardown(None, (), ())
        viewers = tuple(sorted(edge.viewer_id for edge in self._edges if edge.streamer_id == handle))
        self._edges = {edge for edge in self._edges if edge.streamer_id != handle}
        return StreamTeardown(session, viewers, ())

    def watch(self, viewer: str, streamer: str) -> bool:
        if viewer == streamer or streamer not in self._sessions:
            return False
        edge = WatchEdge(viewer_id=viewer, streamer_id=streamer)
        if edge in self._edges:
            return False
        self._edges.add(edge)
        return True

    def unwatch(self, viewer: str, streamer: str) -> bool:
        edge = WatchEdge(viewer_id=viewer, streamer_id=streamer)
        if edge not in self._edges:
            return False
        self._edges.discard(edge)
        return True

    def drop_connection(self, handle: str) -> StreamTeardown:
        """Remove every session and edge that references ``handle``."""

        ended = self.stop(handle)
        watched = tuple(sorted(edge.streamer_id for edge in self._edges if edge.viewer_id == handle))
        self._edges = {edge for edge in self._edges if edge.viewer_id != handle}
        return StreamTeardown(ended.ended_session, ended.orphaned_viewers, watched)

    def viewers_of(self, streamer: str) -> list[str]:
        return sorted(edge.viewer_id for edge in self._edges if edge.streamer_id == streamer)

    def watching(self, viewer: str) -> list[str]:
        return sorted(edge.streamer_id for edge in self._edges if edge.viewer_id == viewer)

    def edges(self) -> set[WatchEdge]:
        return set(self._edges)

    def handles(self) -> set[str]:
        handles = set(self._sessions)
        for edge in self._edges:
            handles.add(edge.viewer_id)
        return handles

    def sessions(self) -> list[dict[str, Any]]:
        return [session.to_public() for session in self._sessions.values()]


__all__ = [
    "DEFAULT_MAX_STREAMS",
    "StreamRoster",
    "StreamSession",
    "StreamTeardown",
    "VoiceMember",
    "VoiceRoster",
    "WatchEdge",
]
