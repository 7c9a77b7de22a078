"""Room managers wiring presence, the DJ booth and WebRTC relays to the hub."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TYPE_CHECKING

from app.config import get_settings
from app.monitoring.metrics import (
    room_dj_changes_total,
    room_playback_resyncs_total,
    signal_relays_total,
)

from ..chat.buffer import (
    DEFAULT_BUFFER_SIZE,
    MessageBuffer,
    chat_message,
    direct_message,
    sanitize_text,
    system_message,
)
from ..presence.store import Participant, PresenceStore
from ..room.booth import Booth, ClaimResult
from ..room.clock import Clock, now_ms
from ..room.playback import DEFAULT_DRIFT_TOLERANCE_MS, PlaybackUpdate, apply_update
from ..room.state import RoomState
from ..voice.signaling import (
    DEFAULT_MAX_STREAMS,
    StreamRoster,
    StreamTeardown,
    VoiceMember,
    VoiceRoster,
)
from .hub import ConnectionHub
from .ratelimit import ConnectionRateLimiter

if TYPE_CHECKING:  # pragma: no cover - typing helpers only
    from fastapi import WebSocket

    from app.config import Settings


logger = logging.getLogger(__name__)

RATE_LIMIT_NOTICE = "You are sending messages too fast. Slow down."
EMPTY_MESSAGE_NOTICE = "Message invalid or empty."
GUEST_NAME = "Guest"


# ---------------------------------------------------------------------------
# Presence and chat
# ---------------------------------------------------------------------------


class PresenceManager:
    """Keeps every client's user list and chat history current."""

    def __init__(
        self,
        hub: ConnectionHub,
        store: PresenceStore,
        messages: MessageBuffer,
        limiter: ConnectionRateLimiter,
        *,
        message_max_length: int = 500,
    ) -> None:
        self._hub = hub
        self._store = store
        self._messages = messages
        self._limiter = limiter
        self._message_max_length = message_max_length

    async def join(self, participant: Participant) -> None:
        is_new = self._store.add(participant)
        await self.broadcast_users()
        if is_new:
            await self.post_system(f"{participant.name} entered.")

    async def broadcast_users(self) -> None:
        await self._hub.broadcast("userUpdate", self._store.unique_users())

    async def update(self, handle: str, **attributes: Any) -> dict[str, Any] | None:
        delta = self._store.update(handle, **attributes)
        if delta is not None:
            await self._hub.broadcast("userPartialUpdate", delta)
        return delta

    async def post_system(self, text: str) -> dict[str, Any]:
        message = self._messages.append(system_message(text))
        await self._hub.broadcast("newMessage", message)
        return message

    async def send_message(self, handle: str, text: Any) -> bool:
        """Post a chat line; connections that never authenticated speak as Guest."""

        if not self._limiter.check(handle):
            await self._hub.send(handle, "newMessage", system_message(RATE_LIMIT_NOTICE, sender=None))
            return False
        clean = sanitize_text(text, self._message_max_length)
        if not clean:
            await self._hub.send(handle, "newMessage", system_message(EMPTY_MESSAGE_NOTICE, sender=None))
            return False
        participant = self._store.get(handle)
        if participant is None:
            message = chat_message(clean, user_name=GUEST_NAME)
        else:
            message = chat_message(
                clean,
                user_name=participant.name,
                badge=participant.badge,
                name_style=participant.name_style,
            )
        self._messages.append(message)
        await self._hub.broadcast("newMessage", message)
        return True

    async def private_message(self, handle: str, target_name: Any, text: Any) -> bool:
        """Deliver a direct message to every connection of both parties."""

        sender = self._store.get(handle)
        if sender is None or not sender.is_authenticated:
            return False
        if not self._limiter.check(handle):
            await self._hub.send(handle, "privateMessage", system_message(RATE_LIMIT_NOTICE, sender=None))
            return False
        clean = sanitize_text(text, self._message_max_length)
        if not clean or not isinstance(target_name, str) or not target_name:
            await self._hub.send(handle, "privateMessage", system_message(EMPTY_MESSAGE_NOTICE, sender=None))
            return False
        message = direct_message(clean, sender=sender.name, target=target_name)
        targets = self._store.handles_for(target_name)
        recipients = dict.fromkeys([*targets, *self._store.handles_for(sender.name)])
        for recipient in recipients:
            await self._hub.send(recipient, "privateMessage", message)
        return bool(targets)


# ---------------------------------------------------------------------------
# Playback authority
# ---------------------------------------------------------------------------


class PlaybackManager:
    """Applies booth decisions and DJ playback updates, then fans them out."""

    def __init__(
        self,
        hub: ConnectionHub,
        state: RoomState,
        booth: Booth,
        store: PresenceStore,
        *,
        clock: Clock = now_ms,
        drift_tolerance_ms: int = DEFAULT_DRIFT_TOLERANCE_MS,
    ) -> None:
        self._hub = hub
        self._state = state
        self._booth = booth
        self._store = store
        self._clock = clock
        self._drift_tolerance_ms = drift_tolerance_ms

    def snapshot(self, *, server_time: int | None = None) -> dict[str, Any]:
        return self._state.to_public(server_time=server_time)

    async def announce_dj(self) -> None:
        await self._hub.broadcast(
            "djChanged", {"djId": self._state.dj_id, "djName": self._state.dj_name}
        )

    async def request_dj(self, handle: str) -> ClaimResult | None:
        participant = self._store.get(handle)
        if participant is None:
            return None
        result = self._booth.claim(handle, participant.name)
        if not result.granted:
            await self._hub.send(
                handle, "djChanged", {"djId": result.holder_id, "djName": result.holder_name}
            )
            holder = result.holder_name or "Someone"
            await self._hub.send(
                handle,
                "newMessage",
                system_message(f"[!] BOOTH BUSY: {holder} is already at the booth.", sender=None),
            )
            return result
        if result.changed:
            room_dj_changes_total.labels("claim").inc()
            await self.announce_dj()
        return result

    async def heal(self, handle: str, name: str | None) -> bool:
        if not self._booth.heal(handle, name):
            return False
        room_dj_changes_total.labels("heal").inc()
        await self.announce_dj()
        return True

    async def submit_update(self, handle: str, update: PlaybackUpdate) -> bool:
        participant = self._store.get(handle)
        decision = self._booth.authorize_update(handle, participant.name if participant else None)
        if not decision.accepted:
            return False
        now = self._clock()
        outcome = apply_update(self._state, update, now, tolerance_ms=self._drift_tolerance_ms)
        if decision.healed:
            room_dj_changes_total.labels("heal").inc()
            await self.announce_dj()
        if outcome.resynced:
            room_playback_resyncs_total.labels(outcome.reason).inc()
            logger.debug(
                "Playback timeline re-anchored (%s)",
                outcome.reason,
                extra={"drift_ms": outcome.drift_ms},
            )
        await self._hub.broadcast("roomUpdate", self.snapshot(server_time=now), exclude={handle})
        return True

    async def reset(self, *, reason: str = "admin") -> bool:
        if not self._booth.reset():
            return False
        room_dj_changes_total.labels(reason).inc()
        await self._hub.broadcast("djChanged", {"djId": None})
        return True

    async def reclaim_orphaned(self, is_present: Callable[[str], bool]) -> bool:
        if self._booth.reclaim_if_orphaned(is_present):
            room_dj_changes_total.labels("reclaim").inc()
            await self._hub.broadcast("djChanged", {"djId": None})
            return True
        if self._booth.hold_expired():
            return await self.reset(reason="expired")
        return False

    async def announce(self, text: str | None) -> None:
        self._state.announcement = text or None
        await self._hub.broadcast("roomUpdate", self.snapshot(server_time=self._clock()))

    async def broadcast_heartbeat(self) -> bool:
        if not self._state.dj_id or not self._state.current_track:
            return False
        await self._hub.broadcast("roomSync", self.snapshot(server_time=self._clock()))
        return True


# ---------------------------------------------------------------------------
# WebRTC signalling relay
# ---------------------------------------------------------------------------


class SignalRelayManager:
    """Relays SDP and ICE between peers of the voice mesh and screen shares.

    Relay targets that have vanished are dropped silently; the reconciler
    removes them from the rosters on its next pass.
    """

    def __init__(
        self,
        hub: ConnectionHub,
        store: PresenceStore,
        voice: VoiceRoster,
        streams: StreamRoster,
        *,
        clock: Clock = now_ms,
    ) -> None:
        self._hub = hub
        self._store = store
        self._voice = voice
        self._streams = streams
        self._clock = clock

    async def _relay(self, topology: str, target: Any, event: str, data: Any) -> bool:
        if not isinstance(target, str) or not self._hub.is_connected(target):
            signal_relays_total.labels(topology, "dropped").inc()
            logger.debug("Dropped %s relay to unavailable peer %s", topology, target)
            return False
        delivered = await self._hub.send(target, event, data)
        signal_relays_total.labels(topology, "delivered" if delivered else "dropped").inc()
        return delivered

    async def _broadcast_voice(self) -> None:
        await self._hub.broadcast("voice-update", self._voice.roster())

    async def _broadcast_streams(self) -> None:
        await self._hub.broadcast("stream-update", self._streams.sessions())

    # Voice mesh ---------------------------------------------------------

    async def join_voice(self, handle: str) -> list[str] | None:
        participant = self._store.get(handle)
        if participant is None:
            return None
        peers = self._voice.join(
            VoiceMember(
                id=handle,
                name=participant.name,
                badge=participant.badge,
                name_style=participant.name_style,
            )
        )
        await self._broadcast_voice()
        await self._hub.send(handle, "voice-peer-list", peers)
        return peers

    async def leave_voice(self, handle: str) -> bool:
        if self._voice.leave(handle) is None:
            return False
        await self._broadcast_voice()
        return True

    async def set_voice_state(
        self,
        handle: str,
        *,
        muted: bool | None = None,
        deafened: bool | None = None,
    ) -> bool:
        if not self._voice.set_state(handle, muted=muted, deafened=deafened):
            return False
        await self._broadcast_voice()
        return True

    async def relay_voice_signal(self, handle: str, target: Any, signal: Any) -> bool:
        return await self._relay("voice", target, "voice-signal", {"from": handle, "signal": signal})

    # Screen share -------------------------------------------------------

    async def start_stream(self, handle: str) -> bool:
        participant = self._store.get(handle)
        if participant is None:
            return False
        if handle in self._streams:
            return True
        if not self._streams.start(handle, participant.name, now=self._clock()):
            logger.info("Stream start refused; %d broadcasters already live", len(self._streams))
            await self._hub.send(
                handle,
                "newMessage",
                system_message(
                    f"Stream limit reached ({self._streams.max_streams} broadcasters).",
                    sender=None,
                ),
            )
            return False
        delta = self._store.update(handle, is_live=True)
        await self._broadcast_streams()
        if delta is not None:
            await self._hub.broadcast("userPartialUpdate", delta)
        return True

    async def stop_stream(self, handle: str) -> bool:
        teardown = self._streams.stop(handle)
        if teardown.ended_session is None:
            return False
        delta = self._store.update(handle, is_live=False)
        await self._broadcast_streams()
        if delta is not None:
            await self._hub.broadcast("userPartialUpdate", delta)
        await self._notify_teardown(handle, teardown)
        return True

    async def join_stream(self, viewer: str, streamer: Any) -> bool:
        if not isinstance(streamer, str) or not self._streams.watch(viewer, streamer):
            return False
        if not await self._relay("stream", streamer, "stream-peer-join", viewer):
            self._streams.unwatch(viewer, streamer)
            return False
        return True

    async def leave_stream(self, viewer: str, streamer: Any) -> bool:
        if not isinstance(streamer, str) or not self._streams.unwatch(viewer, streamer):
            return False
        await self._relay("stream", streamer, "stream-peer-leave", viewer)
        return True

    async def relay_stream_signal(
        self, handle: str, target: Any, signal: Any, streamer_id: Any = None
    ) -> bool:
        return await self._relay(
            "stream",
            target,
            "stream-signal",
            {"from": handle, "signal": signal, "streamerId": streamer_id},
        )

    # Teardown -----------------------------------------------------------

    async def _notify_teardown(self, handle: str, teardown: StreamTeardown) -> None:
        """Tell viewers their broadcaster is gone and broadcasters their viewer left."""

        for viewer in teardown.orphaned_viewers:
            await self._relay("stream", viewer, "stream-ended", {"streamerId": handle})
        for streamer in teardown.abandoned_streamers:
            await self._relay("stream", streamer, "stream-peer-leave", handle)

    async def drop_connection(self, handle: str) -> None:
        """Forget ``handle`` in both relays and tell the survivors."""

        left_voice = self._voice.leave(handle) is not None
        teardown = self._streams.drop_connection(handle)
        if left_voice:
            await self._broadcast_voice()
        if teardown.ended_session is not None:
            await self._broadcast_streams()
        await self._notify_teardown(handle, teardown)

    async def prune(self, is_live: Callable[[str], bool]) -> int:
        """Remove relay entries whose connection is no longer live."""

        stale_voice = [handle for handle in self._voice.handles() if not is_live(handle)]
        for handle in stale_voice:
            self._voice.leave(handle)
        stale_streams = sorted(handle for handle in self._streams.handles() if not is_live(handle))
        teardowns = [(handle, self._streams.drop_connection(handle)) for handle in stale_streams]
        if stale_voice:
            await self._broadcast_voice()
        if any(teardown.ended_session is not None for _, teardown in teardowns):
            await self._broadcast_streams()
        for handle, teardown in teardowns:
            await self._notify_teardown(handle, teardown)
        return len(stale_voice) + len(stale_streams)


# ---------------------------------------------------------------------------
# Periodic reconciliation
# ---------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ReconcileReport:
    booth_reclaimed: bool
    relay_entries_pruned: int
    rate_limits_pruned: int


class RoomReconciler:
    """Repairs state left behind by connections that vanished without cleanup."""

    def __init__(
        self,
        hub: ConnectionHub,
        store: PresenceStore,
        playback: PlaybackManager,
        relay: SignalRelayManager,
        limiter: ConnectionRateLimiter,
    ) -> None:
        self._hub = hub
        self._store = store
        self._playback = playback
        self._relay = relay
        self._limiter = limiter

    def _is_present(self, handle: str) -> bool:
        return handle in self._store and self._hub.is_connected(handle)

    async def run_once(self) -> ReconcileReport:
        reclaimed = await self._playback.reclaim_orphaned(self._is_present)
        pruned = await self._relay.prune(self._hub.is_connected)
        limits = self._limiter.prune()
        if reclaimed or pruned:
            logger.info(
                "Reconciled room state: booth reclaimed=%s, relay entries pruned=%d",
                reclaimed,
                pruned,
            )
        return ReconcileReport(reclaimed, pruned, limits)


# ---------------------------------------------------------------------------
# Room facade
# ---------------------------------------------------------------------------


class RoomManager:
    """Owns the single room and everything connected to it."""

    def __init__(
        self,
        hub: ConnectionHub | None = None,
        *,
        clock: Clock = now_ms,
        drift_tolerance_ms: int = DEFAULT_DRIFT_TOLERANCE_MS,
        heartbeat_interval: float = 5.0,
        reconcile_interval: float = 10.0,
        dj_max_hold_seconds: float | None = None,
        max_streams: int = DEFAULT_MAX_STREAMS,
        message_buffer_size: int = DEFAULT_BUFFER_SIZE,
        message_max_length: int = 500,
        rate_limit_window_ms: int = 1000,
        rate_limit_max_events: int = 10,
    ) -> None:
        self.hub = hub or ConnectionHub()
        self.clock = clock
        self.state = RoomState()
        self.store = PresenceStore()
        self.messages = MessageBuffer(message_buffer_size)
        self.limiter = ConnectionRateLimiter(
            window_ms=rate_limit_window_ms, max_events=rate_limit_max_events, clock=clock
        )
        self.booth = Booth(self.state, clock=clock, max_hold_seconds=dj_max_hold_seconds)
        self.voice = VoiceRoster()
        self.streams = StreamRoster(max_streams=max_streams)

        self.presence = PresenceManager(
            self.hub,
            self.store,
            self.messages,
            self.limiter,
            message_max_length=message_max_length,
        )
        self.playback = PlaybackManager(
            self.hub,
            self.state,
            self.booth,
            self.store,
            clock=clock,
            drift_tolerance_ms=drift_tolerance_ms,
        )
        self.relay = SignalRelayManager(self.hub, self.store, self.voice, self.streams, clock=clock)
        self.reconciler = RoomReconciler(self.hub, self.store, self.playback, self.relay, self.limiter)

        self._heartbeat_interval = heartbeat_interval
        self._reconcile_interval = reconcile_interval
        self._tasks: list[asyncio.Task[None]] = []

    @classmethod
    def from_settings(cls, settings: "Settings", **overrides: Any) -> "RoomManager":
        options: dict[str, Any] = {
            "drift_tolerance_ms": settings.dj_sync_drift_tolerance_ms,
            "heartbeat_interval": settings.heartbeat_interval_seconds,
            "reconcile_interval": settings.reconcile_interval_seconds,
            "dj_max_hold_seconds": settings.dj_max_hold_seconds,
            "max_streams": settings.max_streams,
            "message_buffer_size": settings.message_buffer_size,
            "message_max_length": settings.message_max_length,
            "rate_limit_window_ms": settings.rate_limit_window_ms,
            "rate_limit_max_events": settings.rate_limit_max_events,
        }
        options.update(overrides)
        return cls(**options)

    # Connection lifecycle ----------------------------------------------

    def init_payload(self, handle: str) -> dict[str, Any]:
        now = self.clock()
        state = self.playback.snapshot(server_time=self.state.last_update_at or now)
        state.update(
            {
                "users": self.store.unique_users(),
                "messages": self.messages.snapshot(),
                "voiceUsers": self.voice.roster(),
                "streams": self.streams.sessions(),
            }
        )
        return {"state": state, "yourId": handle, "serverNow": now}

    async def connect(self, websocket: "WebSocket") -> str:
        handle = self.hub.register(websocket)
        logger.debug("Room connection opened", extra={"handle": handle})
        await self.hub.send(handle, "init", self.init_payload(handle))
        return handle

    async def authenticate(self, handle: str, participant: Participant) -> bool:
        """Admit ``participant`` on ``handle`` if the connection is still open.

        Callers await the account store before getting here, so the socket
        may have gone away in the meantime.
        """

        if not self.hub.is_connected(handle):
            logger.info("Connection closed before authentication completed", extra={"handle": handle})
            return False
        healed = self.booth.heal(handle, participant.name)
        await self.presence.join(participant)
        if healed:
            room_dj_changes_total.labels("heal").inc()
            await self.playback.announce_dj()
        await self.hub.send(handle, "authSuccess", {**participant.to_public(), "username": participant.name})
        logger.info("%s authenticated", participant.name, extra={"handle": handle})
        return True

    async def disconnect(self, handle: str) -> None:
        """Release everything tied to ``handle``; the booth is left to the reconciler."""

        self.hub.unregister(handle)
        self.limiter.forget(handle)
        participant = self.store.remove(handle)
        await self.relay.drop_connection(handle)
        if participant is not None:
            await self.presence.broadcast_users()
            logger.info("%s disconnected", participant.name, extra={"handle": handle})

    async def kick(self, target: str) -> bool:
        """Close the connection ``target``; its endpoint performs the disconnect."""

        if not await self.hub.disconnect(target, code=4001, reason="Kicked by admin"):
            return False
        participant = self.store.get(target)
        logger.warning(
            "Kicked %s",
            participant.name if participant else "guest connection",
            extra={"handle": target},
        )
        return True

    # Background loops ----------------------------------------------------

    async def _run_periodic(
        self, name: str, interval: float, job: Callable[[], Awaitable[Any]]
    ) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await job()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Room %s pass failed", name)

    async def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(
                self._run_periodic("heartbeat", self._heartbeat_interval, self.playback.broadcast_heartbeat),
                name="room-heartbeat",
            ),
            asyncio.create_task(
                self._run_periodic("reconcile", self._reconcile_interval, self.reconciler.run_once),
                name="room-reconciler",
            ),
        ]
        logger.info(
            "Room loops started (heartbeat every %ss, reconcile every %ss)",
            self._heartbeat_interval,
            self._reconcile_interval,
        )

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task


# ---------------------------------------------------------------------------
# Module level singletons
# ---------------------------------------------------------------------------


settings = get_settings()

room_manager = RoomManager.from_settings(settings)


async def startup_realtime() -> None:
    await room_manager.start()


async def shutdown_realtime() -> None:
    await room_manager.stop()


def get_room_manager() -> RoomManager:
    return room_manager


__all__ = [
    "PlaybackManager",
    "PresenceManager",
    "ReconcileReport",
    "RoomManager",
    "RoomReconciler",
    "SignalRelayManager",
    "get_room_manager",
    "shutdown_realtime",
    "startup_realtime",
]
