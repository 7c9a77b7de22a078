"""WebSocket endpoint for the shared room."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Dict, TypeVar

from fastapi import APIRouter, Depends, WebSocket
from fastapi.websockets import WebSocketDisconnect, WebSocketState
from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import SQLAlchemyError

from app.api.deps import get_account_service, get_room
from app.config import get_settings
from app.core.security import admin_from_token
from app.monitoring.metrics import realtime_events_total, realtime_handler_errors_total
from app.schemas.events import (
    AdminAnnouncement,
    AdminKick,
    ChatMessage,
    Credentials,
    DjUpdate,
    PingReport,
    PrivateMessage,
    ProfileUpdate,
    StreamSignal,
    StreamTarget,
    TokenPayload,
    VoiceSignal,
    VoiceState,
    coerce_payload,
)
from app.services.accounts import AccountError, AccountService
from digitalroom.chat.buffer import sanitize_text
from digitalroom.presence.store import DEFAULT_BADGE, Participant
from digitalroom.realtime.hub import Acknowledgement, safe_send_json
from digitalroom.realtime.managers import RoomManager

router = APIRouter(prefix="/ws", tags=["ws"])

settings = get_settings()

logger = logging.getLogger(__name__)

T = TypeVar("T")

RATE_LIMIT_ERROR = "Rate limit exceeded. Please wait."

# Account and booth requests share the per-connection limiter with chat.
RATE_LIMITED_EVENTS = frozenset({"register", "login", "updateProfile", "requestDJ"})

# Client replies to our keepalive pings.
IGNORED_EVENTS = frozenset({"pong"})


async def iter_keepalive_messages(
    websocket: WebSocket,
    receiver: Callable[[], Awaitable[T]],
    *,
    timeout_seconds: float | int | None,
    ping_interval_seconds: float | int | None,
    ping_payload: Dict[str, Any] | None = None,
) -> AsyncIterator[T]:
    """Yield messages from *receiver* while sending keepalive pings when idle."""

    ping_payload = ping_payload or {"type": "ping"}
    timeout = float(timeout_seconds) if timeout_seconds else 0.0
    interval = float(ping_interval_seconds) if ping_interval_seconds else 0.0
    last_activity = time.monotonic()
    last_ping_sent: float | None = None

    while True:
        try:
            if timeout > 0:
                message = await asyncio.wait_for(receiver(), timeout=timeout)
            else:
                message = await receiver()
        except asyncio.TimeoutError:
            if websocket.application_state != WebSocketState.CONNECTED:
                break

            now = time.monotonic()
            should_ping = False
            if interval <= 0:
                should_ping = True
            else:
                if now - last_activity >= interval and (
                    last_ping_sent is None or now - last_ping_sent >= interval
                ):
                    should_ping = True

            if should_ping:
                if not await safe_send_json(websocket, ping_payload):
                    break
                last_ping_sent = now
            continue
        except asyncio.CancelledError:  # pragma: no cover - cooperative cancellation
            raise
        except (RuntimeError, WebSocketDisconnect):
            break
        else:
            last_activity = time.monotonic()
            last_ping_sent = None
            yield message


# ---------------------------------------------------------------------------
# Event dispatch
# ---------------------------------------------------------------------------


@dataclass
class EventContext:
    room: RoomManager
    accounts: AccountService
    handle: str
    ack: Acknowledgement


Handler = Callable[[EventContext, Any], Awaitable[None]]

HANDLERS: dict[str, tuple[type[BaseModel] | None, Handler]] = {}


def on_event(event: str, schema: type[BaseModel] | None = None) -> Callable[[Handler], Handler]:
    def decorator(handler: Handler) -> Handler:
        HANDLERS[event] = (schema, handler)
        return handler

    return decorator


async def dispatch_event(ctx: EventContext, event: str, data: Any) -> None:
    """Validate ``data`` and run the handler for ``event``.

    A failing handler only affects the connection that sent the event.
    """

    entry = HANDLERS.get(event)
    if entry is None:
        if event not in IGNORED_EVENTS:
            logger.debug("Ignoring unknown event %s", event, extra={"handle": ctx.handle})
            await ctx.ack({"error": "Unknown event"})
        return

    realtime_events_total.labels("room", "in", event).inc()
    schema, handler = entry

    if event in RATE_LIMITED_EVENTS and not ctx.room.limiter.check(ctx.handle):
        await ctx.ack({"error": RATE_LIMIT_ERROR})
        return

    payload: Any = None
    if schema is not None:
        try:
            payload = schema.model_validate(coerce_payload(event, data))
        except ValidationError as exc:
            logger.debug("Invalid %s payload: %s", event, exc.errors(include_url=False))
            await ctx.ack({"error": "Invalid payload"})
            return

    try:
        await handler(ctx, payload)
    except Exception:
        realtime_handler_errors_total.labels(event).inc()
        logger.exception("Handler for %s failed", event, extra={"handle": ctx.handle})
        await ctx.ack({"error": "Request failed"})


# Accounts ------------------------------------------------------------------


@on_event("register", Credentials)
async def _register(ctx: EventContext, payload: Credentials) -> None:
    try:
        await ctx.accounts.register(payload.username, payload.password)
    except AccountError as exc:
        await ctx.ack({"error": str(exc)})
        return
    except SQLAlchemyError:
        logger.exception("Registration failed")
        await ctx.ack({"error": "Registration failed"})
        return
    await ctx.ack({"success": True})


@on_event("login", Credentials)
async def _login(ctx: EventContext, payload: Credentials) -> None:
    try:
        token, record = await ctx.accounts.login(payload.username, payload.password)
    except AccountError as exc:
        await ctx.ack({"error": str(exc)})
        return
    except SQLAlchemyError:
        logger.exception("Login failed")
        await ctx.ack({"error": "Login failed"})
        return
    await ctx.ack({"token": token, "user": record.to_public()})


@on_event("authenticate", TokenPayload)
async def _authenticate(ctx: EventContext, payload: TokenPayload) -> None:
    try:
        record = await ctx.accounts.resolve_token(payload.token)
    except SQLAlchemyError:
        logger.exception("Account lookup failed during authentication")
        await ctx.ack({"success": False})
        return
    if record is None:
        await ctx.ack({"success": False})
        return

    participant = Participant(
        id=ctx.handle,
        name=record.username,
        db_id=record.id,
        badge=record.badge or DEFAULT_BADGE,
        name_style=record.name_style,
        status=record.status,
    )
    if not await ctx.room.authenticate(ctx.handle, participant):
        return
    await ctx.ack({"success": True, "user": {**participant.to_public(), "username": record.username}})


@on_event("updateProfile", ProfileUpdate)
async def _update_profile(ctx: EventContext, payload: ProfileUpdate) -> None:
    try:
        change = await ctx.accounts.prepare_profile_change(
            payload.token,
            badge=payload.badge,
            password=payload.password,
            name_style=payload.name_style,
            status=payload.status,
        )
    except AccountError as exc:
        await ctx.ack({"error": str(exc)})
        return

    participant = ctx.room.store.get(ctx.handle)
    if change.presence and participant is not None and participant.db_id == change.account_id:
        await ctx.room.presence.update(ctx.handle, **change.presence)

    record = None
    try:
        record = await ctx.accounts.persist_profile(change)
    except SQLAlchemyError:
        logger.exception("Profile of account %s was not persisted", change.account_id)
    await ctx.ack({"success": True, "user": record.to_public() if record else None})


# Booth and playback ----------------------------------------------------------


@on_event("requestDJ")
async def _request_dj(ctx: EventContext, payload: None) -> None:
    result = await ctx.room.playback.request_dj(ctx.handle)
    await ctx.ack({"success": bool(result and result.granted)})


@on_event("djUpdate", DjUpdate)
async def _dj_update(ctx: EventContext, payload: DjUpdate) -> None:
    accepted = await ctx.room.playback.submit_update(ctx.handle, payload.to_update())
    await ctx.ack({"success": accepted})


# Administration ------------------------------------------------------------


async def _require_admin(ctx: EventContext, token: str) -> str | None:
    admin = admin_from_token(token)
    if admin is None:
        logger.warning("Admin request refused", extra={"handle": ctx.handle})
        await ctx.ack({"error": "Forbidden"})
    return admin


@on_event("adminResetDj", TokenPayload)
async def _admin_reset_dj(ctx: EventContext, payload: TokenPayload) -> None:
    admin = await _require_admin(ctx, payload.token)
    if admin is None:
        return
    await ctx.room.playback.reset(reason="admin")
    logger.info("Booth reset by %s", admin)
    await ctx.ack({"success": True})


@on_event("adminKick", AdminKick)
async def _admin_kick(ctx: EventContext, payload: AdminKick) -> None:
    if await _require_admin(ctx, payload.token) is None:
        return
    kicked = await ctx.room.kick(payload.target_socket_id)
    await ctx.ack({"success": kicked})


@on_event("adminAnnouncement", AdminAnnouncement)
async def _admin_announcement(ctx: EventContext, payload: AdminAnnouncement) -> None:
    if await _require_admin(ctx, payload.token) is None:
        return
    text = sanitize_text(payload.text, settings.announcement_max_length) if payload.text else ""
    await ctx.room.playback.announce(text or None)
    await ctx.ack({"success": True})


# Chat and presence -----------------------------------------------------------


@on_event("sendMessage", ChatMessage)
async def _send_message(ctx: EventContext, payload: ChatMessage) -> None:
    sent = await ctx.room.presence.send_message(ctx.handle, payload.text)
    await ctx.ack({"success": sent})


@on_event("privateMessage", PrivateMessage)
async def _private_message(ctx: EventContext, payload: PrivateMessage) -> None:
    delivered = await ctx.room.presence.private_message(ctx.handle, payload.target_name, payload.text)
    await ctx.ack({"success": delivered})


@on_event("reportPing", PingReport)
async def _report_ping(ctx: EventContext, payload: PingReport) -> None:
    await ctx.room.presence.update(ctx.handle, ping=payload.latency)


@on_event("ping")
async def _ping(ctx: EventContext, payload: None) -> None:
    if ctx.ack.requested:
        await ctx.ack({})
    else:
        await ctx.room.hub.send(ctx.handle, "pong", {"serverNow": ctx.room.clock()})


# Voice mesh ------------------------------------------------------------------


@on_event("voice-join")
async def _voice_join(ctx: EventContext, payload: None) -> None:
    peers = await ctx.room.relay.join_voice(ctx.handle)
    await ctx.ack({"success": peers is not None, "peers": peers or []})


@on_event("voice-leave")
async def _voice_leave(ctx: EventContext, payload: None) -> None:
    await ctx.room.relay.leave_voice(ctx.handle)


@on_event("voice-state-update", VoiceState)
async def _voice_state(ctx: EventContext, payload: VoiceState) -> None:
    await ctx.room.relay.set_voice_state(ctx.handle, muted=payload.muted, deafened=payload.deafened)


@on_event("voice-signal", VoiceSignal)
async def _voice_signal(ctx: EventContext, payload: VoiceSignal) -> None:
    await ctx.room.relay.relay_voice_signal(ctx.handle, payload.to, payload.signal)


# Screen share ----------------------------------------------------------------


@on_event("stream-start")
async def _stream_start(ctx: EventContext, payload: None) -> None:
    started = await ctx.room.relay.start_stream(ctx.handle)
    await ctx.ack({"success": started})


@on_event("stream-stop")
async def _stream_stop(ctx: EventContext, payload: None) -> None:
    await ctx.room.relay.stop_stream(ctx.handle)


@on_event("stream-join", StreamTarget)
async def _stream_join(ctx: EventContext, payload: StreamTarget) -> None:
    joined = await ctx.room.relay.join_stream(ctx.handle, payload.streamer_id)
    await ctx.ack({"success": joined})


@on_event("stream-leave", StreamTarget)
async def _stream_leave(ctx: EventContext, payload: StreamTarget) -> None:
    await ctx.room.relay.leave_stream(ctx.handle, payload.streamer_id)


@on_event("stream-signal", StreamSignal)
async def _stream_signal(ctx: EventContext, payload: StreamSignal) -> None:
    await ctx.room.relay.relay_stream_signal(ctx.handle, payload.to, payload.signal, payload.streamer_id)


# ---------------------------------------------------------------------------
# Endpoint
# ---------------------------------------------------------------------------


@router.websocket("/room")
async def websocket_room(
    websocket: WebSocket,
    room: RoomManager = Depends(get_room),
    accounts: AccountService = Depends(get_account_service),
) -> None:
    """Serve one client of the shared room until it goes away."""

    await websocket.accept()
    handle = await room.connect(websocket)

    try:
        async for raw_message in iter_keepalive_messages(
            websocket,
            websocket.receive_text,
            timeout_seconds=settings.websocket_keepalive_timeout_seconds,
            ping_interval_seconds=settings.websocket_keepalive_ping_interval_seconds,
        ):
            try:
                frame = json.loads(raw_message)
            except json.JSONDecodeError:
                await room.hub.send(handle, "error", {"detail": "Invalid message format"})
                continue

            if not isinstance(frame, dict):
                await room.hub.send(handle, "error", {"detail": "Message payload must be a JSON object"})
                continue

            event = frame.get("type")
            if not isinstance(event, str) or not event:
                await room.hub.send(handle, "error", {"detail": "Message type must be provided"})
                continue

            ctx = EventContext(
                room=room,
                accounts=accounts,
                handle=handle,
                ack=Acknowledgement(room.hub, handle, frame.get("ack")),
            )
            await dispatch_event(ctx, event, frame.get("data"))
    finally:
        await room.disconnect(handle)
