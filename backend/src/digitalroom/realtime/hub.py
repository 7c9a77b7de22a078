"""Registry of live websocket connections and the primitives to reach them."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Iterable

from fastapi.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from app.monitoring.metrics import realtime_connections, realtime_events_total

logger = logging.getLogger(__name__)


def encode_frame(event: str, data: Any = None) -> dict[str, Any]:
    return {"type": event, "data": data}


async def safe_send_json(websocket: WebSocket, data: dict[str, Any]) -> bool:
    """Safely send JSON data through websocket, handling disconnections gracefully.

    Returns True if message was sent successfully, False otherwise.
    """
    if websocket.application_state != WebSocketState.CONNECTED:
        return False
    try:
        await websocket.send_json(data)
        return True
    except (WebSocketDisconnect, RuntimeError) as e:
        logger.debug("Failed to send websocket message: %s", e)
        return False


class ConnectionHub:
    """Tracks every open room connection by its ephemeral handle."""

    def __init__(self) -> None:
        self._connections: Dict[str, WebSocket] = {}

    def __contains__(self, handle: object) -> bool:
        return handle in self._connections

    def __len__(self) -> int:
        return len(self._connections)

    def register(self, websocket: WebSocket, handle: str | None = None) -> str:
        handle = handle or uuid.uuid4().hex
        self._connections[handle] = websocket
        realtime_connections.labels("room").inc()
        return handle

    def unregister(self, handle: str) -> WebSocket | None:
        websocket = self._connections.pop(handle, None)
        if websocket is not None:
            realtime_connections.labels("room").dec()
        return websocket

    def is_connected(self, handle: str) -> bool:
        websocket = self._connections.get(handle)
        return websocket is not None and websocket.application_state == WebSocketState.CONNECTED

    def handles(self) -> list[str]:
        return list(self._connections)

    async def send_frame(self, handle: str, frame: dict[str, Any]) -> bool:
        websocket = self._connections.get(handle)
        if websocket is None:
            return False
        return await safe_send_json(websocket, frame)

    async def send(self, handle: str, event: str, data: Any = None) -> bool:
        delivered = await self.send_frame(handle, encode_frame(event, data))
        if delivered:
            realtime_events_total.labels("room", "out", event).inc()
        return delivered

    async def broadcast(
        self,
        event: str,
        data: Any = None,
        *,
        exclude: Iterable[str] | None = None,
    ) -> int:
        exclude_set = set(exclude or [])
        frame = encode_frame(event, data)
        delivered = 0
        for handle, websocket in list(self._connections.items()):
            if handle in exclude_set:
                continue
            if await safe_send_json(websocket, frame):
                delivered += 1
        realtime_events_total.labels("room", "out", event).inc()
        return delivered

    async def disconnect(self, handle: str, *, code: int = 1000, reason: str | None = None) -> bool:
        websocket = self._connections.get(handle)
        if websocket is None:
            return False
        if websocket.application_state == WebSocketState.CONNECTED:
            try:
                await websocket.close(code=code, reason=reason)
            except RuntimeError:
                logger.debug("Websocket %s already closed", handle)
        return True


class Acknowledgement:
    """Replies to a request that asked for an acknowledgement, at most once."""

    def __init__(self, hub: ConnectionHub, handle: str, ack_id: Any | None) -> None:
        self._hub = hub
        self._handle = handle
        self._ack_id = ack_id
        self._sent = False

    @property
    def requested(self) -> bool:
        return self._ack_id is not None

    @property
    def sent(self) -> bool:
        return self._sent

    async def __call__(self, data: Any = None) -> bool:
        if self._ack_id is None or self._sent:
            return False
        self._sent = True
        return await self._hub.send_frame(
            self._handle, {"type": "ack", "ack": self._ack_id, "data": data}
        )


__all__ = ["Acknowledgement", "ConnectionHub", "encode_frame", "safe_send_json"]
