"""Bounded chat history replayed to new joiners."""

from __future__ import annotations

from collections import deque
from datetime import datetime
from typing import Any, Deque

DEFAULT_BUFFER_SIZE = 50
SYSTEM_SENDER = "SYSTEM"


def _timestamp() -> str:
    return datetime.now().strftime("%H:%M:%S")


def sanitize_text(text: Any, max_length: int = 500) -> str:
    if not isinstance(text, str):
        return ""
    return text[:max_length].strip()


def system_message(text: str, *, sender: str | None = SYSTEM_SENDER) -> dict[str, Any]:
    message: dict[str, Any] = {"text": text, "timestamp": _timestamp(), "isSystem": True}
    if sender is not None:
        message["userName"] = sender
    return message


def chat_message(
    text: str,
    *,
    user_name: str,
    badge: str | None = None,
    name_style: str = "",
) -> dict[str, Any]:
    return {
        "userName": user_name,
        "badge": badge,
        "nameStyle": name_style,
        "text": text,
        "timestamp": _timestamp(),
    }


def direct_message(text: str, *, sender: str, target: str) -> dict[str, Any]:
    return {"from": sender, "to": target, "text": text, "timestamp": _timestamp()}


class MessageBuffer:
    """FIFO of the most recent chat events."""

    def __init__(self, size: int = DEFAULT_BUFFER_SIZE) -> None:
        self._messages: Deque[dict[str, Any]] = deque(maxlen=size)

    def __len__(self) -> int:
        return len(self._messages)

    def append(self, message: dict[str, Any]) -> dict[str, Any]:
        self._messages.append(message)
        return message

    def snapshot(self) -> list[dict[str, Any]]:
        return list(self._messages)


__all__ = [
    "DEFAULT_BUFFER_SIZE",
    "MessageBuffer",
    "chat_message",
    "direct_message",
    "sanitize_text",
    "system_message",
]
