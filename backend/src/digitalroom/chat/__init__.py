"""Room chat history."""

from .buffer import MessageBuffer, chat_message, direct_message, sanitize_text, system_message

__all__ = ["MessageBuffer", "chat_message", "direct_message", "sanitize_text", "system_message"]
