"""In-process metrics for the room service."""

from . import metrics, registry

__all__ = ["metrics", "registry"]
