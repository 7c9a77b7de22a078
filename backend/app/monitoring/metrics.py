"""Metric definitions for the room realtime core."""

from __future__ import annotations

from .registry import registry


realtime_events_total = registry.counter(
    "realtime_events_total",
    "Count of realtime messages processed by the room websocket.",
    label_names=("topic", "direction", "action"),
)

realtime_connections = registry.gauge(
    "realtime_active_connections",
    "Number of active websocket connections handled locally.",
    label_names=("scope",),
)

realtime_handler_errors_total = registry.counter(
    "realtime_handler_errors_total",
    "Number of inbound events whose handler raised an exception.",
    label_names=("event",),
)

room_dj_changes_total = registry.counter(
    "room_dj_changes_total",
    "Changes of the DJ booth holder grouped by cause.",
    label_names=("reason",),
)

room_playback_resyncs_total = registry.counter(
    "room_playback_resyncs_total",
    "Times the authoritative playback timeline was re-anchored.",
    label_names=("reason",),
)

signal_relays_total = registry.counter(
    "signal_relays_total",
    "Relayed WebRTC signalling messages grouped by topology and outcome.",
    label_names=("topology", "outcome"),
)
