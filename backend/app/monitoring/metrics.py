"""Metric definitions for the realtime room core."""

from __future__ import annotations

from .registry import registry


realtime_events_total = registry.counter(
    "realtime_events_total",
    "Count of realtime messages processed by the theater websocket.",
    label_names=("topic", "direction", "action"),
)

realtime_connections = registry.gauge(
    "realtime_active_connections",
    "Number of active websocket connections handled locally.",
    label_names=("scope",),
)

realtime_online_identities = registry.gauge(
    "realtime_online_identities",
    "Number of identities holding at least one live connection.",
)

realtime_relay_deliveries_total = registry.counter(
    "realtime_relay_deliveries_total",
    "Signaling frames delivered to a target connection.",
    label_names=("event",),
)

realtime_dropped_total = registry.counter(
    "realtime_dropped_total",
    "Inbound requests dropped without a reply to the sender.",
    label_names=("reason",),
)

realtime_cleanup_errors_total = registry.counter(
    "realtime_cleanup_errors_total",
    "Failures swallowed while reconciling a closed connection.",
    label_names=("step",),
)
