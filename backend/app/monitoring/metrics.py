"""Metric definitions for thread merging and realtime delivery."""

from __future__ import annotations

from .registry import registry


thread_inserts_total = registry.counter(
    "thread_inserts_total",
    "Messages offered to a thread store, by outcome.",
    label_names=("outcome",),
)

live_events_total = registry.counter(
    "live_events_total",
    "Push events handled by live update mergers.",
    label_names=("type", "outcome"),
)

realtime_transport_restarts_total = registry.counter(
    "realtime_transport_restarts_total",
    "Number of pub/sub transport recoveries.",
    label_names=("backend", "reason"),
)

realtime_subscriptions = registry.gauge(
    "realtime_pubsub_subscriptions",
    "Number of active broker subscriptions.",
    label_names=("backend",),
)

channel_views_open = registry.gauge(
    "channel_views_open",
    "Channel views currently held by the gateway.",
)

chat_api_errors_total = registry.counter(
    "chat_api_errors_total",
    "Failed calls to the chat server API.",
    label_names=("operation", "category"),
)
