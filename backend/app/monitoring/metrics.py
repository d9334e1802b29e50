"""Metric definitions for the change feed, embeddings and search."""

from __future__ import annotations

from .registry import registry


change_events_total = registry.counter(
    "change_events_total",
    "Row change events published to the realtime change feed.",
    label_names=("table", "event"),
)

change_feed_subscribers = registry.gauge(
    "change_feed_subscribers",
    "Active change feed subscriptions held by this node.",
    label_names=("table",),
)

change_relay_errors_total = registry.counter(
    "change_relay_errors_total",
    "Failures relaying change events to other nodes.",
    label_names=("reason",),
)

embedding_requests_total = registry.counter(
    "embedding_requests_total",
    "Embedding generation attempts grouped by target and outcome.",
    label_names=("target", "outcome"),
)

attachment_cleanup_failures_total = registry.counter(
    "attachment_cleanup_failures_total",
    "Attachment blobs that could not be removed after a message delete.",
)

search_requests_total = registry.counter(
    "search_requests_total",
    "Semantic search requests grouped by outcome.",
    label_names=("outcome",),
)
