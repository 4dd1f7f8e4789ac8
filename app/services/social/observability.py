"""Prometheus metrics for social webhook ingestion and sends."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

WEBHOOK_EVENTS = Counter(
    "social_webhook_events_total",
    "Webhook events seen by the dispatcher",
    ["platform", "kind", "status"],  # status: processed, duplicate, failed
)

OUTBOUND_MESSAGES = Counter(
    "social_outbound_messages_total",
    "Outbound messages attempted",
    ["platform", "status"],  # status: sent, rejected, failed
)

EVENT_PROCESSING_TIME = Histogram(
    "social_webhook_event_processing_seconds",
    "Time spent handling one webhook event",
    ["platform", "kind"],
)
