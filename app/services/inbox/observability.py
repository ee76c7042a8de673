"""Prometheus metrics for the inbox."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

INBOUND_MESSAGES = Counter(
    "inbox_inbound_messages_total",
    "Total inbound messages received",
    ["channel", "status"],  # status: success, duplicate, rejected, error
)

OUTBOUND_MESSAGES = Counter(
    "inbox_outbound_messages_total",
    "Total outbound send attempts",
    ["channel", "method", "status"],  # status: sent, failed, skipped
)

MESSAGE_PROCESSING_TIME = Histogram(
    "inbox_message_processing_seconds",
    "Time to process inbound/outbound messages",
    ["channel", "direction"],
)

CONTACT_RESOLUTIONS = Counter(
    "inbox_contact_resolutions_total",
    "Identifier resolver lookups",
    ["result"],  # result: cache_hit, resolved, miss
)

ASSIGNMENTS = Counter(
    "inbox_assignments_total",
    "Conversations assigned to agents",
    ["source"],  # source: new_conversation, backlog, claim
)

CIRCUIT_STATE_CHANGES = Counter(
    "inbox_circuit_state_changes_total",
    "Outbound circuit breaker transitions",
    ["name", "state"],
)
