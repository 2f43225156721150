"""
Prometheus metrics for marketplace sync, API calls and the queue poller.

Metrics are exposed via the /metrics endpoint for scraping by Prometheus.

Example:
    >>> from roomsync.metrics import sync_duration, sync_runs
    >>> with sync_duration.time():
    ...     result = sync_engine.sync(integration_id)
    >>> sync_runs.labels(status="success" if result.success else "failure").inc()
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram

# =============================================================================
# Sync Metrics
# =============================================================================

sync_runs = Counter(
    "roomsync_sync_runs_total",
    "Total number of integration sync runs by outcome",
    ["status"],
)
"""
Counter for sync runs.

Labels:
    status: success, failure, reauth_required or invalid
"""

sync_duration = Histogram(
    "roomsync_sync_duration_seconds",
    "Duration of a full push/pull sync for one integration",
    buckets=(0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, float("inf")),
)
"""Histogram for sync duration. Buckets: 0.25s .. 30s, +Inf"""

sync_steps = Counter(
    "roomsync_sync_steps_total",
    "Sync sub-step outcomes",
    ["operation", "outcome"],
)
"""
Counter for sync sub-steps.

Labels:
    operation: price_update, base_params_update, bookings_update, bookings_fetch
    outcome: ok, warn or err
"""

bookings_pulled = Counter(
    "roomsync_bookings_pulled_total",
    "Remote bookings written by the pull step",
    ["result"],
)
"""
Counter for pulled bookings.

Labels:
    result: created, updated, unchanged, skipped or failed
"""

# =============================================================================
# API Metrics
# =============================================================================

api_requests = Counter(
    "roomsync_api_requests_total",
    "Total marketplace API requests made",
    ["endpoint", "status_code"],
)
"""
Counter for API requests to the marketplace.

Labels:
    endpoint: Path with numeric identifiers collapsed (e.g. "/realty/v1/items/:id/base")
    status_code: HTTP status code, or "error" for connection failures
"""

api_latency = Histogram(
    "roomsync_api_latency_seconds",
    "Marketplace API request latency in seconds",
    ["endpoint"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, float("inf")),
)
"""Histogram for API request latency, labelled by endpoint."""

# =============================================================================
# Poller Metrics
# =============================================================================

poller_runs = Counter(
    "roomsync_poller_runs_total",
    "Queue poller invocations",
    ["deadline_hit"],
)
"""Counter for poller invocations, labelled by whether the deadline cut the batch short."""

poller_items = Counter(
    "roomsync_poller_items_total",
    "Queue items processed by the poller",
    ["status"],
)
"""
Counter for processed queue items.

Labels:
    status: success or failure
"""

# =============================================================================
# Token Metrics
# =============================================================================

token_cache_hits = Counter(
    "roomsync_token_cache_hits_total",
    "Total number of token cache hits",
)
"""Counter for token cache hits (cache had a fresh token)."""

token_cache_misses = Counter(
    "roomsync_token_cache_misses_total",
    "Total number of token cache misses",
)
"""Counter for token cache misses (no token, or token within the expiry buffer)."""

token_refreshes = Counter(
    "roomsync_token_refreshes_total",
    "Total number of token refresh operations",
    ["grant_type", "status"],
)
"""
Counter for token refresh operations.

Labels:
    grant_type: refresh_token or client_credentials
    status: success or failure
"""

# =============================================================================
# Webhook Metrics
# =============================================================================

webhook_events = Counter(
    "roomsync_webhook_events_total",
    "Webhook events received",
    ["event_type", "result"],
)
"""
Counter for webhook events.

Labels:
    event_type: Event discriminator (booking.created, message.new, ...)
    result: ok, ignored or error
"""
