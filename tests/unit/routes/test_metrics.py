"""
Unit tests for metrics endpoint.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from roomsync.main import app
from roomsync.metrics import (
    api_latency,
    api_requests,
    poller_items,
    sync_duration,
    sync_runs,
    webhook_events,
)


@pytest.fixture
def client() -> TestClient:
    """FastAPI test client."""
    return TestClient(app)


@pytest.mark.unit
def test_metrics_endpoint_returns_prometheus_format(client: TestClient) -> None:
    """Test that /metrics endpoint returns Prometheus text format."""
    response = client.get("/metrics")

    assert response.status_code == 200
    assert "text/plain" in response.headers["content-type"]


@pytest.mark.unit
def test_metrics_endpoint_contains_custom_metrics(client: TestClient) -> None:
    """Test that /metrics endpoint includes the roomsync metrics."""
    sync_runs.labels(status="success").inc()
    sync_duration.observe(1.23)
    api_requests.labels(endpoint="/realty/v1/items/:id/base", status_code="200").inc()
    api_latency.labels(endpoint="/realty/v1/items/:id/base").observe(0.45)
    poller_items.labels(status="success").inc()
    webhook_events.labels(event_type="booking.created", result="ok").inc()

    content = client.get("/metrics").text

    assert "roomsync_sync_runs_total" in content
    assert "roomsync_sync_duration_seconds" in content
    assert "roomsync_api_requests_total" in content
    assert "roomsync_api_latency_seconds" in content
    assert "roomsync_poller_items_total" in content
    assert "roomsync_webhook_events_total" in content


@pytest.mark.unit
def test_metrics_endpoint_includes_help_and_type_metadata(client: TestClient) -> None:
    """Test that metrics include Prometheus HELP and TYPE metadata."""
    content = client.get("/metrics").text

    assert "# HELP" in content
    assert "# TYPE" in content
