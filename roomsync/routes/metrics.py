"""
Prometheus metrics endpoint.

Example:
    GET /metrics

    Response:
        # HELP roomsync_sync_runs_total Total number of integration sync runs by outcome
        # TYPE roomsync_sync_runs_total counter
        roomsync_sync_runs_total{status="success"} 42.0
        ...
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter()


@router.get("/metrics", response_class=Response)
async def metrics() -> Any:
    """
    Expose metrics in Prometheus text exposition format.

    Returns:
        Response: Metrics with Content-Type: text/plain
    """
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
