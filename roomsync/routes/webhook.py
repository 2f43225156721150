"""Marketplace webhook receiver route."""

from typing import Any

import structlog
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from roomsync.dependencies import get_webhook_ingester
from roomsync.metrics import webhook_events
from roomsync.services.webhooks import SUPPORTED_EVENTS, WebhookIngester

router = APIRouter()
logger = structlog.get_logger(__name__)


@router.post("/webhooks")
async def receive_marketplace_webhook(
    request: Request,
    ingester: WebhookIngester = Depends(get_webhook_ingester),
) -> JSONResponse:
    """
    Handle incoming marketplace webhook events.

    Supported events: booking.created, booking.updated, booking.cancelled,
    chat.new, chat.updated, message.new. Unknown events are acknowledged with
    200 so the marketplace does not keep redelivering them.

    Authentication: none yet. The marketplace does not publish a signature
    scheme for these webhooks.

    Expected payload structure:
        {
            "event": "booking.created",
            "item_id": 1234567890,
            "booking": {...}
        }

    Args:
        request: FastAPI request containing webhook payload
        ingester: Webhook ingester (injected)

    Returns:
        JSONResponse: {"status": "ok" | "ignored"}
    """
    try:
        payload: Any = await request.json()
    except Exception:
        logger.exception("Failed to parse webhook payload")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Invalid JSON"},
        )

    if not isinstance(payload, dict):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Payload must be a JSON object"},
        )

    event_type = payload.get("event")
    # Only known events become metric labels
    event_label = event_type if event_type in SUPPORTED_EVENTS else "unknown"
    logger.info(
        "webhook_received",
        event_type=event_type,
        item_id=payload.get("item_id"),
        chat_id=payload.get("chat_id"),
    )

    try:
        result = ingester.ingest(payload)
    except Exception as e:
        webhook_events.labels(event_type=event_label, result="error").inc()
        logger.exception("webhook_processing_failed", event_type=event_type, error=str(e))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error"},
        )

    webhook_events.labels(event_type=event_label, result=result).inc()
    return JSONResponse(content={"status": result})
