"""Routes for manual syncs, the queue poller and token maintenance."""

from dataclasses import asdict
from typing import Any, Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from roomsync.dependencies import get_queue_poller, get_sync_engine, get_token_manager
from roomsync.errors import ReauthRequired, ValidationError
from roomsync.network.auth import TokenManager
from roomsync.pollers.queue import QueuePoller
from roomsync.schemas.sync import RefreshExpiringPayload, SyncRequestPayload, ValidateItemPayload
from roomsync.services.sync import SyncEngine

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.post("/integrations/{integration_id}/sync")
def trigger_sync(
    integration_id: UUID,
    payload: Optional[SyncRequestPayload] = None,
    sync_engine: SyncEngine = Depends(get_sync_engine),
) -> dict[str, Any]:
    """
    Run a sync for one integration and return its result.

    Unlike the poller this runs synchronously, so the frontend can show
    warnings and errors right after a booking is deleted or a price changed.

    Args:
        integration_id: Integration UUID
        payload: Optional exclude_booking_id / pull_limit / pull_offset
        sync_engine: Sync engine (injected)

    Returns:
        dict: Serialized SyncResult
    """
    payload = payload or SyncRequestPayload()
    try:
        result = sync_engine.sync(
            integration_id,
            exclude_booking_id=payload.exclude_booking_id,
            pull_limit=payload.pull_limit,
            pull_offset=payload.pull_offset,
        )
    except Exception as e:
        logger.exception("manual_sync_failed", integration_id=str(integration_id), error=str(e))
        raise HTTPException(status_code=500, detail="Internal server error")

    logger.info("manual_sync_done", integration_id=str(integration_id), success=result.success)
    return result.to_dict()


@router.post("/poller/run")
def run_poller(poller: QueuePoller = Depends(get_queue_poller)) -> dict[str, Any]:
    """
    Run one poller invocation.

    Called by the external scheduler. Returns once the page is processed or
    the deadline has passed.

    Returns:
        dict: processed, success, failed, deadline_hit
    """
    try:
        result = poller.run()
    except Exception as e:
        logger.exception("poller_run_failed", error=str(e))
        raise HTTPException(status_code=500, detail="Internal server error")
    return asdict(result)


@router.post("/tokens/refresh-expiring")
def refresh_expiring_tokens(
    payload: Optional[RefreshExpiringPayload] = None,
    token_manager: TokenManager = Depends(get_token_manager),
) -> dict[str, Any]:
    """
    Refresh every token expiring within the window.

    Returns:
        dict: refreshed, failed, total, errors
    """
    payload = payload or RefreshExpiringPayload()
    try:
        return token_manager.refresh_expiring(window_seconds=payload.window_seconds)
    except Exception as e:
        logger.exception("refresh_expiring_failed", error=str(e))
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/integrations/{integration_id}/validate-item")
def validate_item(
    integration_id: UUID,
    payload: ValidateItemPayload,
    sync_engine: SyncEngine = Depends(get_sync_engine),
) -> dict[str, Any]:
    """
    Check whether a listing id exists and is free to bind.

    Returns:
        dict: available, reason, status_code
    """
    try:
        result = sync_engine.validate_item(
            integration_id, payload.item_id, property_id=payload.property_id
        )
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except ReauthRequired as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=e.message)
    except Exception as e:
        logger.exception("validate_item_failed", integration_id=str(integration_id), error=str(e))
        raise HTTPException(status_code=500, detail="Internal server error")
    return asdict(result)


@router.post("/integrations/{integration_id}/close-availability")
def close_availability(
    integration_id: UUID,
    sync_engine: SyncEngine = Depends(get_sync_engine),
) -> dict[str, Any]:
    """
    Close the listing's whole calendar on the marketplace.

    Returns:
        dict: success plus the step outcome
    """
    try:
        outcome = sync_engine.close_availability(integration_id)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except ReauthRequired as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=e.message)
    except Exception as e:
        logger.exception(
            "close_availability_failed", integration_id=str(integration_id), error=str(e)
        )
        raise HTTPException(status_code=500, detail="Internal server error")

    return {"success": outcome.kind == "ok", **outcome.as_dict()}
