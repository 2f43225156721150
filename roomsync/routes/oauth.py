"""OAuth routes for connecting a property to the marketplace."""

from typing import Any, Literal, Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse

from roomsync.dependencies import get_oauth_handler
from roomsync.errors import MarketplaceError, OAuthError
from roomsync.schemas.oauth import OAuthCallbackPayload, OAuthCallbackResponse
from roomsync.services.oauth import OAuthCallbackHandler, build_authorization_url

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.post("/oauth/callback", response_model=OAuthCallbackResponse)
def oauth_callback(
    payload: OAuthCallbackPayload,
    handler: OAuthCallbackHandler = Depends(get_oauth_handler),
) -> Any:
    """
    Complete the OAuth flow.

    Failures return a 4xx body with a machine-readable reason:

        {"success": false, "reason": "invalid_code", "error": "..."}

    Args:
        payload: Code, state and optional redirect_uri / user_id
        handler: OAuth handler (injected)

    Returns:
        OAuthCallbackResponse describing the stored integration
    """
    try:
        result = handler.handle_callback(
            code=payload.code,
            state=payload.state,
            redirect_uri=payload.redirect_uri,
            user_id=payload.user_id,
        )
    except OAuthError as e:
        logger.warning("oauth_callback_rejected", reason=e.reason, error=e.message)
        return JSONResponse(
            status_code=e.status_code or status.HTTP_400_BAD_REQUEST,
            content={"success": False, "reason": e.reason, "error": e.message},
        )
    except MarketplaceError as e:
        logger.error("oauth_callback_marketplace_error", error=e.message)
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"success": False, "reason": "marketplace_error", "error": e.message},
        )
    except Exception as e:
        logger.exception("oauth_callback_failed", error=str(e))
        raise HTTPException(status_code=500, detail="Internal server error")

    return OAuthCallbackResponse(
        integration_id=result.integration_id,
        property_id=result.property_id,
        remote_account_id=result.remote_account_id,
        purpose=result.purpose,
        scope=result.scope,
    )


@router.get("/oauth/authorize-url")
def authorize_url(
    property_id: UUID,
    purpose: Literal["integration", "messenger"] = "integration",
    redirect_uri: Optional[str] = Query(None),
) -> dict[str, str]:
    """
    Build the marketplace authorization URL for a property.

    Args:
        property_id: Property being connected
        purpose: integration or messenger
        redirect_uri: Callback URL registered with the marketplace

    Returns:
        dict with the URL under "url"
    """
    try:
        return {"url": build_authorization_url(property_id, purpose, redirect_uri)}
    except RuntimeError as e:
        logger.error("oauth_not_configured", error=str(e))
        raise HTTPException(status_code=503, detail="OAuth is not configured")
