"""Public iCalendar feed route."""

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import Response
from sqlalchemy.engine import Engine

from roomsync.dependencies import get_db_engine
from roomsync.services.calendar_feed import PropertyNotFound, generate_calendar
from roomsync.utils.ids import to_uuid

logger = structlog.get_logger(__name__)
router = APIRouter()

ICS_MEDIA_TYPE = "text/calendar; charset=utf-8"


@router.api_route("/calendar/{property_id}.ics", methods=["GET", "HEAD"])
def calendar_feed(
    property_id: str,
    request: Request,
    engine: Engine = Depends(get_db_engine),
) -> Response:
    """
    Serve the availability feed of a property.

    HEAD returns the same headers as GET without a body.

    Args:
        property_id: Property UUID
        request: Incoming request (method check)
        engine: Database engine (injected)

    Returns:
        text/calendar response
    """
    try:
        body = generate_calendar(engine, to_uuid(property_id))
    except (ValueError, PropertyNotFound):
        raise HTTPException(status_code=404, detail="Property not found")

    headers = {
        "Content-Disposition": f'inline; filename="{property_id}.ics"',
        "Cache-Control": "no-cache",
    }
    if request.method == "HEAD":
        headers["Content-Length"] = str(len(body))
        return Response(status_code=200, media_type=ICS_MEDIA_TYPE, headers=headers)
    return Response(content=body, media_type=ICS_MEDIA_TYPE, headers=headers)
