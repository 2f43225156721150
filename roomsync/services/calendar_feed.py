"""
iCalendar export of local occupancy.

Other channels subscribe to /calendar/{property_id}.ics to learn which nights
are taken by bookings that did not come from the marketplace. Marketplace
bookings are left out so the marketplace never sees its own bookings echoed
back as blocks.
"""

from typing import Any, Optional

import structlog
from icalendar import Calendar, Event
from sqlalchemy.engine import Engine

from roomsync.config import MARKETPLACE_PLATFORM
from roomsync.db.readers.bookings import get_feed_bookings
from roomsync.db.readers.properties import get_property
from roomsync.utils.datetime import utc_now, utc_today

logger = structlog.get_logger(__name__)

PRODID = "-//roomsync//Availability Feed//EN"


class PropertyNotFound(LookupError):
    """Raised when a feed is requested for a property that does not exist."""


def build_calendar(
    calendar_name: str, bookings: list[dict[str, Any]], stamp: Optional[Any] = None
) -> Calendar:
    """
    Build an iCalendar with one all-day busy event per booking.

    DTEND is the check-out date, which iCalendar treats as exclusive: a stay
    from the 17th to the 20th blocks the nights of the 17th, 18th and 19th.

    Args:
        calendar_name: Value for X-WR-CALNAME
        bookings: Booking rows (id, check_in, check_out)
        stamp: DTSTAMP for every event (defaults to now)

    Returns:
        icalendar.Calendar
    """
    stamp = stamp or utc_now()

    cal = Calendar()
    cal.add("prodid", PRODID)
    cal.add("version", "2.0")
    cal.add("calscale", "GREGORIAN")
    cal.add("x-wr-calname", calendar_name)

    for booking in bookings:
        event = Event()
        event.add("uid", f"booking-{booking['id']}@roomsync")
        event.add("dtstamp", stamp)
        event.add("dtstart", booking["check_in"])
        event.add("dtend", booking["check_out"])
        event.add("summary", "Busy")
        event.add("transp", "OPAQUE")
        cal.add_component(event)

    return cal


def generate_calendar(
    engine: Engine, property_id: Any, exclude_source: str = MARKETPLACE_PLATFORM
) -> bytes:
    """
    Render the availability feed for a property.

    Args:
        engine: Database engine
        property_id: Property UUID
        exclude_source: Booking source left out of the feed

    Returns:
        Serialized iCalendar bytes

    Raises:
        PropertyNotFound: If the property does not exist
    """
    with engine.connect() as conn:
        prop = get_property(conn, property_id)
        if prop is None:
            raise PropertyNotFound(str(property_id))
        bookings = get_feed_bookings(conn, property_id, utc_today(), exclude_source)

    logger.debug("calendar_feed_generated", property_id=str(property_id), events=len(bookings))
    return build_calendar(prop.get("name") or "Property", bookings).to_ical()
