from datetime import date
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.engine import Connection

from roomsync.models.bookings import Booking
from roomsync.utils.ids import to_uuid

bookings = Booking.__table__


def get_blocking_bookings(
    conn: Connection,
    property_id: Any,
    today: date,
    exclude_booking_id: Any = None,
) -> list[dict[str, Any]]:
    """
    Fetch confirmed bookings that still occupy nights from today on.

    Args:
        conn: Active SQLAlchemy connection
        property_id: Property UUID
        today: Current date; bookings checking out on or before it are ignored
        exclude_booking_id: Local booking id to leave out (being deleted)

    Returns:
        List of booking dicts ordered by check_in
    """
    stmt = select(bookings).where(
        bookings.c.property_id == to_uuid(property_id),
        bookings.c.status == "confirmed",
        bookings.c.check_out > today,
    )
    if exclude_booking_id is not None:
        stmt = stmt.where(bookings.c.id != to_uuid(exclude_booking_id))
    return [dict(r) for r in conn.execute(stmt.order_by(bookings.c.check_in)).mappings().all()]


def get_feed_bookings(
    conn: Connection, property_id: Any, today: date, exclude_source: str
) -> list[dict[str, Any]]:
    """Fetch future, non-cancelled bookings not originating from exclude_source."""
    stmt = (
        select(bookings)
        .where(
            bookings.c.property_id == to_uuid(property_id),
            bookings.c.check_out > today,
            bookings.c.status != "cancelled",
            bookings.c.source != exclude_source,
        )
        .order_by(bookings.c.check_in)
    )
    return [dict(r) for r in conn.execute(stmt).mappings().all()]


def get_booking_by_remote_id(conn: Connection, remote_booking_id: str) -> Optional[dict[str, Any]]:
    """Fetch a booking by its marketplace identifier."""
    row = (
        conn.execute(
            select(bookings).where(bookings.c.remote_booking_id == str(remote_booking_id))
        )
        .mappings()
        .first()
    )
    return dict(row) if row else None
