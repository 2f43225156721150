"""
Booking writes for the pull step and the booking webhooks.

Upserts compare the incoming row with the stored one and only write when a
column actually changed, so re-pulling identical remote data is a no-op and
updated_at stays put.
"""

from decimal import Decimal
from typing import Any, Literal

from sqlalchemy import insert, update
from sqlalchemy.engine import Connection

from roomsync.db.readers.bookings import get_booking_by_remote_id
from roomsync.models.bookings import Booking
from roomsync.utils.datetime import utc_now
from roomsync.utils.ids import to_uuid

bookings = Booking.__table__

UpsertResult = Literal["created", "updated", "unchanged"]

# Columns a pull is allowed to overwrite on an existing booking
_SYNCED_COLUMNS = (
    "check_in",
    "check_out",
    "guest_name",
    "guest_phone",
    "guest_email",
    "guests_count",
    "total_price",
    "currency",
    "status",
)


def _same(stored: Any, incoming: Any) -> bool:
    if isinstance(stored, Decimal) or isinstance(incoming, Decimal):
        if stored is None or incoming is None:
            return stored is incoming
        return Decimal(str(stored)) == Decimal(str(incoming))
    return stored == incoming


def upsert_booking(conn: Connection, row: dict[str, Any]) -> UpsertResult:
    """
    Insert or update a booking keyed by remote_booking_id.

    Args:
        conn: Active SQLAlchemy connection
        row: Normalized booking (see roomsync.normalizers.bookings)

    Returns:
        "created", "updated" or "unchanged"
    """
    existing = get_booking_by_remote_id(conn, row["remote_booking_id"])
    now = utc_now()

    if existing is None:
        values = {**row, "created_at": now, "updated_at": now}
        values["property_id"] = to_uuid(row["property_id"])
        conn.execute(insert(bookings).values(**values))
        return "created"

    changes = {
        col: row[col]
        for col in _SYNCED_COLUMNS
        if col in row and not _same(existing.get(col), row[col])
    }
    if not changes:
        return "unchanged"

    conn.execute(
        update(bookings).where(bookings.c.id == existing["id"]).values(**changes, updated_at=now)
    )
    return "updated"


def cancel_booking(conn: Connection, remote_booking_id: str) -> bool:
    """
    Soft-cancel a booking by its marketplace id.

    Args:
        conn: Active SQLAlchemy connection
        remote_booking_id: Marketplace booking id

    Returns:
        True if a booking was found, False if it is unknown
    """
    result = conn.execute(
        update(bookings)
        .where(bookings.c.remote_booking_id == str(remote_booking_id))
        .values(status="cancelled", updated_at=utc_now())
    )
    return result.rowcount > 0
