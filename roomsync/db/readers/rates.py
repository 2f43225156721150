from datetime import date
from typing import Any

from sqlalchemy import select
from sqlalchemy.engine import Connection

from roomsync.models.rates import PropertyRate
from roomsync.utils.ids import to_uuid

rates = PropertyRate.__table__


def get_future_rates(conn: Connection, property_id: Any, from_date: date) -> list[dict[str, Any]]:
    """
    Fetch per-date rates from from_date onward, ordered by date.

    Args:
        conn: Active SQLAlchemy connection
        property_id: Property UUID
        from_date: First date to include

    Returns:
        List of {date, daily_price, min_stay} dicts
    """
    stmt = (
        select(rates.c.date, rates.c.daily_price, rates.c.min_stay)
        .where(rates.c.property_id == to_uuid(property_id), rates.c.date >= from_date)
        .order_by(rates.c.date)
    )
    return [dict(r) for r in conn.execute(stmt).mappings().all()]
