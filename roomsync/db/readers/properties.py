from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.engine import Connection

from roomsync.models.properties import Property
from roomsync.utils.ids import to_uuid

properties = Property.__table__


def get_property(conn: Connection, property_id: Any) -> Optional[dict[str, Any]]:
    """
    Fetch a property by primary key.

    Args:
        conn: Active SQLAlchemy connection
        property_id: Property UUID

    Returns:
        Property row as a dict, or None
    """
    row = (
        conn.execute(select(properties).where(properties.c.id == to_uuid(property_id)))
        .mappings()
        .first()
    )
    return dict(row) if row else None
