from typing import Any, Optional

from sqlalchemy import insert
from sqlalchemy.engine import Connection

from roomsync.models.sync_logs import SyncLog
from roomsync.utils.datetime import utc_now
from roomsync.utils.ids import to_uuid


def write_sync_log(
    conn: Connection,
    action: str,
    status: str,
    integration_id: Any = None,
    property_id: Any = None,
    error: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
) -> None:
    """
    Append an entry to the sync audit trail.

    Args:
        conn: Active SQLAlchemy connection
        action: Operation name (refresh_token, sync_bookings, ...)
        status: success, error or warning
        integration_id: Integration UUID, if known
        property_id: Property UUID, if known
        error: Error message for failed operations
        details: JSON-serializable context
    """
    conn.execute(
        insert(SyncLog.__table__).values(
            integration_id=to_uuid(integration_id),
            property_id=to_uuid(property_id),
            action=action,
            status=status,
            error=error,
            details=details,
            created_at=utc_now(),
        )
    )
