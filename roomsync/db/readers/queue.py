from datetime import datetime
from typing import Any

from sqlalchemy import and_, or_, select
from sqlalchemy.engine import Connection

from roomsync.models.integrations import Integration
from roomsync.models.sync_queue import SyncQueueItem

queue = SyncQueueItem.__table__
integrations = Integration.__table__


def get_due_items(
    conn: Connection, now: datetime, limit: int, stale_before: datetime
) -> list[dict[str, Any]]:
    """
    Fetch queue items ready to sync, oldest first.

    An item is due when it is pending, or stuck in processing since before
    stale_before (a previous invocation died mid-run), and its next_sync_at
    has passed. Items of inactive integrations are never returned.

    Args:
        conn: Active SQLAlchemy connection
        now: Current UTC time
        limit: Maximum items to return
        stale_before: Processing items updated before this are reclaimable

    Returns:
        List of dicts with queue columns plus sync_interval_seconds
    """
    stmt = (
        select(queue, integrations.c.sync_interval_seconds)
        .join(integrations, integrations.c.id == queue.c.integration_id)
        .where(
            integrations.c.is_active.is_(True),
            queue.c.next_sync_at <= now,
            or_(
                queue.c.status == "pending",
                and_(queue.c.status == "processing", queue.c.updated_at < stale_before),
            ),
        )
        .order_by(queue.c.next_sync_at)
        .limit(limit)
    )
    return [dict(r) for r in conn.execute(stmt).mappings().all()]
