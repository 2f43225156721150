from datetime import datetime
from typing import Any, Optional

import structlog
from sqlalchemy import insert, select, update
from sqlalchemy.engine import Connection

from roomsync.models.sync_queue import SyncQueueItem
from roomsync.utils.datetime import utc_now
from roomsync.utils.ids import to_uuid

logger = structlog.get_logger(__name__)

queue = SyncQueueItem.__table__


def ensure_queue_item(conn: Connection, integration_id: Any) -> None:
    """
    Make sure an integration has a queue row, due immediately.

    An existing row is reset to pending and due now so a reconnect syncs
    without waiting out a failure backoff.

    Args:
        conn: Active SQLAlchemy connection
        integration_id: Integration UUID
    """
    integration_id = to_uuid(integration_id)
    now = utc_now()
    existing = conn.execute(
        select(queue.c.id).where(queue.c.integration_id == integration_id)
    ).first()

    if existing:
        conn.execute(
            update(queue)
            .where(queue.c.id == existing.id)
            .values(status="pending", next_sync_at=now, attempts=0, last_error=None, updated_at=now)
        )
        return

    conn.execute(
        insert(queue).values(
            integration_id=integration_id,
            status="pending",
            next_sync_at=now,
            attempts=0,
            updated_at=now,
        )
    )
    logger.info("queue_item_created", integration_id=str(integration_id))


def claim_item(conn: Connection, item_id: int, status: str, updated_at: Optional[datetime]) -> bool:
    """
    Move a queue item to processing if nobody else claimed it first.

    The UPDATE is conditional on the status and updated_at values the poller
    read, so two concurrent pollers cannot both claim the same item.

    Args:
        conn: Active SQLAlchemy connection
        item_id: Queue row id
        status: Status observed when the item was loaded
        updated_at: updated_at observed when the item was loaded

    Returns:
        True if this caller now owns the item
    """
    stmt = update(queue).where(queue.c.id == item_id, queue.c.status == status)
    if updated_at is not None:
        stmt = stmt.where(queue.c.updated_at == updated_at)
    result = conn.execute(stmt.values(status="processing", updated_at=utc_now()))
    return result.rowcount == 1


def reschedule_success(conn: Connection, item_id: int, next_sync_at: datetime) -> None:
    """Return an item to pending after a successful sync and reset its attempts."""
    conn.execute(
        update(queue)
        .where(queue.c.id == item_id)
        .values(
            status="pending",
            next_sync_at=next_sync_at,
            attempts=0,
            last_error=None,
            updated_at=utc_now(),
        )
    )


def reschedule_failure(
    conn: Connection, item_id: int, next_sync_at: datetime, error: Optional[str]
) -> None:
    """Return an item to pending after a failed sync, counting the attempt."""
    conn.execute(
        update(queue)
        .where(queue.c.id == item_id)
        .values(
            status="pending",
            next_sync_at=next_sync_at,
            attempts=queue.c.attempts + 1,
            last_error=error,
            updated_at=utc_now(),
        )
    )
