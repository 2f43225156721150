from datetime import datetime
from typing import Any, Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.engine import Connection

from roomsync.models.integrations import Integration
from roomsync.models.properties import Property
from roomsync.utils.ids import to_uuid

integrations = Integration.__table__
properties = Property.__table__


def get_integration(conn: Connection, integration_id: Any) -> Optional[dict[str, Any]]:
    """
    Fetch a single integration by primary key.

    Args:
        conn: Active SQLAlchemy connection
        integration_id: Integration UUID

    Returns:
        Integration row as a dict, or None if it does not exist
    """
    row = (
        conn.execute(select(integrations).where(integrations.c.id == to_uuid(integration_id)))
        .mappings()
        .first()
    )
    return dict(row) if row else None


def get_integration_for_property(
    conn: Connection, property_id: Any, platform: str
) -> Optional[dict[str, Any]]:
    """Fetch the integration for a (property, platform) pair, active or not."""
    row = (
        conn.execute(
            select(integrations).where(
                integrations.c.property_id == to_uuid(property_id),
                integrations.c.platform == platform,
            )
        )
        .mappings()
        .first()
    )
    return dict(row) if row else None


def get_active_integrations_for_owner(
    conn: Connection, owner_id: Any, platform: str
) -> list[dict[str, Any]]:
    """
    Fetch the active integrations on properties owned by a user.

    Args:
        conn: Active SQLAlchemy connection
        owner_id: Property owner UUID
        platform: Marketplace name

    Returns:
        List of integration dicts
    """
    stmt = (
        select(integrations)
        .join(properties, properties.c.id == integrations.c.property_id)
        .where(
            properties.c.owner_id == to_uuid(owner_id),
            integrations.c.platform == platform,
            integrations.c.is_active.is_(True),
        )
    )
    return [dict(r) for r in conn.execute(stmt).mappings().all()]


def find_integration_by_item(
    conn: Connection, item_id: str, platform: Optional[str] = None
) -> Optional[dict[str, Any]]:
    """Find the active integration bound to a marketplace listing."""
    stmt = select(integrations).where(
        integrations.c.remote_item_id == str(item_id),
        integrations.c.is_active.is_(True),
    )
    if platform:
        stmt = stmt.where(integrations.c.platform == platform)
    row = conn.execute(stmt).mappings().first()
    return dict(row) if row else None


def find_integration_by_account(
    conn: Connection, remote_account_id: str, item_id: Optional[str] = None
) -> Optional[dict[str, Any]]:
    """
    Find the active integration for a marketplace account.

    When item_id is given the listing must match too; one account can hold
    several listings, each with its own integration.
    """
    stmt = select(integrations).where(
        integrations.c.remote_account_id == str(remote_account_id),
        integrations.c.is_active.is_(True),
    )
    if item_id:
        stmt = stmt.where(integrations.c.remote_item_id == str(item_id))
    row = conn.execute(stmt.order_by(integrations.c.created_at)).mappings().first()
    return dict(row) if row else None


def find_item_in_use(
    conn: Connection, item_id: str, exclude_property_id: Any = None
) -> Optional[dict[str, Any]]:
    """Return another property's active integration already bound to item_id, if any."""
    stmt = select(integrations).where(
        integrations.c.remote_item_id == str(item_id),
        integrations.c.is_active.is_(True),
    )
    if exclude_property_id is not None:
        stmt = stmt.where(integrations.c.property_id != to_uuid(exclude_property_id))
    row = conn.execute(stmt).mappings().first()
    return dict(row) if row else None


def get_expiring_integrations(conn: Connection, cutoff: datetime) -> list[dict[str, Any]]:
    """
    Fetch active integrations whose token expires before cutoff or has no expiry.

    Args:
        conn: Active SQLAlchemy connection
        cutoff: Absolute UTC datetime

    Returns:
        List of integration dicts
    """
    stmt = select(integrations).where(
        and_(
            integrations.c.is_active.is_(True),
            or_(
                integrations.c.token_expires_at.is_(None),
                integrations.c.token_expires_at <= cutoff,
            ),
        )
    )
    return [dict(r) for r in conn.execute(stmt).mappings().all()]
