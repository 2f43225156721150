from datetime import datetime
from typing import Any, Optional

import structlog
from sqlalchemy import insert, update
from sqlalchemy.engine import Connection

from roomsync.db.readers.integrations import get_integration_for_property
from roomsync.models.integrations import Integration
from roomsync.utils.datetime import utc_now
from roomsync.utils.ids import to_uuid

logger = structlog.get_logger(__name__)

integrations = Integration.__table__


def update_tokens(
    conn: Connection,
    integration_id: Any,
    access_token_encrypted: str,
    expires_at: datetime,
    refresh_token_encrypted: Optional[str] = None,
    scope: Optional[str] = None,
) -> None:
    """
    Persist a freshly issued token pair.

    The refresh token and scope are only overwritten when the grant returned
    new values; a client_credentials grant carries neither.

    Args:
        conn: Active SQLAlchemy connection
        integration_id: Integration UUID
        access_token_encrypted: Encrypted access token
        expires_at: Absolute UTC expiry of the access token
        refresh_token_encrypted: Encrypted refresh token, if rotated
        scope: Granted scope, if reported
    """
    values: dict[str, Any] = {
        "access_token_encrypted": access_token_encrypted,
        "token_expires_at": expires_at,
        "updated_at": utc_now(),
    }
    if refresh_token_encrypted is not None:
        values["refresh_token_encrypted"] = refresh_token_encrypted
    if scope is not None:
        values["scope"] = scope

    conn.execute(
        update(integrations).where(integrations.c.id == to_uuid(integration_id)).values(**values)
    )


def update_last_sync(conn: Connection, integration_id: Any) -> None:
    """
    Update the last_sync_at timestamp for an integration.

    Args:
        conn: Active SQLAlchemy connection
        integration_id: Integration UUID
    """
    now = utc_now()
    conn.execute(
        update(integrations)
        .where(integrations.c.id == to_uuid(integration_id))
        .values(last_sync_at=now, updated_at=now)
    )


def upsert_integration(
    conn: Connection, property_id: Any, platform: str, data: dict[str, Any]
) -> Any:
    """
    Insert or update the integration for (property_id, platform).

    Only one row exists per pair, so a reconnect overwrites the tokens and
    remote identifiers of the existing row instead of creating a second one.

    Args:
        conn: Active SQLAlchemy connection
        property_id: Property UUID
        platform: Marketplace name
        data: Column values to write

    Returns:
        The integration id
    """
    now = utc_now()
    existing = get_integration_for_property(conn, property_id, platform)

    if existing:
        conn.execute(
            update(integrations)
            .where(integrations.c.id == existing["id"])
            .values(**data, updated_at=now)
        )
        logger.info("integration_updated", integration_id=str(existing["id"]), platform=platform)
        return existing["id"]

    result = conn.execute(
        insert(integrations).values(
            property_id=to_uuid(property_id),
            platform=platform,
            created_at=now,
            updated_at=now,
            **data,
        )
    )
    integration_id = result.inserted_primary_key[0]
    logger.info("integration_created", integration_id=str(integration_id), platform=platform)
    return integration_id
