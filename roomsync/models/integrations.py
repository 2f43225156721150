"""SQLAlchemy model for marketplace integrations."""

import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.sql import func

from roomsync.config import SCHEMA
from roomsync.models.base import Base
from roomsync.utils.datetime import utc_now


class Integration(Base):
    """
    ORM model for a property's connection to one marketplace.

    Exactly one row exists per (property_id, platform). Tokens are stored
    encrypted (see roomsync.utils.crypto) and decrypted only at the point of use.
    Integrations are soft-disabled with is_active=false, never deleted.
    """

    __tablename__ = "integrations"
    __table_args__ = (
        UniqueConstraint("property_id", "platform", name="uq_integrations_property_platform"),
        {"schema": SCHEMA},
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    property_id = Column(
        Uuid,
        ForeignKey(f"{SCHEMA}.properties.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    platform = Column(String, nullable=False)
    remote_account_id = Column(String, nullable=True)
    remote_item_id = Column(String, nullable=True, index=True)

    access_token_encrypted = Column(String, nullable=True)
    refresh_token_encrypted = Column(String, nullable=True)
    token_expires_at = Column(DateTime(timezone=True), nullable=True)
    scope = Column(String, nullable=True)

    markup_type = Column(String, nullable=True)  # percentage | fixed
    markup_value = Column(Numeric(12, 2), nullable=True)

    is_active = Column(Boolean, nullable=False, default=True, server_default=text("TRUE"))
    is_enabled = Column(Boolean, nullable=False, default=True, server_default=text("TRUE"))
    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    sync_interval_seconds = Column(Integer, nullable=False, default=10, server_default=text("10"))

    created_at = Column(
        DateTime(timezone=True), nullable=False, default=utc_now, server_default=func.now()
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
        server_default=func.now(),
    )
