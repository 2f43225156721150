"""SQLAlchemy model for bookings shared with the broader application."""

import uuid

from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, Numeric, String, Uuid
from sqlalchemy.sql import func

from roomsync.config import SCHEMA
from roomsync.models.base import Base
from roomsync.utils.datetime import utc_now


class Booking(Base):
    """
    ORM model for a stay at a property.

    Local bookings (source ``manual`` or ``import``) are pushed to the
    marketplace as calendar blocks. Marketplace bookings (source = platform
    name) are pulled and upserted by remote_booking_id, which is unique when
    set. Cancelled bookings stay as rows with status ``cancelled``.
    """

    __tablename__ = "bookings"
    __table_args__ = {"schema": SCHEMA}

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    property_id = Column(
        Uuid,
        ForeignKey(f"{SCHEMA}.properties.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    remote_booking_id = Column(String, nullable=True, unique=True)
    check_in = Column(Date, nullable=False)
    check_out = Column(Date, nullable=False)
    guest_name = Column(String, nullable=True)
    guest_phone = Column(String, nullable=True)
    guest_email = Column(String, nullable=True)
    guests_count = Column(Integer, nullable=False, default=1)
    total_price = Column(Numeric(12, 2), nullable=True)
    currency = Column(String(3), nullable=False, default="RUB")
    status = Column(String, nullable=False, default="confirmed")  # confirmed | pending | cancelled
    source = Column(String, nullable=False, default="manual")
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
