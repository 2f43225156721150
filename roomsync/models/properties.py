"""SQLAlchemy model for the host-owned property as seen by the sync engine."""

import uuid

from sqlalchemy import Column, DateTime, Integer, Numeric, String, Uuid
from sqlalchemy.sql import func

from roomsync.config import SCHEMA
from roomsync.models.base import Base


class Property(Base):
    """
    Minimal local view of a property.

    Owned by the broader application; the sync engine only reads it to compute
    prices and to resolve OAuth targets and calendar feeds.
    """

    __tablename__ = "properties"
    __table_args__ = {"schema": SCHEMA}

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id = Column(Uuid, nullable=True, index=True)
    name = Column(String, nullable=False, default="")
    base_price = Column(Numeric(12, 2), nullable=True)
    minimum_booking_days = Column(Integer, nullable=True)
    currency = Column(String(3), nullable=False, default="RUB")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
