from sqlalchemy import Column, DateTime, Integer, String, Text, Uuid
from sqlalchemy.sql import func

from roomsync.config import SCHEMA
from roomsync.models.base import Base, JSONType
from roomsync.utils.datetime import utc_now


class SyncLog(Base):
    """
    Append-only audit trail of token refreshes, pushes and pulls.

    ``action`` names the operation (refresh_token, sync_calendar_bookings,
    sync_bookings, sync, ...); ``status`` is success, error or warning.
    """

    __tablename__ = "sync_logs"
    __table_args__ = {"schema": SCHEMA}

    id = Column(Integer, primary_key=True, autoincrement=True)
    integration_id = Column(Uuid, nullable=True, index=True)
    property_id = Column(Uuid, nullable=True, index=True)
    action = Column(String, nullable=False)
    status = Column(String, nullable=False)
    error = Column(Text, nullable=True)
    details = Column(JSONType, nullable=True)
    created_at = Column(
        DateTime(timezone=True), nullable=False, default=utc_now, server_default=func.now()
    )
