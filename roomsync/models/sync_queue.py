from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, Uuid, text

from roomsync.config import SCHEMA
from roomsync.models.base import Base
from roomsync.utils.datetime import utc_now


class SyncQueueItem(Base):
    """
    ORM model for the per-integration sync schedule.

    One row per integration, created on activation and rescheduled forever
    while the integration stays active. Status is ``pending`` between runs and
    ``processing`` while a poller has claimed it.
    """

    __tablename__ = "sync_queue"
    __table_args__ = {"schema": SCHEMA}

    id = Column(Integer, primary_key=True, autoincrement=True)
    integration_id = Column(
        Uuid,
        ForeignKey(f"{SCHEMA}.integrations.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    status = Column(String, nullable=False, default="pending", server_default=text("'pending'"))
    next_sync_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, index=True)
    attempts = Column(Integer, nullable=False, default=0, server_default=text("0"))
    last_error = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)
