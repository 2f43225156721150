"""SQLAlchemy models for marketplace messenger chats and messages."""

import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.sql import func

from roomsync.config import SCHEMA
from roomsync.models.base import Base, JSONType
from roomsync.utils.datetime import utc_now


class Chat(Base):
    """
    ORM model for a messenger conversation between the host account and a contact.

    Written only by the messenger webhook ingester. remote_user_id is the
    host's marketplace account; contact_remote_user_id is the other participant.
    """

    __tablename__ = "chats"
    __table_args__ = {"schema": SCHEMA}

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    integration_id = Column(
        Uuid,
        ForeignKey(f"{SCHEMA}.integrations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    remote_chat_id = Column(String, nullable=False, unique=True)
    remote_user_id = Column(String, nullable=True)
    remote_item_id = Column(String, nullable=True)
    contact_name = Column(String, nullable=True)
    contact_remote_user_id = Column(String, nullable=True)
    last_message_at = Column(DateTime(timezone=True), nullable=True)
    unread_count = Column(Integer, nullable=False, default=0)
    created_at = Column(
        DateTime(timezone=True), nullable=False, default=utc_now, server_default=func.now()
    )
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )


class Message(Base):
    """
    ORM model for a single messenger message, deduplicated by remote_message_id.

    payload keeps the raw webhook message (attachments included).
    """

    __tablename__ = "messages"
    __table_args__ = {"schema": SCHEMA}

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    chat_id = Column(
        Uuid,
        ForeignKey(f"{SCHEMA}.chats.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    remote_message_id = Column(String, nullable=False, unique=True)
    sender_type = Column(String, nullable=False)  # user | contact
    sender_name = Column(String, nullable=True)
    text = Column(Text, nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)
    payload = Column(JSONType, nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(
        DateTime(timezone=True), nullable=False, default=utc_now, server_default=func.now()
    )
