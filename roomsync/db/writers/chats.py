from datetime import datetime
from typing import Any, Optional

from sqlalchemy import insert, update
from sqlalchemy.engine import Connection

from roomsync.models.chats import Chat, Message
from roomsync.utils.datetime import utc_now
from roomsync.utils.ids import to_uuid

chats = Chat.__table__
messages = Message.__table__


def insert_chat(conn: Connection, integration_id: Any, data: dict[str, Any]) -> Any:
    """
    Insert a new chat row.

    Args:
        conn: Active SQLAlchemy connection
        integration_id: Owning integration UUID
        data: Chat columns (remote_chat_id, remote_user_id, contact_name, ...)

    Returns:
        The new chat id
    """
    now = utc_now()
    result = conn.execute(
        insert(chats).values(
            integration_id=to_uuid(integration_id),
            created_at=now,
            updated_at=now,
            **data,
        )
    )
    return result.inserted_primary_key[0]


def update_chat_activity(
    conn: Connection,
    chat_id: Any,
    last_message_at: Optional[datetime] = None,
    unread_count: Optional[int] = None,
) -> None:
    """Update the activity counters of a chat; None arguments are left untouched."""
    values: dict[str, Any] = {"updated_at": utc_now()}
    if last_message_at is not None:
        values["last_message_at"] = last_message_at
    if unread_count is not None:
        values["unread_count"] = unread_count
    conn.execute(update(chats).where(chats.c.id == to_uuid(chat_id)).values(**values))


def insert_message(conn: Connection, chat_id: Any, data: dict[str, Any]) -> None:
    """Insert a message row into a chat."""
    conn.execute(
        insert(messages).values(chat_id=to_uuid(chat_id), created_at=utc_now(), **data)
    )
