from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.engine import Connection

from roomsync.models.chats import Chat, Message

chats = Chat.__table__
messages = Message.__table__


def get_chat_by_remote_id(conn: Connection, remote_chat_id: str) -> Optional[dict[str, Any]]:
    """Fetch a chat by its marketplace identifier."""
    row = (
        conn.execute(select(chats).where(chats.c.remote_chat_id == str(remote_chat_id)))
        .mappings()
        .first()
    )
    return dict(row) if row else None


def message_exists(conn: Connection, remote_message_id: str) -> bool:
    """Check whether a message with this marketplace id is already stored."""
    row = conn.execute(
        select(messages.c.id).where(messages.c.remote_message_id == str(remote_message_id))
    ).first()
    return row is not None
