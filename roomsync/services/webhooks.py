"""
Marketplace webhook ingestion.

Booking events keep the local bookings table in step between pulls; messenger
events maintain chats and messages. Every handler is idempotent, so the
marketplace may redeliver an event any number of times.

Expected payloads (flat, keyed by ``event``):

    {"event": "booking.created", "item_id": 1234567890, "booking": {...}}
    {"event": "booking.cancelled", "item_id": 1234567890, "booking_id": 42}
    {"event": "chat.new", "user_id": 1234567, "item_id": ..., "chat": {...}}
    {"event": "message.new", "chat_id": "u2i-...", "user_id": ..., "message": {...}}
"""

from datetime import datetime, timezone
from typing import Any, Callable, Literal, Optional

import structlog
from dateutil import parser as dateparser
from sqlalchemy.engine import Connection, Engine

from roomsync.config import MARKETPLACE_PLATFORM
from roomsync.db.readers.chats import get_chat_by_remote_id, message_exists
from roomsync.db.readers.integrations import find_integration_by_account, find_integration_by_item
from roomsync.db.writers.bookings import cancel_booking, upsert_booking
from roomsync.db.writers.chats import insert_chat, insert_message, update_chat_activity
from roomsync.normalizers.bookings import normalize_booking, remote_booking_id
from roomsync.utils.datetime import ensure_utc

logger = structlog.get_logger(__name__)

IngestResult = Literal["ok", "ignored"]

SUPPORTED_EVENTS = (
    "booking.created",
    "booking.updated",
    "booking.cancelled",
    "chat.new",
    "chat.updated",
    "message.new",
)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp or epoch seconds into an aware datetime; None if unusable."""
    if value in (None, ""):
        return None
    try:
        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(value, tz=timezone.utc)
        return ensure_utc(dateparser.isoparse(str(value)))
    except (ValueError, OverflowError, OSError):
        return None


def _unread_count(value: Any) -> Optional[int]:
    try:
        count = int(value)
    except (TypeError, ValueError, OverflowError):
        return None
    return count if count >= 0 else None


class WebhookIngester:
    """
    Route webhook events to their handlers.

    Example:
        >>> ingester = WebhookIngester(engine)
        >>> ingester.ingest({"event": "booking.cancelled", "booking_id": 42})
        'ok'
    """

    def __init__(self, engine: Engine, platform: str = MARKETPLACE_PLATFORM):
        self.engine = engine
        self.platform = platform
        self.handlers: dict[str, Callable[[Connection, dict[str, Any]], IngestResult]] = {
            "booking.created": self.handle_booking,
            "booking.updated": self.handle_booking,
            "booking.cancelled": self.handle_booking_cancelled,
            "chat.new": self.handle_chat_new,
            "chat.updated": self.handle_chat_updated,
            "message.new": self.handle_message_new,
        }

    def ingest(self, event: dict[str, Any]) -> IngestResult:
        """
        Process one webhook event.

        Args:
            event: Decoded webhook body

        Returns:
            "ok" if the event changed or confirmed local state, "ignored" otherwise
        """
        event_type = event.get("event")
        handler = self.handlers.get(event_type) if isinstance(event_type, str) else None
        if handler is None:
            logger.warning("webhook_unsupported_event_type", event_type=event_type)
            return "ignored"

        with self.engine.begin() as conn:
            return handler(conn, event)

    # ------------------------------------------------------------------
    # Bookings
    # ------------------------------------------------------------------

    def handle_booking(self, conn: Connection, event: dict[str, Any]) -> IngestResult:
        """Upsert a created or updated marketplace booking."""
        booking = event.get("booking")
        if not isinstance(booking, dict):
            logger.warning("webhook_booking_missing_data", event_type=event.get("event"))
            return "ignored"

        item_id = event.get("item_id") or booking.get("item_id")
        integration = find_integration_by_item(conn, str(item_id), self.platform) if item_id else None
        if integration is None:
            logger.warning("webhook_booking_unknown_item", item_id=item_id)
            return "ignored"

        row = normalize_booking(booking, integration["property_id"], self.platform)
        if row is None:
            logger.warning(
                "webhook_booking_incomplete",
                remote_booking_id=remote_booking_id(booking),
                item_id=item_id,
            )
            return "ignored"

        outcome = upsert_booking(conn, row)
        logger.info(
            "webhook_booking_saved",
            event_type=event.get("event"),
            remote_booking_id=row["remote_booking_id"],
            integration_id=str(integration["id"]),
            outcome=outcome,
        )
        return "ok"

    def handle_booking_cancelled(self, conn: Connection, event: dict[str, Any]) -> IngestResult:
        """Soft-cancel a booking; unknown bookings are ignored."""
        booking = event.get("booking") if isinstance(event.get("booking"), dict) else {}
        booking_id = event.get("booking_id") or remote_booking_id(booking)
        if not booking_id:
            logger.warning("webhook_cancel_missing_booking_id")
            return "ignored"

        if not cancel_booking(conn, str(booking_id)):
            logger.info("webhook_cancel_unknown_booking", remote_booking_id=str(booking_id))
            return "ignored"

        logger.info("webhook_booking_cancelled", remote_booking_id=str(booking_id))
        return "ok"

    # ------------------------------------------------------------------
    # Messenger
    # ------------------------------------------------------------------

    def _create_chat(self, conn: Connection, event: dict[str, Any]) -> Optional[dict[str, Any]]:
        chat = event.get("chat")
        owner_id = event.get("user_id")
        if not isinstance(chat, dict) or not chat.get("id") or not owner_id:
            logger.warning("webhook_chat_missing_data", event_type=event.get("event"))
            return None

        existing = get_chat_by_remote_id(conn, str(chat["id"]))
        if existing is not None:
            return existing

        item_id = event.get("item_id") or chat.get("item_id")
        integration = find_integration_by_account(
            conn, str(owner_id), str(item_id) if item_id else None
        )
        if integration is None:
            logger.warning("webhook_chat_unknown_account", user_id=str(owner_id), item_id=item_id)
            return None

        contact = next(
            (
                u
                for u in chat.get("users") or []
                if isinstance(u, dict) and str(u.get("user_id") or u.get("id")) != str(owner_id)
            ),
            None,
        )
        data = {
            "remote_chat_id": str(chat["id"]),
            "remote_user_id": str(owner_id),
            "remote_item_id": str(item_id) if item_id else None,
            "contact_name": contact.get("name") if contact else None,
            "contact_remote_user_id": (
                str(contact.get("user_id") or contact.get("id")) if contact else None
            ),
            "last_message_at": parse_timestamp(chat.get("updated") or chat.get("created")),
            "unread_count": 0,
        }
        chat_id = insert_chat(conn, integration["id"], data)
        logger.info("webhook_chat_created", remote_chat_id=data["remote_chat_id"])
        return {"id": chat_id, **data}

    def handle_chat_new(self, conn: Connection, event: dict[str, Any]) -> IngestResult:
        """Create a chat unless it is already known."""
        chat = event.get("chat")
        if isinstance(chat, dict) and chat.get("id"):
            if get_chat_by_remote_id(conn, str(chat["id"])) is not None:
                logger.info("webhook_chat_exists", remote_chat_id=str(chat["id"]))
                return "ok"
        return "ok" if self._create_chat(conn, event) is not None else "ignored"

    def handle_chat_updated(self, conn: Connection, event: dict[str, Any]) -> IngestResult:
        """Refresh last_message_at and unread_count of a known chat."""
        chat = event.get("chat")
        if not isinstance(chat, dict):
            logger.warning("webhook_chat_missing_data", event_type="chat.updated")
            return "ignored"
        remote_chat_id = chat.get("id") or event.get("chat_id")
        if not remote_chat_id:
            logger.warning("webhook_chat_missing_data", event_type="chat.updated")
            return "ignored"

        existing = get_chat_by_remote_id(conn, str(remote_chat_id))
        if existing is None:
            logger.info("webhook_chat_unknown", remote_chat_id=str(remote_chat_id))
            return "ignored"

        update_chat_activity(
            conn,
            existing["id"],
            last_message_at=parse_timestamp(chat.get("updated")),
            unread_count=_unread_count(chat.get("unread_count")),
        )
        return "ok"

    def handle_message_new(self, conn: Connection, event: dict[str, Any]) -> IngestResult:
        """Store a message once, creating its chat from the payload if needed."""
        message = event.get("message")
        remote_chat_id = event.get("chat_id") or (message or {}).get("chat_id")
        if not isinstance(message, dict) or not message.get("id") or not remote_chat_id:
            logger.warning("webhook_message_missing_data")
            return "ignored"

        if message_exists(conn, str(message["id"])):
            logger.info("webhook_message_exists", remote_message_id=str(message["id"]))
            return "ok"

        chat = get_chat_by_remote_id(conn, str(remote_chat_id))
        if chat is None:
            chat = self._create_chat(conn, event)
        if chat is None:
            logger.warning("webhook_message_chat_unknown", remote_chat_id=str(remote_chat_id))
            return "ignored"

        author = message.get("author") or {}
        content = message.get("content") or {}
        sender_type = (
            "user" if str(author.get("user_id")) == str(chat.get("remote_user_id")) else "contact"
        )
        sent_at = parse_timestamp(message.get("created"))

        insert_message(
            conn,
            chat["id"],
            {
                "remote_message_id": str(message["id"]),
                "sender_type": sender_type,
                "sender_name": author.get("name"),
                "text": content.get("text"),
                "is_read": sender_type == "user",
                "payload": {"attachments": content.get("attachments") or [], "author": author},
                "sent_at": sent_at,
            },
        )
        update_chat_activity(conn, chat["id"], last_message_at=sent_at)
        logger.info(
            "webhook_message_saved",
            remote_message_id=str(message["id"]),
            sender_type=sender_type,
        )
        return "ok"
