"""
Normalize marketplace booking payloads into local booking rows.

Marketplace responses are inconsistent about where contact data lives: the
same booking can carry the guest under ``customer``, ``contact``, ``booker``,
``renter``, ``profile``, ``guest``, ``user`` or at the top level, with either a
single ``name`` or ``first_name``/``last_name``. Extraction walks ordered lists
of small extractor callables and takes the first non-empty value.
"""

import re
from datetime import date
from typing import Any, Callable, Optional

import structlog
from dateutil import parser as dateparser

logger = structlog.get_logger(__name__)

PLACEHOLDER_GUEST_NAME = "Marketplace guest"
DEFAULT_CURRENCY = "RUB"

CONTACT_BLOCKS = ("customer", "contact", "booker", "renter", "profile", "guest", "user")

STATUS_MAP = {
    "active": "confirmed",
    "paid": "confirmed",
    "canceled": "cancelled",
    "cancelled": "cancelled",
    "pending": "pending",
}

Extractor = Callable[[dict[str, Any]], Optional[str]]


def _clean(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _field(block: Optional[str], key: str) -> Extractor:
    """Extractor for booking[block][key], or booking[key] when block is None."""

    def extract(booking: dict[str, Any]) -> Optional[str]:
        source = booking if block is None else booking.get(block)
        if not isinstance(source, dict):
            return None
        return _clean(source.get(key))

    return extract


def _full_name(block: Optional[str]) -> Extractor:
    """Extractor joining first_name and last_name of a block."""

    def extract(booking: dict[str, Any]) -> Optional[str]:
        source = booking if block is None else booking.get(block)
        if not isinstance(source, dict):
            return None
        first = _clean(source.get("first_name")) or ""
        last = _clean(source.get("last_name")) or ""
        return _clean(f"{first} {last}")

    return extract


NAME_EXTRACTORS: list[Extractor] = [
    _field("customer", "name"),
    _field("contact", "name"),
    _field("booker", "name"),
    _field("renter", "name"),
    _field("profile", "name"),
    _field(None, "guest_name"),
    _field("guest", "name"),
    _field("user", "name"),
    _field(None, "name"),
    _full_name("customer"),
    _full_name("contact"),
    _full_name("guest"),
    _full_name("user"),
    _full_name("booker"),
    _full_name("renter"),
    _full_name("profile"),
    _full_name(None),
]

PHONE_EXTRACTORS: list[Extractor] = [
    _field("customer", "phone"),
    _field("customer", "phone_number"),
    _field("customer", "contact_phone"),
    _field("contact", "phone"),
    _field("contact", "phone_number"),
    _field("contact", "contact_phone"),
    _field("booker", "phone"),
    _field("booker", "phone_number"),
    _field("renter", "phone"),
    _field("renter", "phone_number"),
    _field("profile", "phone"),
    _field("profile", "phone_number"),
    _field(None, "guest_phone"),
    _field("guest", "phone"),
    _field("guest", "phone_number"),
    _field("user", "phone"),
    _field("user", "phone_number"),
    _field(None, "phone"),
    _field(None, "phone_number"),
    _field(None, "contact_phone"),
]

EMAIL_EXTRACTORS: list[Extractor] = [
    _field("customer", "email"),
    _field("contact", "email"),
    _field("booker", "email"),
    _field("renter", "email"),
    _field("profile", "email"),
    _field(None, "guest_email"),
    _field("guest", "email"),
    _field("user", "email"),
    _field(None, "email"),
]


def first_match(extractors: list[Extractor], booking: dict[str, Any]) -> Optional[str]:
    """Return the first non-empty value produced by the extractors, in order."""
    for extract in extractors:
        value = extract(booking)
        if value:
            return value
    return None


def normalize_phone(phone: Optional[str]) -> Optional[str]:
    """
    Normalize a phone number to +7 format.

    Keeps digits and "+", rewrites a leading 8 or 7 to +7 and prefixes +7 when
    no country code is present.

    Example:
        >>> normalize_phone("8 (916) 123-45-67")
        '+79161234567'
    """
    if not phone:
        return None
    cleaned = re.sub(r"[^\d+]", "", phone)
    if not cleaned:
        return None
    if cleaned.startswith("8") or cleaned.startswith("7"):
        return "+7" + cleaned[1:]
    if not cleaned.startswith("+"):
        return "+7" + cleaned
    return cleaned


def extract_guest_name(booking: dict[str, Any]) -> str:
    """Guest display name, or the placeholder when no contact field carries one."""
    name = first_match(NAME_EXTRACTORS, booking)
    if name and name != PLACEHOLDER_GUEST_NAME:
        return name
    logger.debug(
        "guest_name_not_found",
        remote_booking_id=remote_booking_id(booking),
        fields=sorted(booking.keys()),
    )
    return PLACEHOLDER_GUEST_NAME


def has_contact_data(booking: dict[str, Any]) -> bool:
    """Return True if any name, phone or email is present anywhere in the payload."""
    return any(
        first_match(chain, booking) for chain in (NAME_EXTRACTORS, PHONE_EXTRACTORS, EMAIL_EXTRACTORS)
    )


def merge_details(booking: dict[str, Any], details: dict[str, Any]) -> dict[str, Any]:
    """
    Merge contact blocks from a booking-details response into a list entry.

    Details win for contact blocks and top-level contact fields; everything
    else keeps the list entry's values.
    """
    merged = dict(booking)
    for key in CONTACT_BLOCKS:
        if details.get(key):
            merged[key] = details[key]
    for key in (
        "name",
        "first_name",
        "last_name",
        "email",
        "phone",
        "phone_number",
        "contact_phone",
        "guest_name",
        "guest_phone",
        "guest_email",
    ):
        if details.get(key) is not None:
            merged[key] = details[key]
    return merged


def remote_booking_id(booking: dict[str, Any]) -> Optional[str]:
    """Marketplace booking id as a string (avito_booking_id preferred over id)."""
    value = booking.get("avito_booking_id") or booking.get("id")
    return str(value) if value not in (None, "") else None


def parse_date(value: Any) -> Optional[date]:
    """Parse an ISO date or datetime string to a date; None if unparsable."""
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return dateparser.isoparse(value.strip()).date()
    except (ValueError, OverflowError):
        return None


def map_status(status: Any) -> str:
    """Map a marketplace booking status to the local vocabulary."""
    if isinstance(status, str):
        return STATUS_MAP.get(status.strip().lower(), "confirmed")
    return "confirmed"


def _guest_count(booking: dict[str, Any]) -> int:
    for key in ("guest_count", "guests_count", "guests"):
        value = booking.get(key)
        try:
            if value is not None and int(value) > 0:
                return int(value)
        except (TypeError, ValueError):
            continue
    return 1


def _price(booking: dict[str, Any]) -> Optional[float]:
    for key in ("base_price", "total_price", "price"):
        value = booking.get(key)
        if value in (None, ""):
            continue
        try:
            return float(value)
        except (TypeError, ValueError):
            continue
    return None


def normalize_booking(
    booking: dict[str, Any], property_id: Any, source: str
) -> Optional[dict[str, Any]]:
    """
    Convert a marketplace booking into a local booking row.

    Args:
        booking: Raw booking from the marketplace (details already merged)
        property_id: Local property the booking belongs to
        source: Marketplace name recorded as the booking source

    Returns:
        Row dict for roomsync.db.writers.bookings.upsert_booking, or None if the
        id or either date is missing
    """
    booking_id = remote_booking_id(booking)
    check_in = parse_date(booking.get("check_in"))
    check_out = parse_date(booking.get("check_out"))
    if not booking_id or check_in is None or check_out is None:
        return None

    return {
        "remote_booking_id": booking_id,
        "property_id": property_id,
        "check_in": check_in,
        "check_out": check_out,
        "guest_name": extract_guest_name(booking),
        "guest_phone": normalize_phone(first_match(PHONE_EXTRACTORS, booking)),
        "guest_email": first_match(EMAIL_EXTRACTORS, booking),
        "guests_count": _guest_count(booking),
        "total_price": _price(booking),
        "currency": _clean(booking.get("currency")) or DEFAULT_CURRENCY,
        "status": map_status(booking.get("status")),
        "source": source,
    }


def extract_bookings_list(payload: Any) -> list[dict[str, Any]]:
    """
    Pull the list of bookings out of a marketplace response body.

    Accepts a bare list or an object with a ``bookings``, ``data`` or ``items`` list.
    """
    if isinstance(payload, list):
        return [b for b in payload if isinstance(b, dict)]
    if isinstance(payload, dict):
        for key in ("bookings", "data", "items"):
            value = payload.get(key)
            if isinstance(value, list):
                return [b for b in value if isinstance(b, dict)]
    return []
