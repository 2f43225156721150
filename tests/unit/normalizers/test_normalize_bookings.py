"""
Unit tests for marketplace booking normalization.
"""

from __future__ import annotations

from datetime import date

import pytest

from roomsync.normalizers.bookings import (
    PLACEHOLDER_GUEST_NAME,
    extract_bookings_list,
    extract_guest_name,
    has_contact_data,
    map_status,
    merge_details,
    normalize_booking,
    normalize_phone,
    remote_booking_id,
)


@pytest.mark.unit
@pytest.mark.parametrize(
    "raw,expected",
    [
        ("8 (916) 123-45-67", "+79161234567"),
        ("7 916 123 45 67", "+79161234567"),
        ("9161234567", "+79161234567"),
        ("+7 916 123-45-67", "+79161234567"),
        ("", None),
        (None, None),
        ("---", None),
    ],
)
def test_normalize_phone(raw: object, expected: object) -> None:
    """Test phone normalization to +7 format."""
    assert normalize_phone(raw) == expected  # type: ignore[arg-type]


@pytest.mark.unit
def test_guest_name_searches_contact_blocks_in_order() -> None:
    """Test that customer.name wins over later blocks."""
    booking = {"customer": {"name": "Ivan"}, "contact": {"name": "Other"}}

    assert extract_guest_name(booking) == "Ivan"


@pytest.mark.unit
def test_guest_name_joins_first_and_last_name() -> None:
    """Test the first_name/last_name fallback."""
    booking = {"guest": {"first_name": "Anna", "last_name": "Petrova"}}

    assert extract_guest_name(booking) == "Anna Petrova"


@pytest.mark.unit
def test_guest_name_placeholder_when_missing() -> None:
    """Test that bookings without any name get the placeholder."""
    assert extract_guest_name({"id": 1}) == PLACEHOLDER_GUEST_NAME
    assert extract_guest_name({"customer": {"name": "   "}}) == PLACEHOLDER_GUEST_NAME


@pytest.mark.unit
def test_has_contact_data() -> None:
    """Test detection of any name, phone or email in the payload."""
    assert has_contact_data({"contact": {"phone": "+79160000000"}})
    assert has_contact_data({"email": "guest@example.com"})
    assert not has_contact_data({"id": 1, "check_in": "2026-11-17"})


@pytest.mark.unit
def test_merge_details_prefers_detail_contact_blocks() -> None:
    """Test that detail contact data overrides the list entry, other fields stay."""
    booking = {"id": 5, "status": "active", "check_in": "2026-11-17"}
    details = {"contact": {"name": "Maria", "phone": "89160000000"}, "status": "paid"}

    merged = merge_details(booking, details)

    assert merged["contact"] == {"name": "Maria", "phone": "89160000000"}
    assert merged["status"] == "active"
    assert merged["check_in"] == "2026-11-17"


@pytest.mark.unit
def test_remote_booking_id_prefers_avito_booking_id() -> None:
    """Test the remote id precedence."""
    assert remote_booking_id({"avito_booking_id": 77, "id": 5}) == "77"
    assert remote_booking_id({"id": 5}) == "5"
    assert remote_booking_id({}) is None


@pytest.mark.unit
@pytest.mark.parametrize(
    "status,expected",
    [("active", "confirmed"), ("PAID", "confirmed"), ("canceled", "cancelled"), ("pending", "pending"), (None, "confirmed"), ("weird", "confirmed")],
)
def test_map_status(status: object, expected: str) -> None:
    """Test marketplace to local status mapping."""
    assert map_status(status) == expected


@pytest.mark.unit
def test_normalize_booking_full_row() -> None:
    """Test conversion of a complete marketplace booking."""
    booking = {
        "avito_booking_id": 987654,
        "check_in": "2026-11-17",
        "check_out": "2026-11-20T12:00:00+03:00",
        "status": "active",
        "guest_count": 3,
        "base_price": 15000,
        "contact": {"name": "Oleg", "phone": "8 916 111 22 33", "email": "oleg@example.com"},
    }

    row = normalize_booking(booking, "prop-1", "avito")

    assert row == {
        "remote_booking_id": "987654",
        "property_id": "prop-1",
        "check_in": date(2026, 11, 17),
        "check_out": date(2026, 11, 20),
        "guest_name": "Oleg",
        "guest_phone": "+79161112233",
        "guest_email": "oleg@example.com",
        "guests_count": 3,
        "total_price": 15000.0,
        "currency": "RUB",
        "status": "confirmed",
        "source": "avito",
    }


@pytest.mark.unit
def test_normalize_booking_rejects_incomplete() -> None:
    """Test that missing id or dates yield None."""
    assert normalize_booking({"check_in": "2026-11-17", "check_out": "2026-11-20"}, "p", "avito") is None
    assert normalize_booking({"id": 1, "check_in": "garbage", "check_out": "2026-11-20"}, "p", "avito") is None


@pytest.mark.unit
def test_extract_bookings_list_shapes() -> None:
    """Test the accepted response envelopes."""
    assert extract_bookings_list([{"id": 1}, "x"]) == [{"id": 1}]
    assert extract_bookings_list({"bookings": [{"id": 2}]}) == [{"id": 2}]
    assert extract_bookings_list({"data": [{"id": 3}]}) == [{"id": 3}]
    assert extract_bookings_list({"result": []}) == []
    assert extract_bookings_list(None) == []
