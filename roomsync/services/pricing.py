"""
Price computation for the marketplace price push.

Local prices carry an optional per-integration markup. Per-date rates are
collapsed into contiguous ranges so the marketplace receives one entry per run
of identical (price, minimum stay) days instead of one per night.
"""

from datetime import date, timedelta
from decimal import ROUND_FLOOR, Decimal
from typing import Any, Optional

DEFAULT_RANGE_DAYS = 90
MIN_PRICE = 1


def _round_half_up(value: Decimal) -> int:
    return int((value + Decimal("0.5")).to_integral_value(rounding=ROUND_FLOOR))


def apply_markup(base: Any, markup_value: Any = None, markup_type: Optional[str] = None) -> int:
    """
    Apply an integration markup to a base nightly price.

    Without an explicit markup_type the sign decides: a negative markup is a
    fixed amount added to the base, zero or positive is a percentage. Results
    are rounded half-up and floored at 1.

    Args:
        base: Base nightly price
        markup_value: Markup amount or percentage
        markup_type: "fixed", "percentage" or None

    Returns:
        Marked-up whole price

    Example:
        >>> apply_markup(1000, -200)
        800
        >>> apply_markup(1000, 20)
        1200
    """
    price = Decimal(str(base))
    markup = Decimal(str(markup_value)) if markup_value not in (None, "") else Decimal(0)

    if markup_type == "fixed" or (markup_type is None and markup < 0):
        result = _round_half_up(price + markup)
    else:
        result = _round_half_up(price * (1 + markup / 100))

    return max(result, MIN_PRICE)


def resolve_min_stay(rate_min_stay: Optional[int], property_min_days: Optional[int]) -> int:
    """Minimum stay for a date: the rate's, else the property's, else 1."""
    for value in (rate_min_stay, property_min_days):
        if value is not None and int(value) > 0:
            return int(value)
    return 1


def build_price_ranges(
    rates: list[dict[str, Any]],
    prop: dict[str, Any],
    integration: dict[str, Any],
    today: date,
) -> list[dict[str, Any]]:
    """
    Build the price push payload entries for a property.

    Dates before today are ignored. Consecutive calendar days with identical
    (price, minimal_duration) share one range; a gap of one or more days always
    starts a new range. With no usable rate, a single range from today to
    today + 90 days uses the property's base price.

    Args:
        rates: PropertyRate rows ({date, daily_price, min_stay}), any order
        prop: Property row (base_price, minimum_booking_days)
        integration: Integration row (markup_type, markup_value)
        today: Current date

    Returns:
        List of {date_from, date_to, night_price, minimal_duration}; empty if
        the property has no price at all
    """
    base_price = prop.get("base_price")
    property_min_days = prop.get("minimum_booking_days")
    markup_value = integration.get("markup_value")
    markup_type = integration.get("markup_type")

    days: list[tuple[date, int, int]] = []
    for rate in sorted(rates, key=lambda r: r["date"]):
        if rate["date"] < today:
            continue
        nightly = rate.get("daily_price")
        if nightly is None:
            nightly = base_price
        if nightly is None:
            continue
        days.append(
            (
                rate["date"],
                apply_markup(nightly, markup_value, markup_type),
                resolve_min_stay(rate.get("min_stay"), property_min_days),
            )
        )

    if not days:
        if base_price is None:
            return []
        return [
            {
                "date_from": today.isoformat(),
                "date_to": (today + timedelta(days=DEFAULT_RANGE_DAYS)).isoformat(),
                "night_price": apply_markup(base_price, markup_value, markup_type),
                "minimal_duration": resolve_min_stay(None, property_min_days),
            }
        ]

    ranges: list[dict[str, Any]] = []
    start, prev, price, min_stay = days[0][0], days[0][0], days[0][1], days[0][2]
    for day, day_price, day_min in days[1:]:
        if day == prev + timedelta(days=1) and day_price == price and day_min == min_stay:
            prev = day
            continue
        ranges.append(_range(start, prev, price, min_stay))
        start, prev, price, min_stay = day, day, day_price, day_min
    ranges.append(_range(start, prev, price, min_stay))
    return ranges


def _range(start: date, end: date, price: int, min_stay: int) -> dict[str, Any]:
    return {
        "date_from": start.isoformat(),
        "date_to": end.isoformat(),
        "night_price": price,
        "minimal_duration": min_stay,
    }


def build_calendar_blocks(bookings: list[dict[str, Any]], today: date) -> list[dict[str, str]]:
    """
    Build the availability push payload from local bookings.

    Only bookings still occupying a night from today on are included; a stay
    that started in the past is clipped to start today. date_end is the
    check-out date, which is not blocked.

    Args:
        bookings: Confirmed booking rows
        today: Current date

    Returns:
        Sorted list of {date_start, date_end, type}
    """
    blocks = []
    for booking in bookings:
        if booking["check_out"] <= today:
            continue
        start = max(booking["check_in"], today)
        blocks.append(
            {
                "date_start": start.isoformat(),
                "date_end": booking["check_out"].isoformat(),
                "type": "booking",
            }
        )
    return sorted(blocks, key=lambda b: (b["date_start"], b["date_end"]))
