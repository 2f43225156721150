"""
Unit tests for the push/pull sync engine.

The marketplace client is a Mock routed by (method, path suffix); the
database is the in-memory SQLite engine from conftest.
"""

from __future__ import annotations

import uuid
from datetime import timedelta
from typing import Any, Callable
from unittest.mock import Mock

import pytest
from sqlalchemy import select
from sqlalchemy.engine import Engine

from roomsync.cache import TokenCache
from roomsync.errors import Conflict, NotFound, RateLimited
from roomsync.models.bookings import Booking
from roomsync.models.integrations import Integration
from roomsync.models.sync_logs import SyncLog
from roomsync.network.auth import TokenManager
from roomsync.services.sync import SyncEngine
from roomsync.utils.datetime import utc_today

ACCOUNT_PATH = "/accounts/1234567/items/1234567890"
PRICES = ("POST", f"{ACCOUNT_PATH}/prices")
BASE = ("POST", "/items/1234567890/base")
CALENDAR = ("POST", f"/core/v1{ACCOUNT_PATH}/bookings")
PULL = ("GET", f"/realty/v1{ACCOUNT_PATH}/bookings")
INTERVALS = ("POST", "/items/1234567890/intervals")


def _response(status_code: int, body: Any = None) -> Mock:
    res = Mock()
    res.status_code = status_code
    res.headers = {}
    if body is None:
        res.json.side_effect = ValueError("No JSON")
        res.text = ""
    else:
        res.json.return_value = body
        res.text = str(body)
    return res


def _route(client: Mock, routes: dict[tuple[str, str], Any]) -> None:
    """Make client.call answer by (method, path suffix); lists are consumed in order."""

    def call(method: str, path: str, token: str, json: Any = None, params: Any = None) -> Mock:
        for (route_method, suffix), res in routes.items():
            if route_method == method and path.endswith(suffix):
                if isinstance(res, list):
                    return res.pop(0) if len(res) > 1 else res[0]
                return res
        return _response(200, {})

    client.call.side_effect = call


def _calls(client: Mock, method: str, suffix: str) -> list[Any]:
    return [c for c in client.call.call_args_list if c[0][0] == method and c[0][1].endswith(suffix)]


@pytest.fixture
def client() -> Mock:
    """Marketplace client mock."""
    return Mock()


@pytest.fixture
def sync_engine(db_engine: Engine, client: Mock) -> SyncEngine:
    """SyncEngine wired to SQLite and a mock client."""
    manager = TokenManager(
        engine=db_engine,
        client=client,
        cache=TokenCache(),
        client_id="cid",
        client_secret="csecret",
    )
    return SyncEngine(db_engine, client, manager, platform="avito", calendar_source="roomi", dry_run=False)


@pytest.fixture
def setup(
    make_property: Callable[..., Any], make_integration: Callable[..., Any]
) -> tuple[uuid.UUID, uuid.UUID]:
    """Property with an active, well-formed integration."""
    property_id = make_property()
    return property_id, make_integration(property_id)


def _rows(db_engine: Engine, model: Any) -> list[dict[str, Any]]:
    with db_engine.connect() as conn:
        return [dict(r) for r in conn.execute(select(model.__table__)).mappings().all()]


@pytest.mark.unit
def test_full_sync_pushes_and_pulls(
    sync_engine: SyncEngine,
    client: Mock,
    db_engine: Engine,
    setup: tuple[uuid.UUID, uuid.UUID],
    make_booking: Callable[..., Any],
) -> None:
    """Test a clean run: three pushes succeed and remote bookings are upserted."""
    property_id, integration_id = setup
    today = utc_today()
    make_booking(property_id, today + timedelta(days=7), today + timedelta(days=10))
    remote = {
        "bookings": [
            {
                "avito_booking_id": 555,
                "check_in": (today + timedelta(days=20)).isoformat(),
                "check_out": (today + timedelta(days=22)).isoformat(),
                "status": "active",
                "contact": {"name": "Remote Guest", "phone": "89160000000"},
                "base_price": 10000,
            }
        ]
    }
    _route(client, {PULL: _response(200, remote)})

    result = sync_engine.sync(integration_id)

    assert result.success
    assert [o.operation for o in result.push_results] == [
        "price_update",
        "base_params_update",
        "bookings_update",
    ]
    assert result.pull_result is not None
    assert result.pull_result.total == 1
    assert result.pull_result.created == 1

    calendar_body = _calls(client, *CALENDAR)[0][1]["json"]
    assert calendar_body["source"] == "roomi"
    assert calendar_body["bookings"] == [
        {
            "date_start": (today + timedelta(days=7)).isoformat(),
            "date_end": (today + timedelta(days=10)).isoformat(),
            "type": "booking",
        }
    ]
    base_body = _calls(client, *BASE)[0][1]["json"]
    assert base_body == {"night_price": 5000, "minimal_duration": 2}

    bookings = {b["remote_booking_id"]: b for b in _rows(db_engine, Booking)}
    assert bookings["555"]["guest_name"] == "Remote Guest"
    assert bookings["555"]["guest_phone"] == "+79160000000"
    assert bookings["555"]["source"] == "avito"

    actions = {log["action"] for log in _rows(db_engine, SyncLog)}
    assert {"sync_calendar_bookings", "sync_bookings"} <= actions
    assert "sync" not in actions

    integration = _rows(db_engine, Integration)[0]
    assert integration["last_sync_at"] is not None


@pytest.mark.unit
def test_second_pull_reports_unchanged(
    sync_engine: SyncEngine, client: Mock, setup: tuple[uuid.UUID, uuid.UUID]
) -> None:
    """Test that pulling identical remote data twice changes nothing."""
    _, integration_id = setup
    today = utc_today()
    remote = [
        {
            "id": 42,
            "check_in": (today + timedelta(days=3)).isoformat(),
            "check_out": (today + timedelta(days=5)).isoformat(),
            "status": "paid",
            "guest_name": "Same Guest",
        }
    ]
    _route(client, {PULL: _response(200, remote)})

    first = sync_engine.sync(integration_id)
    second = sync_engine.sync(integration_id)

    assert first.pull_result is not None and first.pull_result.created == 1
    assert second.pull_result is not None and second.pull_result.unchanged == 1
    assert second.pull_result.created == 0


@pytest.mark.unit
def test_booking_without_contact_fetches_details(
    sync_engine: SyncEngine, client: Mock, db_engine: Engine, setup: tuple[uuid.UUID, uuid.UUID]
) -> None:
    """Test that a list entry without contact data is enriched from the details endpoint."""
    _, integration_id = setup
    today = utc_today()
    remote = [
        {
            "id": 77,
            "check_in": (today + timedelta(days=3)).isoformat(),
            "check_out": (today + timedelta(days=5)).isoformat(),
        }
    ]
    _route(
        client,
        {
            PULL: _response(200, remote),
            ("GET", "/bookings/77"): _response(200, {"booking": {"customer": {"name": "Detailed"}}}),
        },
    )

    sync_engine.sync(integration_id)

    booking = _rows(db_engine, Booking)[0]
    assert booking["guest_name"] == "Detailed"


@pytest.mark.unit
def test_pending_booking_is_cancelled_remotely(
    sync_engine: SyncEngine, client: Mock, setup: tuple[uuid.UUID, uuid.UUID]
) -> None:
    """Test that an unpaid pending booking is saved and a cancel is requested."""
    _, integration_id = setup
    today = utc_today()
    remote = [
        {
            "id": 88,
            "check_in": (today + timedelta(days=3)).isoformat(),
            "check_out": (today + timedelta(days=5)).isoformat(),
            "status": "pending",
            "guest_name": "Unpaid",
        }
    ]
    _route(client, {PULL: _response(200, remote)})

    result = sync_engine.sync(integration_id)

    assert result.pull_result is not None
    assert result.pull_result.cancelled == 1
    assert len(_calls(client, "POST", "/bookings/88/cancel")) == 1


@pytest.mark.unit
def test_pull_404_means_no_bookings(
    sync_engine: SyncEngine, client: Mock, setup: tuple[uuid.UUID, uuid.UUID]
) -> None:
    """Test that a 404 on the bookings list is an empty, successful pull."""
    _, integration_id = setup
    _route(client, {PULL: _response(404)})

    result = sync_engine.sync(integration_id)

    assert result.success
    assert result.pull_result is not None
    assert result.pull_result.total == 0


@pytest.mark.unit
def test_price_404_is_a_warning(
    sync_engine: SyncEngine, client: Mock, db_engine: Engine, setup: tuple[uuid.UUID, uuid.UUID]
) -> None:
    """Test that a missing listing on the price endpoint does not stop the pull."""
    _, integration_id = setup
    today = utc_today()
    remote = [
        {
            "avito_booking_id": 700 + n,
            "check_in": (today + timedelta(days=30 + 5 * n)).isoformat(),
            "check_out": (today + timedelta(days=32 + 5 * n)).isoformat(),
            "status": "active",
            "contact": {"name": f"Guest {n}"},
            "base_price": 8000,
        }
        for n in range(2)
    ]
    _route(
        client,
        {PRICES: _response(404, {"message": "item not found"}), PULL: _response(200, {"bookings": remote})},
    )

    result = sync_engine.sync(integration_id)

    assert result.success
    assert [w["operation"] for w in result.warnings] == ["price_update"]
    assert result.warnings[0]["error_class"] == NotFound.__name__
    assert result.warning_message is not None and "item not found" in result.warning_message
    assert result.pull_result is not None
    assert result.pull_result.created == 2
    assert len(_rows(db_engine, Booking)) == 2


@pytest.mark.unit
def test_step_failure_does_not_stop_other_steps(
    sync_engine: SyncEngine, client: Mock, db_engine: Engine, setup: tuple[uuid.UUID, uuid.UUID]
) -> None:
    """Test that an error in one push still lets the others and the pull run."""
    _, integration_id = setup
    _route(client, {BASE: _response(400, {"error": {"message": "bad price"}}), PULL: _response(200, [])})

    result = sync_engine.sync(integration_id)

    assert not result.success
    assert not result.fatal
    assert [e["operation"] for e in result.errors] == ["base_params_update"]
    assert len(_calls(client, *CALENDAR)) == 1
    assert len(_calls(client, *PULL)) == 1
    logs = [log for log in _rows(db_engine, SyncLog) if log["action"] == "sync"]
    assert len(logs) == 1
    assert logs[0]["status"] == "error"
    assert "bad price" in logs[0]["error"]


@pytest.mark.unit
def test_rate_limited_push_is_a_retryable_error(
    sync_engine: SyncEngine, client: Mock, setup: tuple[uuid.UUID, uuid.UUID]
) -> None:
    """Test that a 429 left over after client retries is an error but not a fatal one."""
    _, integration_id = setup
    _route(client, {BASE: _response(429, {"message": "slow down"}), PULL: _response(200, [])})

    result = sync_engine.sync(integration_id)

    assert not result.success
    assert not result.fatal
    assert [(e["operation"], e["error_class"]) for e in result.errors] == [
        ("base_params_update", RateLimited.__name__)
    ]


@pytest.mark.unit
def test_calendar_conflict_is_warning_without_delete(
    sync_engine: SyncEngine, client: Mock, setup: tuple[uuid.UUID, uuid.UUID]
) -> None:
    """Test that a 409 on the calendar push is only a warning during a regular sync."""
    _, integration_id = setup
    _route(client, {CALENDAR: _response(409, {"message": "paid booking"}), PULL: _response(200, [])})

    result = sync_engine.sync(integration_id)

    assert result.success
    assert [w["operation"] for w in result.warnings] == ["bookings_update"]
    assert result.warnings[0]["error_class"] == Conflict.__name__


@pytest.mark.unit
def test_calendar_conflict_is_error_when_reopening_deleted_dates(
    sync_engine: SyncEngine,
    client: Mock,
    setup: tuple[uuid.UUID, uuid.UUID],
    make_booking: Callable[..., Any],
) -> None:
    """Test that a 409 while excluding a deleted booking fails the run."""
    property_id, integration_id = setup
    today = utc_today()
    deleted = make_booking(property_id, today + timedelta(days=1), today + timedelta(days=3))
    _route(client, {CALENDAR: _response(409, {"message": "paid booking"}), PULL: _response(200, [])})

    result = sync_engine.sync(integration_id, exclude_booking_id=deleted)

    assert not result.success
    assert [e["operation"] for e in result.errors] == ["bookings_update"]
    body = _calls(client, *CALENDAR)[0][1]["json"]
    assert body["bookings"] == []


@pytest.mark.unit
def test_excluded_booking_reopens_all_dates(
    sync_engine: SyncEngine,
    client: Mock,
    db_engine: Engine,
    setup: tuple[uuid.UUID, uuid.UUID],
    make_booking: Callable[..., Any],
) -> None:
    """Test that an empty calendar is still pushed when the last booking is deleted."""
    property_id, integration_id = setup
    today = utc_today()
    deleted = make_booking(property_id, today + timedelta(days=1), today + timedelta(days=3))
    _route(client, {PULL: _response(200, [])})

    result = sync_engine.sync(integration_id, exclude_booking_id=deleted)

    assert result.success
    assert _calls(client, *CALENDAR)[0][1]["json"]["bookings"] == []
    actions = [log["action"] for log in _rows(db_engine, SyncLog)]
    assert "open_all_dates_after_delete" in actions


@pytest.mark.unit
def test_401_triggers_single_refresh_and_retry(
    sync_engine: SyncEngine, client: Mock, setup: tuple[uuid.UUID, uuid.UUID]
) -> None:
    """Test that a rejected token is refreshed once and the call repeated with the new token."""
    _, integration_id = setup
    _route(client, {PRICES: [_response(401), _response(200, {})], PULL: _response(200, [])})
    client.post_token.return_value = _response(200, {"access_token": "refreshed", "expires_in": 3600})

    result = sync_engine.sync(integration_id)

    assert result.success
    assert client.post_token.call_count == 1
    price_calls = _calls(client, *PRICES)
    assert [c[0][2] for c in price_calls] == ["stored-access-token", "refreshed"]
    # Later steps reuse the refreshed token
    assert _calls(client, *BASE)[0][0][2] == "refreshed"


@pytest.mark.unit
def test_failed_refresh_requires_reconnect_and_stops_run(
    sync_engine: SyncEngine, client: Mock, setup: tuple[uuid.UUID, uuid.UUID]
) -> None:
    """Test that a refresh failure ends the run with requires_reconnect and no further calls."""
    _, integration_id = setup
    _route(client, {PRICES: _response(401)})
    client.post_token.return_value = _response(400, {"error": "invalid_grant"})

    result = sync_engine.sync(integration_id)

    assert not result.success
    assert result.requires_reconnect
    assert result.fatal
    assert len(_calls(client, *BASE)) == 0
    assert len(_calls(client, *PULL)) == 0
    assert result.to_dict()["requires_reconnect"] is True


@pytest.mark.unit
def test_expired_token_without_refresh_token_requires_reconnect(
    sync_engine: SyncEngine,
    client: Mock,
    make_property: Callable[..., Any],
    make_integration: Callable[..., Any],
) -> None:
    """Test that an integration whose token cannot be renewed never calls the marketplace."""
    from roomsync.utils.datetime import utc_now

    integration_id = make_integration(
        make_property(),
        token_expires_at=utc_now() - timedelta(hours=1),
        refresh_token_encrypted=None,
    )

    result = sync_engine.sync(integration_id)

    assert result.requires_reconnect
    assert [e["operation"] for e in result.errors] == ["token"]
    client.call.assert_not_called()


@pytest.mark.unit
@pytest.mark.parametrize(
    "account_id,item_id",
    [("12", "1234567890"), ("1234567", "123"), (None, "1234567890"), ("1234567", None)],
)
def test_invalid_remote_ids_fail_validation(
    sync_engine: SyncEngine,
    client: Mock,
    make_property: Callable[..., Any],
    make_integration: Callable[..., Any],
    account_id: Any,
    item_id: Any,
) -> None:
    """Test that malformed account or item ids fail fast without any API call."""
    integration_id = make_integration(
        make_property(), remote_account_id=account_id, remote_item_id=item_id
    )

    result = sync_engine.sync(integration_id)

    assert not result.success
    assert result.fatal
    assert [e["operation"] for e in result.errors] == ["validate"]
    client.call.assert_not_called()


@pytest.mark.unit
def test_missing_base_price_warns(
    sync_engine: SyncEngine,
    client: Mock,
    make_property: Callable[..., Any],
    make_integration: Callable[..., Any],
) -> None:
    """Test that a property without any price skips both price pushes with warnings."""
    integration_id = make_integration(make_property(base_price=None))
    _route(client, {PULL: _response(200, [])})

    result = sync_engine.sync(integration_id)

    assert result.success
    assert {w["operation"] for w in result.warnings} == {"price_update", "base_params_update"}
    assert len(_calls(client, *PRICES)) == 0
    assert len(_calls(client, *BASE)) == 0


@pytest.mark.unit
def test_dry_run_skips_remote_writes(
    db_engine: Engine, client: Mock, setup: tuple[uuid.UUID, uuid.UUID]
) -> None:
    """Test that dry_run performs reads only."""
    _, integration_id = setup
    manager = TokenManager(engine=db_engine, client=client, cache=TokenCache())
    engine = SyncEngine(db_engine, client, manager, dry_run=True)
    _route(client, {PULL: _response(200, [])})

    result = engine.sync(integration_id)

    assert result.success
    assert all(c[0][0] == "GET" for c in client.call.call_args_list)


@pytest.mark.unit
def test_validate_item(
    sync_engine: SyncEngine,
    client: Mock,
    make_property: Callable[..., Any],
    make_integration: Callable[..., Any],
) -> None:
    """Test listing id validation: format, existence and binding to another property."""
    other_property = make_property()
    make_integration(other_property, remote_item_id="5555555555")
    integration_id = make_integration(make_property(), remote_item_id="1234567890")

    assert sync_engine.validate_item(integration_id, "12ab").reason == "invalid_format"
    client.call.assert_not_called()

    _route(client, {("GET", "/items/4444444444/bookings"): _response(404)})
    assert sync_engine.validate_item(integration_id, "4444444444").reason == "not_found"

    _route(client, {("GET", "/bookings"): _response(200, [])})
    in_use = sync_engine.validate_item(integration_id, "5555555555")
    assert not in_use.available
    assert in_use.reason == "in_use"

    free = sync_engine.validate_item(integration_id, "6666666666")
    assert free.available
    assert free.reason is None


@pytest.mark.unit
def test_close_availability(
    sync_engine: SyncEngine, client: Mock, db_engine: Engine, setup: tuple[uuid.UUID, uuid.UUID]
) -> None:
    """Test that closing availability posts an empty interval list and logs it."""
    _, integration_id = setup
    _route(client, {INTERVALS: _response(200, {})})

    outcome = sync_engine.close_availability(integration_id)

    assert outcome.kind == "ok"
    body = _calls(client, *INTERVALS)[0][1]["json"]
    assert body == {"item_id": 1234567890, "intervals": []}
    logs = [log for log in _rows(db_engine, SyncLog) if log["action"] == "close_availability"]
    assert logs[0]["status"] == "success"
