"""
Shared fixtures for the roomsync test suite.

Tests run against an in-memory SQLite database; the environment is set up
before any roomsync module reads its configuration.
"""

from __future__ import annotations

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("ALLOWED_ORIGINS", "http://localhost:3000")
os.environ.setdefault("TOKEN_ENCRYPTION_KEY", "test-encryption-key")
os.environ.setdefault("MARKETPLACE_CLIENT_ID", "test-client-id")
os.environ.setdefault("MARKETPLACE_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("LOG_LEVEL", "INFO")

import uuid
from datetime import timedelta
from decimal import Decimal
from typing import Any, Callable, Generator

import pytest
from sqlalchemy import insert
from sqlalchemy.engine import Engine

from roomsync.cache import token_cache
from roomsync.db.engine import engine
from roomsync.models.base import Base
from roomsync.models.bookings import Booking
from roomsync.models.chats import Chat, Message  # noqa: F401
from roomsync.models.integrations import Integration
from roomsync.models.properties import Property
from roomsync.models.rates import PropertyRate
from roomsync.models.sync_logs import SyncLog  # noqa: F401
from roomsync.models.sync_queue import SyncQueueItem  # noqa: F401
from roomsync.utils.crypto import encrypt
from roomsync.utils.datetime import utc_now

ACCOUNT_ID = "1234567"
ITEM_ID = "1234567890"


@pytest.fixture(autouse=True)
def clear_token_cache() -> Generator[None, None, None]:
    """Start every test with an empty process-wide token cache."""
    token_cache.clear()
    yield
    token_cache.clear()


@pytest.fixture
def db_engine() -> Generator[Engine, None, None]:
    """
    Create all tables on the shared in-memory SQLite engine.

    Tables are dropped again after the test so each test sees an empty database.
    """
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)


@pytest.fixture
def make_property(db_engine: Engine) -> Callable[..., uuid.UUID]:
    """Factory inserting a property and returning its id."""

    def _make(**overrides: Any) -> uuid.UUID:
        values = {
            "id": uuid.uuid4(),
            "owner_id": uuid.uuid4(),
            "name": "Sea View Loft",
            "base_price": Decimal("5000"),
            "minimum_booking_days": 2,
            "currency": "RUB",
            "created_at": utc_now(),
        }
        values.update(overrides)
        with db_engine.begin() as conn:
            conn.execute(insert(Property.__table__).values(**values))
        return values["id"]

    return _make


@pytest.fixture
def make_integration(db_engine: Engine) -> Callable[..., uuid.UUID]:
    """Factory inserting an active integration with a valid token and returning its id."""

    def _make(property_id: uuid.UUID, **overrides: Any) -> uuid.UUID:
        now = utc_now()
        values = {
            "id": uuid.uuid4(),
            "property_id": property_id,
            "platform": "avito",
            "remote_account_id": ACCOUNT_ID,
            "remote_item_id": ITEM_ID,
            "access_token_encrypted": encrypt("stored-access-token"),
            "refresh_token_encrypted": encrypt("stored-refresh-token"),
            "token_expires_at": now + timedelta(hours=1),
            "is_active": True,
            "is_enabled": True,
            "sync_interval_seconds": 10,
            "created_at": now,
            "updated_at": now,
        }
        values.update(overrides)
        with db_engine.begin() as conn:
            conn.execute(insert(Integration.__table__).values(**values))
        return values["id"]

    return _make


@pytest.fixture
def make_booking(db_engine: Engine) -> Callable[..., uuid.UUID]:
    """Factory inserting a local booking and returning its id."""

    def _make(property_id: uuid.UUID, check_in: Any, check_out: Any, **overrides: Any) -> uuid.UUID:
        now = utc_now()
        values = {
            "id": uuid.uuid4(),
            "property_id": property_id,
            "check_in": check_in,
            "check_out": check_out,
            "guest_name": "Local Guest",
            "guests_count": 2,
            "currency": "RUB",
            "status": "confirmed",
            "source": "manual",
            "created_at": now,
            "updated_at": now,
        }
        values.update(overrides)
        with db_engine.begin() as conn:
            conn.execute(insert(Booking.__table__).values(**values))
        return values["id"]

    return _make


@pytest.fixture
def make_rate(db_engine: Engine) -> Callable[..., None]:
    """Factory inserting a per-date rate."""

    def _make(property_id: uuid.UUID, day: Any, price: Any = None, min_stay: Any = None) -> None:
        with db_engine.begin() as conn:
            conn.execute(
                insert(PropertyRate.__table__).values(
                    property_id=property_id,
                    date=day,
                    daily_price=Decimal(str(price)) if price is not None else None,
                    min_stay=min_stay,
                )
            )

    return _make
