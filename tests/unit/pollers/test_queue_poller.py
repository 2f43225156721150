"""
Unit tests for the deadline-bounded queue poller.
"""

from __future__ import annotations

import uuid
from datetime import timedelta
from typing import Any, Callable, Iterator
from unittest.mock import Mock

import pytest
from sqlalchemy import select, update
from sqlalchemy.engine import Engine

from roomsync.db.writers.queue import ensure_queue_item
from roomsync.models.sync_queue import SyncQueueItem
from roomsync.network.retry import RetryPolicy
from roomsync.pollers.queue import QueuePoller
from roomsync.services.sync import SyncResult, StepOutcome
from roomsync.utils.datetime import ensure_utc, utc_now


def _clock(*values: float) -> Callable[[], float]:
    """Fake monotonic clock returning the given values, then repeating the last one."""
    it: Iterator[float] = iter(values)
    last = {"value": values[-1]}

    def clock() -> float:
        try:
            last["value"] = next(it)
        except StopIteration:
            pass
        return last["value"]

    return clock


def _ok(integration_id: Any) -> SyncResult:
    return SyncResult(integration_id=integration_id)


def _failed(integration_id: Any, error_class: str = "MarketplaceError") -> SyncResult:
    return SyncResult(
        integration_id=integration_id,
        other_outcomes=[StepOutcome("bookings_fetch", "err", 500, "boom", error_class=error_class)],
        requires_reconnect=error_class == "ReauthRequired",
    )


@pytest.fixture
def queued(
    db_engine: Engine, make_property: Callable[..., Any], make_integration: Callable[..., Any]
) -> Callable[[int], list[uuid.UUID]]:
    """Factory creating n active integrations, each with a due queue item."""

    def _make(n: int) -> list[uuid.UUID]:
        ids = []
        for _ in range(n):
            integration_id = make_integration(make_property())
            with db_engine.begin() as conn:
                ensure_queue_item(conn, integration_id)
            ids.append(integration_id)
        return ids

    return _make


def _queue(db_engine: Engine) -> dict[uuid.UUID, dict[str, Any]]:
    with db_engine.connect() as conn:
        rows = conn.execute(select(SyncQueueItem.__table__)).mappings().all()
    return {r["integration_id"]: dict(r) for r in rows}


@pytest.mark.unit
def test_poller_processes_at_most_page_size(
    db_engine: Engine, queued: Callable[[int], list[uuid.UUID]]
) -> None:
    """Test that one invocation syncs no more than page_size items."""
    queued(3)
    sync_engine = Mock()
    sync_engine.sync.side_effect = _ok

    result = QueuePoller(db_engine, sync_engine, page_size=2, clock=_clock(0.0)).run()

    assert result.processed == 2
    assert result.success == 2
    assert not result.deadline_hit
    assert sync_engine.sync.call_count == 2
    statuses = [row["status"] for row in _queue(db_engine).values()]
    assert statuses == ["pending", "pending", "pending"]


@pytest.mark.unit
def test_poller_stops_at_deadline(
    db_engine: Engine, queued: Callable[[int], list[uuid.UUID]]
) -> None:
    """Test that items left when the deadline passes stay untouched for the next run."""
    queued(3)
    sync_engine = Mock()
    sync_engine.sync.side_effect = _ok

    # start, check before item 1, check before item 2 (past the 9.5s budget)
    poller = QueuePoller(
        db_engine, sync_engine, page_size=10, deadline_seconds=9.5, clock=_clock(0.0, 1.0, 10.0)
    )
    result = poller.run()

    assert result.processed == 1
    assert result.deadline_hit
    untouched = [row for row in _queue(db_engine).values() if row["attempts"] == 0]
    assert len(untouched) == 3
    due_later = [
        row
        for row in _queue(db_engine).values()
        if ensure_utc(row["next_sync_at"]) > utc_now() + timedelta(seconds=5)
    ]
    assert len(due_later) == 1


@pytest.mark.unit
def test_success_reschedules_by_interval(
    db_engine: Engine, queued: Callable[[int], list[uuid.UUID]]
) -> None:
    """Test that a successful item is pending again, due after its sync interval."""
    (integration_id,) = queued(1)
    sync_engine = Mock()
    sync_engine.sync.side_effect = _ok

    QueuePoller(db_engine, sync_engine, clock=_clock(0.0)).run()

    row = _queue(db_engine)[integration_id]
    assert row["status"] == "pending"
    assert row["attempts"] == 0
    assert row["last_error"] is None
    next_sync = ensure_utc(row["next_sync_at"])
    assert utc_now() + timedelta(seconds=5) < next_sync <= utc_now() + timedelta(seconds=11)


@pytest.mark.unit
def test_transient_failure_is_retried_within_invocation(
    db_engine: Engine, queued: Callable[[int], list[uuid.UUID]]
) -> None:
    """Test that a failed run is retried after a backoff when time allows."""
    (integration_id,) = queued(1)
    sync_engine = Mock()
    sync_engine.sync.side_effect = [_failed(integration_id), _ok(integration_id)]
    sleep = Mock()

    result = QueuePoller(
        db_engine,
        sync_engine,
        policy=RetryPolicy(max_attempts=2, base_delay=0.5),
        clock=_clock(0.0),
        sleep=sleep,
    ).run()

    assert result.success == 1
    assert sync_engine.sync.call_count == 2
    sleep.assert_called_once_with(0.5)
    assert _queue(db_engine)[integration_id]["attempts"] == 0


@pytest.mark.unit
def test_fatal_failure_is_not_retried(
    db_engine: Engine, queued: Callable[[int], list[uuid.UUID]]
) -> None:
    """Test that ReauthRequired is rescheduled with backoff and never retried in the same run."""
    (integration_id,) = queued(1)
    sync_engine = Mock()
    sync_engine.sync.return_value = _failed(integration_id, "ReauthRequired")
    sleep = Mock()

    result = QueuePoller(db_engine, sync_engine, clock=_clock(0.0), sleep=sleep).run()

    assert result.failed == 1
    assert sync_engine.sync.call_count == 1
    sleep.assert_not_called()
    row = _queue(db_engine)[integration_id]
    assert row["status"] == "pending"
    assert row["attempts"] == 1
    assert row["last_error"] == "boom"
    assert ensure_utc(row["next_sync_at"]) >= utc_now() + timedelta(seconds=55)


@pytest.mark.unit
def test_retry_skipped_when_it_would_pass_deadline(
    db_engine: Engine, queued: Callable[[int], list[uuid.UUID]]
) -> None:
    """Test that no backoff sleep is started if it would overrun the deadline."""
    (integration_id,) = queued(1)
    sync_engine = Mock()
    sync_engine.sync.return_value = _failed(integration_id)
    sleep = Mock()

    result = QueuePoller(
        db_engine,
        sync_engine,
        deadline_seconds=9.5,
        policy=RetryPolicy(max_attempts=3, base_delay=1.0),
        clock=_clock(0.0, 0.0, 9.0),
        sleep=sleep,
    ).run()

    assert result.failed == 1
    sleep.assert_not_called()


@pytest.mark.unit
def test_sync_exception_counts_as_failure(
    db_engine: Engine, queued: Callable[[int], list[uuid.UUID]]
) -> None:
    """Test that an unexpected exception is recorded on the queue item."""
    (integration_id,) = queued(1)
    sync_engine = Mock()
    sync_engine.sync.side_effect = RuntimeError("db down")

    result = QueuePoller(
        db_engine, sync_engine, policy=RetryPolicy(max_attempts=1), clock=_clock(0.0)
    ).run()

    assert result.failed == 1
    assert _queue(db_engine)[integration_id]["last_error"] == "RuntimeError: db down"


@pytest.mark.unit
def test_inactive_and_claimed_items_are_skipped(
    db_engine: Engine,
    queued: Callable[[int], list[uuid.UUID]],
) -> None:
    """Test that inactive integrations and freshly claimed items are not picked up."""
    from roomsync.models.integrations import Integration

    inactive, claimed = queued(2)
    with db_engine.begin() as conn:
        conn.execute(
            update(Integration.__table__)
            .where(Integration.__table__.c.id == inactive)
            .values(is_active=False)
        )
        conn.execute(
            update(SyncQueueItem.__table__)
            .where(SyncQueueItem.__table__.c.integration_id == claimed)
            .values(status="processing", updated_at=utc_now())
        )
    sync_engine = Mock()

    result = QueuePoller(db_engine, sync_engine, clock=_clock(0.0)).run()

    assert result.processed == 0
    sync_engine.sync.assert_not_called()


@pytest.mark.unit
def test_stale_processing_item_is_reclaimed(
    db_engine: Engine, queued: Callable[[int], list[uuid.UUID]]
) -> None:
    """Test that an item stuck in processing by a dead invocation is picked up again."""
    (integration_id,) = queued(1)
    with db_engine.begin() as conn:
        conn.execute(
            update(SyncQueueItem.__table__)
            .where(SyncQueueItem.__table__.c.integration_id == integration_id)
            .values(status="processing", updated_at=utc_now() - timedelta(minutes=10))
        )
    sync_engine = Mock()
    sync_engine.sync.side_effect = _ok

    result = QueuePoller(db_engine, sync_engine, clock=_clock(0.0)).run()

    assert result.processed == 1
    assert _queue(db_engine)[integration_id]["status"] == "pending"
