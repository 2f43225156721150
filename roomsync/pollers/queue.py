"""
Deadline-bounded queue poller.

An external scheduler calls the poller every few seconds (POST
/marketplace/poller/run or ``python -m roomsync.pollers.queue``). Each
invocation claims a page of due queue items and syncs them one by one until
the page is done or the wall-clock deadline has passed. Unclaimed items simply
wait for the next invocation.
"""

import time
from dataclasses import asdict, dataclass
from datetime import timedelta
from typing import Any, Callable, Optional

import structlog
from sqlalchemy.engine import Engine

from roomsync.config import POLLER_DEADLINE_SECONDS, POLLER_PAGE_SIZE
from roomsync.db.readers.queue import get_due_items
from roomsync.db.writers.queue import claim_item, reschedule_failure, reschedule_success
from roomsync.metrics import poller_items, poller_runs
from roomsync.network.retry import DEFAULT_RETRY_POLICY, RetryPolicy
from roomsync.services.sync import SyncEngine, SyncResult
from roomsync.utils.datetime import utc_now

logger = structlog.get_logger(__name__)

DEFAULT_SYNC_INTERVAL = 10
MIN_FAILURE_BACKOFF = 60
# Processing items untouched for this long belong to a dead invocation
STALE_PROCESSING_AFTER = timedelta(minutes=5)


@dataclass
class PollResult:
    processed: int = 0
    success: int = 0
    failed: int = 0
    deadline_hit: bool = False


class QueuePoller:
    """
    Process due sync queue items within a fixed time budget.

    Attributes:
        engine: Database engine holding the queue
        sync_engine: Engine used to sync each claimed integration
        page_size: Maximum items claimed per invocation
        deadline_seconds: Wall-clock budget for one invocation
        policy: Retry policy for failed syncs
        clock: Monotonic clock, injectable for tests
        sleep: Sleep function, injectable for tests

    Example:
        >>> poller = QueuePoller(engine, sync_engine)
        >>> poller.run()
        PollResult(processed=3, success=3, failed=0, deadline_hit=False)
    """

    def __init__(
        self,
        engine: Engine,
        sync_engine: SyncEngine,
        page_size: int = POLLER_PAGE_SIZE,
        deadline_seconds: float = POLLER_DEADLINE_SECONDS,
        policy: RetryPolicy = DEFAULT_RETRY_POLICY,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.engine = engine
        self.sync_engine = sync_engine
        self.page_size = page_size
        self.deadline_seconds = deadline_seconds
        self.policy = policy
        self.clock = clock
        self.sleep = sleep

    def run(self) -> PollResult:
        """
        Run one poller invocation.

        Returns:
            PollResult with counts and whether the deadline cut the page short
        """
        deadline = self.clock() + self.deadline_seconds
        now = utc_now()
        with self.engine.connect() as conn:
            items = get_due_items(
                conn, now, self.page_size, stale_before=now - STALE_PROCESSING_AFTER
            )

        logger.info("poller_started", due_items=len(items), page_size=self.page_size)
        result = PollResult()

        for item in items:
            if self.clock() >= deadline:
                result.deadline_hit = True
                logger.warning(
                    "poller_deadline_hit",
                    processed=result.processed,
                    remaining=len(items) - result.processed,
                )
                break

            with self.engine.begin() as conn:
                claimed = claim_item(conn, item["id"], item["status"], item.get("updated_at"))
            if not claimed:
                logger.info("queue_item_already_claimed", queue_item_id=item["id"])
                continue

            result.processed += 1
            if self._process(item, deadline):
                result.success += 1
            else:
                result.failed += 1

        poller_runs.labels(deadline_hit=str(result.deadline_hit).lower()).inc()
        logger.info("poller_completed", **asdict(result))
        return result

    def _process(self, item: dict[str, Any], deadline: float) -> bool:
        integration_id = item["integration_id"]
        interval = item.get("sync_interval_seconds") or DEFAULT_SYNC_INTERVAL

        sync_result, error = self._sync_with_retry(integration_id, deadline)
        now = utc_now()

        with self.engine.begin() as conn:
            if error is None:
                reschedule_success(conn, item["id"], now + timedelta(seconds=interval))
            else:
                reschedule_failure(
                    conn,
                    item["id"],
                    now + timedelta(seconds=max(interval, MIN_FAILURE_BACKOFF)),
                    error,
                )

        status = "success" if error is None else "failure"
        poller_items.labels(status=status).inc()
        logger.info(
            "queue_item_processed",
            integration_id=str(integration_id),
            status=status,
            requires_reconnect=bool(sync_result and sync_result.requires_reconnect),
            error=error,
        )
        return error is None

    def _sync_with_retry(
        self, integration_id: Any, deadline: float
    ) -> tuple[Optional[SyncResult], Optional[str]]:
        """
        Sync an integration, retrying failed runs within the deadline.

        Returns:
            (last SyncResult or None, error message or None on success)
        """
        attempt = 0
        while True:
            attempt += 1
            sync_result: Optional[SyncResult] = None
            fatal = False
            try:
                sync_result = self.sync_engine.sync(integration_id)
            except Exception as e:
                logger.exception(
                    "queue_item_sync_crashed", integration_id=str(integration_id), attempt=attempt
                )
                error = f"{type(e).__name__}: {e}"
            else:
                if sync_result.success:
                    return sync_result, None
                error = sync_result.error_message or "Sync failed"
                fatal = sync_result.fatal

            if fatal or not self.policy.has_attempts_left(attempt):
                return sync_result, error

            delay = self.policy.delay_for(attempt)
            if self.clock() + delay >= deadline:
                logger.info(
                    "poller_retry_skipped_deadline",
                    integration_id=str(integration_id),
                    attempt=attempt,
                )
                return sync_result, error

            logger.info(
                "queue_item_retry",
                integration_id=str(integration_id),
                attempt=attempt,
                delay=delay,
            )
            self.sleep(delay)


def main() -> None:
    from roomsync.db.engine import engine
    from roomsync.logging_config import setup_logging
    from roomsync.network.auth import TokenManager
    from roomsync.network.client import MarketplaceClient

    setup_logging()
    client = MarketplaceClient()
    sync_engine = SyncEngine(engine, client, TokenManager(engine=engine, client=client))
    QueuePoller(engine, sync_engine).run()


if __name__ == "__main__":
    main()
