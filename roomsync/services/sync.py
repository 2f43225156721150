"""
Integration-level sync orchestrator for the marketplace.

One sync run pushes prices, base parameters and the availability calendar to
the marketplace, then pulls marketplace bookings back into the local bookings
table. Sub-steps are independent: each produces a tagged StepOutcome and a
failure in one never stops the next. Only configuration validation and a lost
authorization stop a run early.
"""

import re
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Optional

import requests
import structlog
from dateutil.relativedelta import relativedelta
from sqlalchemy.engine import Engine

from roomsync.config import CALENDAR_SOURCE_NAME, DRY_RUN, MARKETPLACE_PLATFORM
from roomsync.db.readers.bookings import get_blocking_bookings
from roomsync.db.readers.integrations import find_item_in_use, get_integration
from roomsync.db.readers.properties import get_property
from roomsync.db.readers.rates import get_future_rates
from roomsync.db.writers.bookings import upsert_booking
from roomsync.db.writers.integrations import update_last_sync
from roomsync.db.writers.sync_logs import write_sync_log
from roomsync.errors import (
    FATAL_ERROR_CLASSES,
    Conflict,
    MarketplaceError,
    NotFound,
    RateLimited,
    ReauthRequired,
    ValidationError,
)
from roomsync.metrics import bookings_pulled, sync_duration, sync_runs, sync_steps
from roomsync.network.auth import TokenManager
from roomsync.network.client import MarketplaceClient, error_message, response_json
from roomsync.normalizers.bookings import (
    extract_bookings_list,
    has_contact_data,
    merge_details,
    normalize_booking,
    remote_booking_id,
)
from roomsync.services.pricing import apply_markup, build_calendar_blocks, build_price_ranges
from roomsync.utils.datetime import utc_today

logger = structlog.get_logger(__name__)

ACCOUNT_ID_PATTERN = re.compile(r"^[0-9]{6,8}$")
ITEM_ID_PATTERN = re.compile(r"^[0-9]{10,12}$")

MAX_PULL_LIMIT = 500

OK, WARN, ERR = "ok", "warn", "err"

_STATUS_ERROR_CLASSES = {
    cls.status_code: cls.__name__ for cls in (NotFound, Conflict, RateLimited)
}


@dataclass
class StepOutcome:
    """Tagged result of a single sync sub-step."""

    operation: str
    kind: str
    status_code: Optional[int] = None
    message: Optional[str] = None
    details: Any = None
    error_class: Optional[str] = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "status_code": self.status_code,
            "message": self.message,
            "details": self.details,
            "error_class": self.error_class,
        }


@dataclass
class PullResult:
    total: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    failed: int = 0
    cancelled: int = 0


@dataclass
class SyncResult:
    """
    Aggregate result of one sync run.

    success is True exactly when no sub-step produced an Err outcome.
    """

    integration_id: Any
    push_results: list[StepOutcome] = field(default_factory=list)
    pull_result: Optional[PullResult] = None
    other_outcomes: list[StepOutcome] = field(default_factory=list)
    requires_reconnect: bool = False

    @property
    def outcomes(self) -> list[StepOutcome]:
        return [*self.other_outcomes, *self.push_results]

    @property
    def errors(self) -> list[dict[str, Any]]:
        return [o.as_dict() for o in self.outcomes if o.kind == ERR]

    @property
    def warnings(self) -> list[dict[str, Any]]:
        return [o.as_dict() for o in self.outcomes if o.kind == WARN]

    @property
    def success(self) -> bool:
        return not any(o.kind == ERR for o in self.outcomes)

    @property
    def fatal(self) -> bool:
        """True when the failure cannot be fixed by retrying within this invocation."""
        return any(o.error_class in FATAL_ERROR_CLASSES for o in self.outcomes)

    @property
    def error_message(self) -> Optional[str]:
        messages = [e["message"] for e in self.errors if e["message"]]
        return "; ".join(messages) if messages else None

    @property
    def warning_message(self) -> Optional[str]:
        messages = [w["message"] for w in self.warnings if w["message"]]
        return "; ".join(messages) if messages else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "integration_id": str(self.integration_id),
            "success": self.success,
            "push_results": [{"kind": o.kind, **o.as_dict()} for o in self.push_results],
            "pull_result": asdict(self.pull_result) if self.pull_result else None,
            "errors": self.errors,
            "warnings": self.warnings,
            "error_message": self.error_message,
            "warning_message": self.warning_message,
            "requires_reconnect": self.requires_reconnect,
        }


@dataclass
class ItemValidation:
    available: bool
    reason: Optional[str] = None
    status_code: Optional[int] = None


@dataclass
class _SyncContext:
    integration: dict[str, Any]
    prop: dict[str, Any]
    token: str

    @property
    def integration_id(self) -> Any:
        return self.integration["id"]

    @property
    def account_id(self) -> str:
        return str(self.integration["remote_account_id"])

    @property
    def item_id(self) -> str:
        return str(self.integration["remote_item_id"])


def validate_remote_ids(account_id: Any, item_id: Any) -> None:
    """
    Check the marketplace identifiers of an integration.

    Raises:
        ValidationError: If either identifier is missing or malformed
    """
    if not account_id or not ACCOUNT_ID_PATTERN.match(str(account_id)):
        raise ValidationError(f"Invalid marketplace account id: {account_id!r}")
    if not item_id or not ITEM_ID_PATTERN.match(str(item_id)):
        raise ValidationError(f"Invalid marketplace item id: {item_id!r}")


def classify_response(
    operation: str,
    res: requests.Response,
    on_not_found: str = WARN,
    on_conflict: str = ERR,
) -> StepOutcome:
    """
    Turn a marketplace response into a StepOutcome.

    Args:
        operation: Sub-step name
        res: Final response from the client
        on_not_found: Outcome kind for HTTP 404
        on_conflict: Outcome kind for HTTP 409

    Returns:
        StepOutcome for the response
    """
    status = res.status_code
    if 200 <= status < 300:
        return StepOutcome(operation, OK, status_code=status)

    kind = ERR
    if status == 404:
        kind = on_not_found
    elif status == 409:
        kind = on_conflict

    return StepOutcome(
        operation,
        kind,
        status_code=status,
        message=f"{operation} failed ({status}): {error_message(res)}",
        error_class=_STATUS_ERROR_CLASSES.get(status, MarketplaceError.__name__),
    )


class SyncEngine:
    """
    Push/pull synchronization for one integration at a time.

    Attributes:
        engine: Database engine
        client: Marketplace HTTP client
        token_manager: Token source for authenticated calls
        platform: Marketplace name, recorded as source on pulled bookings
        calendar_source: Name announced to the marketplace on calendar pushes
        dry_run: Skip remote writes, log what would have been sent

    Example:
        >>> sync_engine = SyncEngine(engine, MarketplaceClient(), token_manager)
        >>> result = sync_engine.sync(integration_id)
        >>> result.success, result.pull_result.created
        (True, 2)
    """

    def __init__(
        self,
        engine: Engine,
        client: MarketplaceClient,
        token_manager: TokenManager,
        platform: str = MARKETPLACE_PLATFORM,
        calendar_source: str = CALENDAR_SOURCE_NAME,
        dry_run: bool = DRY_RUN,
    ):
        self.engine = engine
        self.client = client
        self.token_manager = token_manager
        self.platform = platform
        self.calendar_source = calendar_source
        self.dry_run = dry_run

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def sync(
        self,
        integration_id: Any,
        exclude_booking_id: Any = None,
        pull_limit: Optional[int] = None,
        pull_offset: Optional[int] = None,
    ) -> SyncResult:
        """
        Run a full push/pull sync for one integration.

        Args:
            integration_id: Integration UUID
            exclude_booking_id: Local booking being deleted; left out of the calendar push
            pull_limit: Page size for the pull (capped at 500)
            pull_offset: Offset for the pull

        Returns:
            SyncResult with per-step outcomes and pull counts
        """
        logger.info("sync_started", integration_id=str(integration_id))

        with sync_duration.time():
            result = self._sync(integration_id, exclude_booking_id, pull_limit, pull_offset)

        if result.success:
            status = "success"
        elif result.requires_reconnect:
            status = "reauth_required"
        elif result.fatal:
            status = "invalid"
        else:
            status = "failure"
        sync_runs.labels(status=status).inc()

        logger.info(
            "sync_completed",
            integration_id=str(integration_id),
            success=result.success,
            errors=len(result.errors),
            warnings=len(result.warnings),
            requires_reconnect=result.requires_reconnect,
        )
        return result

    def close_availability(self, integration_id: Any) -> StepOutcome:
        """
        Close every date of the listing on the marketplace.

        Used before a property is removed, so no new booking can land on a
        listing nobody manages any more.

        Args:
            integration_id: Integration UUID

        Returns:
            StepOutcome of the intervals call

        Raises:
            ValidationError: If the integration is unknown or misconfigured
            ReauthRequired: If no valid token can be obtained
        """
        ctx = self._load_context(integration_id)
        operation = "close_availability"

        outcome = self._run_step(
            operation,
            lambda: classify_response(
                operation,
                self._call(
                    ctx,
                    "POST",
                    f"/realty/v1/items/{ctx.item_id}/intervals",
                    json={"item_id": int(ctx.item_id), "intervals": []},
                ),
                on_not_found=ERR,
            ),
            ctx,
        )

        with self.engine.begin() as conn:
            write_sync_log(
                conn,
                action=operation,
                status="success" if outcome.kind == OK else "error",
                integration_id=ctx.integration_id,
                property_id=ctx.integration["property_id"],
                error=outcome.message,
                details={"item_id": ctx.item_id},
            )
        return outcome

    def validate_item(
        self, integration_id: Any, item_id: str, property_id: Any = None
    ) -> ItemValidation:
        """
        Check whether a listing id can be bound to an integration.

        Args:
            integration_id: Integration whose token is used for the probe
            item_id: Candidate marketplace listing id
            property_id: Property the listing is meant for

        Returns:
            ItemValidation with reason invalid_format, in_use, not_found or error
        """
        if not item_id or not ITEM_ID_PATTERN.match(str(item_id)):
            return ItemValidation(available=False, reason="invalid_format")

        with self.engine.connect() as conn:
            integration = get_integration(conn, integration_id)
        if integration is None:
            raise ValidationError(f"Integration {integration_id} not found")
        account_id = integration.get("remote_account_id")
        if not account_id or not ACCOUNT_ID_PATTERN.match(str(account_id)):
            raise ValidationError(f"Invalid marketplace account id: {account_id!r}")

        ctx = _SyncContext(
            integration=integration,
            prop={},
            token=self.token_manager.get_valid_token(integration_id),
        )
        today = utc_today()
        res = self._call(
            ctx,
            "GET",
            f"/realty/v1/accounts/{account_id}/items/{item_id}/bookings",
            params={
                "date_start": today.isoformat(),
                "date_end": (today + relativedelta(days=1)).isoformat(),
                "skip_error": "true",
            },
        )

        if res.status_code == 404:
            return ItemValidation(available=False, reason="not_found", status_code=404)
        if not 200 <= res.status_code < 300:
            return ItemValidation(available=False, reason="error", status_code=res.status_code)

        with self.engine.connect() as conn:
            other = find_item_in_use(
                conn, str(item_id), exclude_property_id=property_id or integration["property_id"]
            )
        if other is not None:
            return ItemValidation(available=False, reason="in_use", status_code=res.status_code)
        return ItemValidation(available=True, status_code=res.status_code)

    # ------------------------------------------------------------------
    # Run orchestration
    # ------------------------------------------------------------------

    def _sync(
        self,
        integration_id: Any,
        exclude_booking_id: Any,
        pull_limit: Optional[int],
        pull_offset: Optional[int],
    ) -> SyncResult:
        result = SyncResult(integration_id=integration_id)

        try:
            ctx = self._load_context(integration_id)
        except ValidationError as e:
            logger.warning("sync_validation_failed", integration_id=str(integration_id), error=str(e))
            result.other_outcomes.append(
                StepOutcome("validate", ERR, message=str(e), error_class=ValidationError.__name__)
            )
            return result
        except ReauthRequired as e:
            logger.warning("sync_reauth_required", integration_id=str(integration_id), error=str(e))
            result.requires_reconnect = True
            result.other_outcomes.append(
                StepOutcome(
                    "token", ERR, status_code=401, message=str(e), error_class=ReauthRequired.__name__
                )
            )
            self._finish(result, None)
            return result

        steps: list[tuple[str, Callable[[], StepOutcome]]] = [
            ("price_update", lambda: self._push_prices(ctx)),
            ("base_params_update", lambda: self._push_base_params(ctx)),
            ("bookings_update", lambda: self._push_calendar(ctx, exclude_booking_id)),
        ]
        for operation, step in steps:
            outcome = self._run_step(operation, step, ctx)
            result.push_results.append(outcome)
            if outcome.error_class == ReauthRequired.__name__:
                result.requires_reconnect = True
                break

        if not result.requires_reconnect:
            pull = PullResult()
            outcome = self._run_step(
                "bookings_fetch", lambda: self._pull(ctx, pull, pull_limit, pull_offset), ctx
            )
            result.pull_result = pull
            if outcome.kind != OK:
                result.other_outcomes.append(outcome)
            if outcome.error_class == ReauthRequired.__name__:
                result.requires_reconnect = True

        self._finish(result, ctx)
        return result

    def _load_context(self, integration_id: Any) -> _SyncContext:
        with self.engine.connect() as conn:
            integration = get_integration(conn, integration_id)
            prop = get_property(conn, integration["property_id"]) if integration else None

        if integration is None:
            raise ValidationError(f"Integration {integration_id} not found")
        if not integration.get("is_active"):
            raise ValidationError(f"Integration {integration_id} is not active")
        if prop is None:
            raise ValidationError(f"Property for integration {integration_id} not found")
        validate_remote_ids(integration.get("remote_account_id"), integration.get("remote_item_id"))

        token = self.token_manager.get_valid_token(integration_id)
        return _SyncContext(integration=integration, prop=prop, token=token)

    def _run_step(
        self, operation: str, step: Callable[[], StepOutcome], ctx: _SyncContext
    ) -> StepOutcome:
        try:
            outcome = step()
        except ReauthRequired as e:
            logger.warning(
                "sync_reauth_required", integration_id=str(ctx.integration_id), operation=operation
            )
            outcome = StepOutcome(
                operation, ERR, status_code=401, message=str(e), error_class=ReauthRequired.__name__
            )
        except Exception as e:
            logger.exception(
                "sync_step_failed",
                integration_id=str(ctx.integration_id),
                operation=operation,
                error=str(e),
            )
            outcome = StepOutcome(
                operation, ERR, message=f"{operation} failed: {e}", error_class=type(e).__name__
            )

        sync_steps.labels(operation=operation, outcome=outcome.kind).inc()
        if outcome.kind == WARN:
            logger.warning(
                "sync_step_warning",
                integration_id=str(ctx.integration_id),
                operation=operation,
                status_code=outcome.status_code,
                message=outcome.message,
            )
        elif outcome.kind == ERR:
            logger.error(
                "sync_step_error",
                integration_id=str(ctx.integration_id),
                operation=operation,
                status_code=outcome.status_code,
                message=outcome.message,
            )
        return outcome

    def _finish(self, result: SyncResult, ctx: Optional[_SyncContext]) -> None:
        property_id = ctx.integration["property_id"] if ctx else None
        with self.engine.begin() as conn:
            if result.errors:
                write_sync_log(
                    conn,
                    action="sync",
                    status="error",
                    integration_id=result.integration_id,
                    property_id=property_id,
                    error=result.error_message,
                    details={
                        "errors": result.errors,
                        "warnings": result.warnings,
                        "requires_reconnect": result.requires_reconnect,
                    },
                )
            if ctx is not None:
                update_last_sync(conn, result.integration_id)

    def _call(
        self,
        ctx: _SyncContext,
        method: str,
        path: str,
        json: Any = None,
        params: Optional[dict[str, Any]] = None,
    ) -> requests.Response:
        """
        Authenticated call with a single token refresh on 401.

        Raises:
            ReauthRequired: If the refresh fails or the new token is rejected too
        """
        res = self.client.call(method, path, ctx.token, json=json, params=params)
        if res.status_code != 401:
            return res

        logger.info("marketplace_token_rejected", integration_id=str(ctx.integration_id), path=path)
        self.token_manager.invalidate(ctx.integration_id)
        ctx.token = self.token_manager.refresh(ctx.integration_id)

        res = self.client.call(method, path, ctx.token, json=json, params=params)
        if res.status_code == 401:
            raise ReauthRequired("Marketplace rejected the refreshed token")
        return res

    # ------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------

    def _push_prices(self, ctx: _SyncContext) -> StepOutcome:
        operation = "price_update"
        today = utc_today()
        with self.engine.connect() as conn:
            rates = get_future_rates(conn, ctx.integration["property_id"], today)

        ranges = build_price_ranges(rates, ctx.prop, ctx.integration, today)
        if not ranges:
            return StepOutcome(operation, WARN, message="Property has no price to push")
        if self.dry_run:
            logger.info("dry_run_skip", operation=operation, ranges=len(ranges))
            return StepOutcome(operation, OK)

        res = self._call(
            ctx,
            "POST",
            f"/realty/v1/accounts/{ctx.account_id}/items/{ctx.item_id}/prices",
            json={"prices": ranges},
            params={"skip_error": "true"},
        )
        outcome = classify_response(operation, res, on_not_found=WARN)
        outcome.details = {"item_id": ctx.item_id, "ranges": len(ranges)}
        return outcome

    def _push_base_params(self, ctx: _SyncContext) -> StepOutcome:
        operation = "base_params_update"
        base_price = ctx.prop.get("base_price")
        if base_price is None:
            return StepOutcome(operation, WARN, message="Property has no base price")

        body = {
            "night_price": apply_markup(
                base_price, ctx.integration.get("markup_value"), ctx.integration.get("markup_type")
            ),
            "minimal_duration": ctx.prop.get("minimum_booking_days") or 1,
        }
        if self.dry_run:
            logger.info("dry_run_skip", operation=operation, body=body)
            return StepOutcome(operation, OK)

        res = self._call(ctx, "POST", f"/realty/v1/items/{ctx.item_id}/base", json=body)
        outcome = classify_response(operation, res, on_not_found=WARN)
        outcome.details = {"item_id": ctx.item_id}
        return outcome

    def _push_calendar(self, ctx: _SyncContext, exclude_booking_id: Any) -> StepOutcome:
        operation = "bookings_update"
        today = utc_today()
        with self.engine.connect() as conn:
            local_bookings = get_blocking_bookings(
                conn, ctx.integration["property_id"], today, exclude_booking_id
            )

        blocks = build_calendar_blocks(local_bookings, today)
        if self.dry_run:
            logger.info("dry_run_skip", operation=operation, blocks=len(blocks))
            return StepOutcome(operation, OK)

        res = self._call(
            ctx,
            "POST",
            f"/core/v1/accounts/{ctx.account_id}/items/{ctx.item_id}/bookings",
            json={"bookings": blocks, "source": self.calendar_source},
        )
        outcome = classify_response(
            operation,
            res,
            on_not_found=WARN,
            on_conflict=ERR if exclude_booking_id else WARN,
        )
        details: dict[str, Any] = {"item_id": ctx.item_id, "blocks": len(blocks)}
        if exclude_booking_id:
            details["excluded_booking_id"] = str(exclude_booking_id)
        outcome.details = details

        if outcome.kind == OK:
            if exclude_booking_id is None:
                action = "sync_calendar_bookings"
            elif blocks:
                action = "open_dates_after_delete"
            else:
                action = "open_all_dates_after_delete"
            with self.engine.begin() as conn:
                write_sync_log(
                    conn,
                    action=action,
                    status="success",
                    integration_id=ctx.integration_id,
                    property_id=ctx.integration["property_id"],
                    details=details,
                )
        return outcome

    # ------------------------------------------------------------------
    # Pull
    # ------------------------------------------------------------------

    def _pull(
        self,
        ctx: _SyncContext,
        pull: PullResult,
        limit: Optional[int],
        offset: Optional[int],
    ) -> StepOutcome:
        operation = "bookings_fetch"
        today = utc_today()
        bookings_path = f"/realty/v1/accounts/{ctx.account_id}/items/{ctx.item_id}/bookings"
        params: dict[str, Any] = {
            "date_start": today.isoformat(),
            "date_end": (today + relativedelta(years=1)).isoformat(),
            "with_unpaid": "true",
            "skip_error": "true",
        }
        if limit is not None and limit > 0:
            params["limit"] = min(int(limit), MAX_PULL_LIMIT)
        if offset is not None and offset >= 0:
            params["offset"] = int(offset)

        res = self._call(ctx, "GET", bookings_path, params=params)
        if res.status_code == 404:
            logger.info("bookings_fetch_empty", integration_id=str(ctx.integration_id))
            return StepOutcome(operation, OK, status_code=404, details=asdict(pull))
        if not 200 <= res.status_code < 300:
            return classify_response(operation, res)

        remote = extract_bookings_list(response_json(res))
        pull.total = len(remote)

        for booking in remote:
            booking_id = remote_booking_id(booking)
            try:
                if booking_id and not has_contact_data(booking):
                    booking = self._with_details(ctx, bookings_path, booking, booking_id)

                row = normalize_booking(booking, ctx.integration["property_id"], self.platform)
                if row is None:
                    pull.skipped += 1
                    bookings_pulled.labels(result="skipped").inc()
                    continue

                with self.engine.begin() as conn:
                    outcome = upsert_booking(conn, row)
                setattr(pull, outcome, getattr(pull, outcome) + 1)
                bookings_pulled.labels(result=outcome).inc()
            except ReauthRequired:
                raise
            except Exception as e:
                pull.failed += 1
                bookings_pulled.labels(result="failed").inc()
                logger.exception(
                    "booking_upsert_failed",
                    integration_id=str(ctx.integration_id),
                    remote_booking_id=booking_id,
                    error=str(e),
                )
                continue

            if str(booking.get("status", "")).lower() == "pending" and not self.dry_run:
                if self._cancel_pending(ctx, bookings_path, booking_id):
                    pull.cancelled += 1

        with self.engine.begin() as conn:
            write_sync_log(
                conn,
                action="sync_bookings",
                status="warning" if pull.failed else "success",
                integration_id=ctx.integration_id,
                property_id=ctx.integration["property_id"],
                details=asdict(pull),
            )

        logger.info("bookings_pulled", integration_id=str(ctx.integration_id), **asdict(pull))
        kind = WARN if pull.failed else OK
        message = f"{pull.failed} bookings failed to save" if pull.failed else None
        return StepOutcome(operation, kind, status_code=res.status_code, message=message, details=asdict(pull))

    def _with_details(
        self, ctx: _SyncContext, bookings_path: str, booking: dict[str, Any], booking_id: str
    ) -> dict[str, Any]:
        res = self._call(ctx, "GET", f"{bookings_path}/{booking_id}")
        details = response_json(res) if 200 <= res.status_code < 300 else None
        if isinstance(details, dict):
            inner = details.get("booking")
            return merge_details(booking, inner if isinstance(inner, dict) else details)
        logger.debug(
            "booking_details_unavailable",
            remote_booking_id=booking_id,
            status_code=res.status_code,
        )
        return booking

    def _cancel_pending(self, ctx: _SyncContext, bookings_path: str, booking_id: Optional[str]) -> bool:
        if not booking_id:
            return False
        res = self._call(ctx, "POST", f"{bookings_path}/{booking_id}/cancel")
        if 200 <= res.status_code < 300:
            logger.info("pending_booking_cancelled", remote_booking_id=booking_id)
            return True
        if res.status_code == 409:
            # Already paid on the marketplace side
            logger.info("pending_booking_already_paid", remote_booking_id=booking_id)
        else:
            logger.warning(
                "pending_booking_cancel_failed",
                remote_booking_id=booking_id,
                status_code=res.status_code,
            )
        return False
