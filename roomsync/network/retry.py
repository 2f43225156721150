"""
Retry policy shared by the marketplace client and the queue poller.

The client retries individual HTTP calls; the poller retries whole sync runs.
Both compute their backoff from the same policy object.
"""

from __future__ import annotations

from dataclasses import dataclass
from email.utils import parsedate_to_datetime
from typing import Any, Optional

from roomsync.utils.datetime import utc_now

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


def parse_retry_after(value: Any) -> Optional[float]:
    """
    Parse a Retry-After header value.

    Accepts delta-seconds or an HTTP-date.

    Args:
        value: Raw header value

    Returns:
        Seconds to wait (never negative), or None if the value is unusable
    """
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return max(float(value), 0.0)
    if not isinstance(value, str) or not value.strip():
        return None

    value = value.strip()
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass

    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when is None:
        return None
    return max((when - utc_now()).total_seconds(), 0.0)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Exponential backoff policy.

    Attributes:
        max_attempts: Total attempts including the first one
        base_delay: Delay in seconds after the first failed attempt
        multiplier: Growth factor between consecutive delays
        max_delay: Upper bound for any single delay
        respect_retry_after: Use a server-provided Retry-After when present

    Example:
        >>> policy = RetryPolicy()
        >>> [policy.delay_for(n) for n in (1, 2, 3)]
        [1.0, 2.0, 4.0]
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0
    respect_retry_after: bool = True

    def delay_for(self, attempt: int, retry_after: Any = None) -> float:
        """
        Seconds to wait after the given failed attempt (1-based).

        Args:
            attempt: Number of the attempt that just failed
            retry_after: Optional Retry-After header value

        Returns:
            Delay in seconds, capped at max_delay
        """
        if self.respect_retry_after:
            hinted = parse_retry_after(retry_after)
            if hinted is not None:
                return min(hinted, self.max_delay)

        delay = self.base_delay * (self.multiplier ** max(attempt - 1, 0))
        return float(min(delay, self.max_delay))

    def should_retry_status(self, status_code: int) -> bool:
        """Return True for HTTP statuses worth retrying (429 and 5xx)."""
        return status_code in RETRYABLE_STATUS_CODES or 500 <= status_code < 600

    def has_attempts_left(self, attempt: int) -> bool:
        """Return True if another attempt is allowed after attempt number `attempt`."""
        return attempt < self.max_attempts


DEFAULT_RETRY_POLICY = RetryPolicy()
