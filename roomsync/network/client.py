"""
HTTP client for the marketplace REST API.

Wraps ``requests`` with bounded retries (429, 5xx and connection errors),
per-endpoint Prometheus metrics and structured request/response logging with
secrets redacted. 401 responses are returned to the caller: deciding whether to
refresh a token belongs to the sync engine, not the transport.
"""

import re
import time
from typing import Any, Optional
from urllib.parse import urlencode

import requests
import structlog

from roomsync.config import MARKETPLACE_API_BASE_URL
from roomsync.errors import NetworkError
from roomsync.metrics import api_latency, api_requests
from roomsync.network.retry import DEFAULT_RETRY_POLICY, RetryPolicy

logger = structlog.get_logger(__name__)

REQUEST_TIMEOUT = 15
TOKEN_PATH = "/token"

_SECRET_PARAMS = frozenset(
    {"token", "access_token", "refresh_token", "code", "client_secret", "secret"}
)
_NUMERIC_SEGMENT = re.compile(r"/\d+")


def endpoint_label(path: str) -> str:
    """
    Collapse numeric path segments so metrics stay low-cardinality.

    Example:
        >>> endpoint_label("/realty/v1/items/1234567890/base")
        '/realty/v1/items/:id/base'
    """
    return _NUMERIC_SEGMENT.sub("/:id", path.split("?", 1)[0])


def redact_url(url: str, params: Optional[dict[str, Any]] = None) -> str:
    """
    Render a URL for logging with secret query values masked.

    Args:
        url: Absolute URL, possibly with a query string
        params: Query parameters that requests will append

    Returns:
        URL safe to log
    """
    base, _, query = url.partition("?")
    pairs: list[tuple[str, Any]] = []
    if query:
        for part in query.split("&"):
            key, _, value = part.partition("=")
            pairs.append((key, value))
    if params:
        pairs.extend(params.items())
    if not pairs:
        return base
    safe = [(k, "***" if k.lower() in _SECRET_PARAMS else v) for k, v in pairs]
    return f"{base}?{urlencode(safe)}"


class MarketplaceClient:
    """
    Thin synchronous client for marketplace API calls.

    Attributes:
        base_url: API root, without trailing slash
        policy: Retry policy for transient failures
        timeout: Per-request timeout in seconds

    Example:
        >>> client = MarketplaceClient()
        >>> res = client.call("GET", "/core/v1/accounts/current", token)
        >>> res.status_code
        200
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        policy: RetryPolicy = DEFAULT_RETRY_POLICY,
        timeout: float = REQUEST_TIMEOUT,
    ):
        self.base_url = (base_url or MARKETPLACE_API_BASE_URL).rstrip("/")
        self.policy = policy
        self.timeout = timeout

    def call(
        self,
        method: str,
        path: str,
        token: str,
        json: Any = None,
        params: Optional[dict[str, Any]] = None,
    ) -> requests.Response:
        """
        Perform an authenticated API call.

        Args:
            method: HTTP method
            path: Path relative to base_url, starting with "/"
            token: Bearer access token
            json: Optional JSON body
            params: Optional query parameters

        Returns:
            The final requests.Response (possibly a non-2xx status)

        Raises:
            NetworkError: If every attempt failed at the connection level
        """
        headers = {"Authorization": f"Bearer {token}", "Accept": "application/json"}
        kwargs: dict[str, Any] = {"headers": headers}
        if json is not None:
            kwargs["json"] = json
        if params:
            kwargs["params"] = params
        return self._send(method.upper(), path, **kwargs)

    def post_token(self, data: dict[str, Any]) -> requests.Response:
        """
        POST a form-encoded grant to the token endpoint.

        Args:
            data: Grant fields (grant_type, client_id, client_secret, ...)

        Returns:
            The final requests.Response

        Raises:
            NetworkError: If every attempt failed at the connection level
        """
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Cache-Control": "no-cache",
        }
        return self._send("POST", TOKEN_PATH, headers=headers, data=data)

    def _send(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        url = f"{self.base_url}{path}"
        endpoint = endpoint_label(path)
        safe_url = redact_url(url, kwargs.get("params"))
        attempt = 0

        while True:
            attempt += 1
            logger.info("marketplace_request", method=method, url=safe_url, attempt=attempt)

            start_time = time.time()
            try:
                res = requests.request(method, url, timeout=self.timeout, **kwargs)
            except requests.RequestException as err:
                api_requests.labels(endpoint=endpoint, status_code="error").inc()
                if not self.policy.has_attempts_left(attempt):
                    logger.error(
                        "marketplace_request_failed",
                        method=method,
                        url=safe_url,
                        attempts=attempt,
                        error=str(err),
                    )
                    raise NetworkError(f"{method} {endpoint} failed: {err}") from err

                delay = self.policy.delay_for(attempt)
                logger.warning(
                    "marketplace_request_retry",
                    method=method,
                    url=safe_url,
                    error=str(err),
                    delay=delay,
                )
                time.sleep(delay)
                continue

            latency = time.time() - start_time
            api_requests.labels(endpoint=endpoint, status_code=str(res.status_code)).inc()
            api_latency.labels(endpoint=endpoint).observe(latency)
            logger.info(
                "marketplace_response",
                method=method,
                url=safe_url,
                status_code=res.status_code,
                latency_ms=round(latency * 1000),
            )

            if self.policy.should_retry_status(res.status_code) and self.policy.has_attempts_left(
                attempt
            ):
                delay = self.policy.delay_for(attempt, res.headers.get("Retry-After"))
                logger.warning(
                    "marketplace_request_retry",
                    method=method,
                    url=safe_url,
                    status_code=res.status_code,
                    delay=delay,
                )
                time.sleep(delay)
                continue

            return res


def response_json(res: requests.Response) -> Any:
    """
    Decode a response body, tolerating empty or non-JSON bodies.

    Returns:
        Parsed JSON, or None
    """
    try:
        return res.json()
    except ValueError:
        return None


def error_message(res: requests.Response) -> str:
    """Extract a short human-readable error from a marketplace error response."""
    body = response_json(res)
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict):
            msg = err.get("message") or err.get("code")
            if msg:
                return str(msg)
        for key in ("message", "error_description", "error"):
            if body.get(key):
                return str(body[key])
    text = getattr(res, "text", "") or ""
    return text[:200] if isinstance(text, str) and text else f"HTTP {res.status_code}"
