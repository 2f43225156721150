"""
OAuth token lifecycle for marketplace integrations.

Tokens are served from the in-process cache, then from the integrations table,
and refreshed against the marketplace token endpoint only when both are within
the expiry buffer. Every refresh outcome is written to the sync log.
"""

from datetime import timedelta
from typing import Any, Optional

import structlog
from sqlalchemy.engine import Engine

from roomsync.cache import TokenCache, token_cache
from roomsync.config import MARKETPLACE_CLIENT_ID, MARKETPLACE_CLIENT_SECRET
from roomsync.db.readers.integrations import get_expiring_integrations, get_integration
from roomsync.db.writers.integrations import update_tokens
from roomsync.db.writers.sync_logs import write_sync_log
from roomsync.errors import NetworkError, ReauthRequired, TokenGrantError
from roomsync.metrics import token_cache_hits, token_cache_misses, token_refreshes
from roomsync.network.client import MarketplaceClient, response_json
from roomsync.utils.crypto import decrypt, encrypt
from roomsync.utils.datetime import ensure_utc, utc_now

logger = structlog.get_logger(__name__)

DEFAULT_EXPIRES_IN = 3600


class TokenManager:
    """
    Issue valid access tokens per integration.

    Attributes:
        engine: Database engine holding the integrations table
        client: Marketplace client used for the token endpoint
        cache: Token cache shared across the process

    Example:
        >>> manager = TokenManager(engine=engine, client=MarketplaceClient())
        >>> token = manager.get_valid_token(integration_id)
    """

    def __init__(
        self,
        engine: Engine,
        client: MarketplaceClient,
        cache: TokenCache = token_cache,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
    ):
        self.engine = engine
        self.client = client
        self.cache = cache
        self._client_id = client_id
        self._client_secret = client_secret

    def _credentials(self) -> tuple[str, str]:
        client_id = self._client_id or MARKETPLACE_CLIENT_ID
        client_secret = self._client_secret or MARKETPLACE_CLIENT_SECRET
        if not client_id or not client_secret:
            raise RuntimeError("MARKETPLACE_CLIENT_ID and MARKETPLACE_CLIENT_SECRET must be set")
        return client_id, client_secret

    def get_valid_token(self, integration_id: Any) -> str:
        """
        Return an access token that stays valid for at least the buffer period.

        Args:
            integration_id: Integration UUID

        Returns:
            Plain-text access token

        Raises:
            ReauthRequired: If the token cannot be refreshed
        """
        cached = self.cache.get(integration_id)
        if cached:
            token_cache_hits.inc()
            logger.debug("token_cache_hit", integration_id=str(integration_id))
            return cached

        token_cache_misses.inc()
        logger.debug("token_cache_miss", integration_id=str(integration_id))

        with self.engine.connect() as conn:
            integration = get_integration(conn, integration_id)
        if integration is None:
            raise ReauthRequired(f"Integration {integration_id} not found")

        expires_at = ensure_utc(integration.get("token_expires_at"))
        if (
            integration.get("access_token_encrypted")
            and expires_at is not None
            and utc_now() < expires_at - self.cache.buffer
        ):
            token = decrypt(integration["access_token_encrypted"])
            if token:
                self.cache.set(integration_id, token, expires_at)
                return token

        return self.refresh(integration_id, integration=integration)

    def invalidate(self, integration_id: Any) -> None:
        """Drop the cached token after the marketplace rejected it."""
        self.cache.invalidate(integration_id)

    def refresh(self, integration_id: Any, integration: Optional[dict[str, Any]] = None) -> str:
        """
        Force a token refresh.

        Tries the refresh_token grant, then falls back to client_credentials.

        Args:
            integration_id: Integration UUID
            integration: Already-loaded integration row, if the caller has one

        Returns:
            New plain-text access token

        Raises:
            ReauthRequired: If no refresh token is stored or both grants fail
        """
        self.cache.invalidate(integration_id)

        if integration is None:
            with self.engine.connect() as conn:
                integration = get_integration(conn, integration_id)
        if integration is None:
            raise ReauthRequired(f"Integration {integration_id} not found")

        refresh_token = decrypt(integration.get("refresh_token_encrypted"))
        if not refresh_token:
            self._record_failure(integration, "No refresh token stored")
            raise ReauthRequired("No refresh token stored; reconnect required")

        client_id, client_secret = self._credentials()

        grant_type = "refresh_token"
        try:
            payload = self._grant(
                {
                    "grant_type": grant_type,
                    "refresh_token": refresh_token,
                    "client_id": client_id,
                    "client_secret": client_secret,
                }
            )
        except (TokenGrantError, NetworkError) as e:
            token_refreshes.labels(grant_type=grant_type, status="failure").inc()
            logger.warning(
                "token_refresh_grant_failed",
                integration_id=str(integration_id),
                grant_type=grant_type,
                error=str(e),
            )
            grant_type = "client_credentials"
            try:
                payload = self._grant(
                    {
                        "grant_type": grant_type,
                        "client_id": client_id,
                        "client_secret": client_secret,
                    }
                )
            except (TokenGrantError, NetworkError) as fallback_error:
                token_refreshes.labels(grant_type=grant_type, status="failure").inc()
                self._record_failure(integration, str(fallback_error))
                raise ReauthRequired(
                    f"Token refresh failed: {fallback_error}"
                ) from fallback_error

        return self._store(integration, payload, grant_type)

    def exchange_code(self, code: str, redirect_uri: Optional[str]) -> dict[str, Any]:
        """
        Exchange an authorization code for a token pair.

        Args:
            code: Authorization code from the OAuth redirect
            redirect_uri: Redirect URI used in the authorization request

        Returns:
            Token endpoint payload (access_token, refresh_token, expires_in, scope)

        Raises:
            TokenGrantError: If the marketplace rejects the code
        """
        client_id, client_secret = self._credentials()
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "client_id": client_id,
            "client_secret": client_secret,
        }
        if redirect_uri:
            data["redirect_uri"] = redirect_uri
        return self._grant(data)

    def refresh_expiring(self, window_seconds: int = 300) -> dict[str, Any]:
        """
        Refresh every active integration whose token expires within the window.

        Args:
            window_seconds: Look-ahead window in seconds

        Returns:
            {"refreshed": int, "failed": int, "total": int, "errors": [...]}
        """
        cutoff = utc_now() + timedelta(seconds=window_seconds)
        with self.engine.connect() as conn:
            candidates = get_expiring_integrations(conn, cutoff)

        refreshed = 0
        errors: list[dict[str, str]] = []
        for integration in candidates:
            integration_id = integration["id"]
            if not integration.get("refresh_token_encrypted"):
                errors.append({"integration_id": str(integration_id), "error": "no_refresh_token"})
                continue
            try:
                self.refresh(integration_id, integration=integration)
                refreshed += 1
            except (ReauthRequired, RuntimeError) as e:
                errors.append({"integration_id": str(integration_id), "error": str(e)})

        logger.info(
            "tokens_refresh_expiring_done",
            total=len(candidates),
            refreshed=refreshed,
            failed=len(errors),
        )
        return {
            "refreshed": refreshed,
            "failed": len(errors),
            "total": len(candidates),
            "errors": errors,
        }

    def _grant(self, data: dict[str, Any]) -> dict[str, Any]:
        res = self.client.post_token(data)
        body = response_json(res)
        if res.status_code != 200 or not isinstance(body, dict) or not body.get("access_token"):
            error = body.get("error") if isinstance(body, dict) else None
            description = body.get("error_description") if isinstance(body, dict) else None
            raise TokenGrantError(
                f"{data['grant_type']} grant rejected: {description or error or res.status_code}",
                status_code=res.status_code,
                error=error,
                description=description,
            )
        return body

    def _store(self, integration: dict[str, Any], payload: dict[str, Any], grant_type: str) -> str:
        integration_id = integration["id"]
        access_token = payload["access_token"]
        try:
            expires_in = int(payload.get("expires_in") or DEFAULT_EXPIRES_IN)
        except (TypeError, ValueError):
            expires_in = DEFAULT_EXPIRES_IN
        expires_at = utc_now() + timedelta(seconds=expires_in)

        new_refresh = payload.get("refresh_token")
        with self.engine.begin() as conn:
            update_tokens(
                conn,
                integration_id,
                access_token_encrypted=encrypt(access_token),
                expires_at=expires_at,
                refresh_token_encrypted=encrypt(new_refresh) if new_refresh else None,
                scope=payload.get("scope"),
            )
            write_sync_log(
                conn,
                action="refresh_token",
                status="success",
                integration_id=integration_id,
                property_id=integration.get("property_id"),
                details={"grant_type": grant_type, "expires_in": expires_in},
            )

        self.cache.set(integration_id, access_token, expires_at)
        token_refreshes.labels(grant_type=grant_type, status="success").inc()
        logger.info(
            "token_refreshed",
            integration_id=str(integration_id),
            grant_type=grant_type,
            expires_at=expires_at.isoformat(),
        )
        return access_token

    def _record_failure(self, integration: dict[str, Any], message: str) -> None:
        logger.error(
            "token_refresh_failed", integration_id=str(integration["id"]), error=message
        )
        with self.engine.begin() as conn:
            write_sync_log(
                conn,
                action="refresh_token",
                status="error",
                integration_id=integration["id"],
                property_id=integration.get("property_id"),
                error=message,
            )
