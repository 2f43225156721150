"""
OAuth authorization-code flow for connecting a property to the marketplace.

The frontend sends the user to the URL from build_authorization_url(); the
marketplace redirects back with ``code`` and the opaque ``state`` we issued;
handle_callback() exchanges the code, resolves which integration the grant is
for and stores the encrypted tokens. Every failure carries a reason code the
frontend can render.
"""

import base64
import binascii
import json
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Optional
from urllib.parse import urlencode

import structlog
from sqlalchemy.engine import Engine

from roomsync.config import MARKETPLACE_AUTHORIZE_URL, MARKETPLACE_CLIENT_ID, MARKETPLACE_PLATFORM
from roomsync.db.readers.integrations import get_active_integrations_for_owner, get_integration
from roomsync.db.readers.properties import get_property
from roomsync.db.writers.integrations import upsert_integration
from roomsync.db.writers.queue import ensure_queue_item
from roomsync.db.writers.sync_logs import write_sync_log
from roomsync.errors import OAuthError, ScopeMissing, TokenGrantError
from roomsync.network.auth import DEFAULT_EXPIRES_IN, TokenManager
from roomsync.network.client import MarketplaceClient, response_json
from roomsync.utils.crypto import encrypt
from roomsync.utils.datetime import utc_now

logger = structlog.get_logger(__name__)

INTEGRATION_SCOPE = "user:read,short_term_rent:read,short_term_rent:write"
MESSENGER_SCOPE = f"{INTEGRATION_SCOPE},messenger:read,messenger:write"
MESSENGER_REQUIRED_SCOPE = "messenger:read"

PURPOSES = ("integration", "messenger")
STATE_MAX_AGE_MS = 60 * 60 * 1000

ACCOUNT_PATHS = ("/core/v1/accounts/current", "/core/v1/account")


@dataclass
class OAuthState:
    property_id: Optional[str] = None
    integration_id: Optional[str] = None
    purpose: str = "integration"
    timestamp: Optional[int] = None


@dataclass
class OAuthResult:
    integration_id: Any
    property_id: Any
    remote_account_id: Optional[str]
    purpose: str
    scope: Optional[str]


def encode_state(state: OAuthState) -> str:
    """Serialize a state as base64-wrapped JSON."""
    payload = {
        "property_id": state.property_id,
        "integration_id": state.integration_id,
        "purpose": state.purpose,
        "timestamp": state.timestamp if state.timestamp is not None else int(time.time() * 1000),
    }
    raw = json.dumps({k: v for k, v in payload.items() if v is not None})
    return base64.b64encode(raw.encode("utf-8")).decode("ascii")


def _parse_state_json(raw: str) -> Optional[dict[str, Any]]:
    try:
        data = json.loads(raw)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def decode_state(state: Optional[str], now_ms: Optional[int] = None) -> OAuthState:
    """
    Decode the OAuth state parameter.

    Base64-wrapped JSON is tried first, then plain JSON. A state carrying a
    timestamp older than one hour is rejected.

    Args:
        state: Raw state query/body value
        now_ms: Current time in epoch milliseconds (defaults to now)

    Returns:
        Decoded OAuthState

    Raises:
        OAuthError: invalid_state if the value cannot be decoded, is too old or
            names an unknown purpose
    """
    if not state:
        raise OAuthError(OAuthError.INVALID_STATE, "Missing OAuth state")

    data = None
    try:
        padded = state + "=" * (-len(state) % 4)
        data = _parse_state_json(base64.b64decode(padded, validate=True).decode("utf-8"))
    except (binascii.Error, ValueError):
        data = None
    if data is None:
        data = _parse_state_json(state)
    if data is None:
        raise OAuthError(OAuthError.INVALID_STATE, "OAuth state is not valid JSON")

    purpose = data.get("purpose") or "integration"
    if purpose not in PURPOSES:
        raise OAuthError(OAuthError.INVALID_STATE, f"Unknown OAuth purpose: {purpose}")

    timestamp = data.get("timestamp")
    if timestamp is not None:
        try:
            timestamp = int(timestamp)
        except (TypeError, ValueError):
            raise OAuthError(OAuthError.INVALID_STATE, "OAuth state timestamp is invalid")
        now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
        if now_ms - timestamp > STATE_MAX_AGE_MS:
            raise OAuthError(OAuthError.INVALID_STATE, "OAuth state has expired")

    property_id = data.get("property_id")
    integration_id = data.get("integration_id")
    return OAuthState(
        property_id=str(property_id) if property_id else None,
        integration_id=str(integration_id) if integration_id else None,
        purpose=purpose,
        timestamp=timestamp,
    )


def build_authorization_url(
    property_id: Any,
    purpose: str = "integration",
    redirect_uri: Optional[str] = None,
    client_id: Optional[str] = None,
) -> str:
    """
    Build the marketplace authorization URL for a property.

    Args:
        property_id: Property being connected
        purpose: "integration" or "messenger" (requests messenger scopes too)
        redirect_uri: Callback URL registered with the marketplace
        client_id: OAuth client id (defaults to MARKETPLACE_CLIENT_ID)

    Returns:
        Absolute URL to redirect the user to
    """
    if purpose not in PURPOSES:
        raise ValueError(f"Unknown OAuth purpose: {purpose}")
    client_id = client_id or MARKETPLACE_CLIENT_ID
    if not client_id:
        raise RuntimeError("MARKETPLACE_CLIENT_ID must be set")

    params = {
        "response_type": "code",
        "client_id": client_id,
        "scope": MESSENGER_SCOPE if purpose == "messenger" else INTEGRATION_SCOPE,
        "state": encode_state(OAuthState(property_id=str(property_id), purpose=purpose)),
    }
    if redirect_uri:
        params["redirect_uri"] = redirect_uri
    return f"{MARKETPLACE_AUTHORIZE_URL}?{urlencode(params)}"


def extract_account_id(payload: Any) -> Optional[str]:
    """Pull the marketplace account id out of an account endpoint response."""
    if not isinstance(payload, dict):
        return None
    user = payload.get("user")
    for value in (
        payload.get("id"),
        payload.get("account_id"),
        user.get("id") if isinstance(user, dict) else None,
        payload.get("user_id"),
    ):
        if value not in (None, ""):
            return str(value)
    return None


class OAuthCallbackHandler:
    """
    Complete the OAuth flow and persist the integration.

    Example:
        >>> handler = OAuthCallbackHandler(engine, client, token_manager)
        >>> result = handler.handle_callback(code, state, redirect_uri)
        >>> result.integration_id
        UUID('...')
    """

    def __init__(
        self,
        engine: Engine,
        client: MarketplaceClient,
        token_manager: TokenManager,
        platform: str = MARKETPLACE_PLATFORM,
    ):
        self.engine = engine
        self.client = client
        self.token_manager = token_manager
        self.platform = platform

    def handle_callback(
        self,
        code: str,
        state: Optional[str],
        redirect_uri: Optional[str] = None,
        user_id: Any = None,
    ) -> OAuthResult:
        """
        Exchange the authorization code and store the resulting tokens.

        Args:
            code: Authorization code
            state: State parameter issued by build_authorization_url
            redirect_uri: Redirect URI used for the authorization request
            user_id: Authenticated requester, used for ownership checks

        Returns:
            OAuthResult describing the stored integration

        Raises:
            OAuthError: With reason invalid_state, invalid_code,
                redirect_mismatch, scope_missing or no_integration
        """
        decoded = decode_state(state)
        if not code:
            raise OAuthError(OAuthError.INVALID_CODE, "Missing authorization code")

        tokens = self._exchange(code, redirect_uri)
        scope = tokens.get("scope")
        if decoded.purpose == "messenger" and MESSENGER_REQUIRED_SCOPE not in _scopes(scope):
            raise ScopeMissing(MESSENGER_REQUIRED_SCOPE, scope)

        property_id = self._resolve_property(decoded, user_id)
        access_token = tokens["access_token"]
        account_id = self._fetch_account_id(access_token)

        try:
            expires_in = int(tokens.get("expires_in") or DEFAULT_EXPIRES_IN)
        except (TypeError, ValueError):
            expires_in = DEFAULT_EXPIRES_IN
        expires_at = utc_now() + timedelta(seconds=expires_in)

        data: dict[str, Any] = {
            "access_token_encrypted": encrypt(access_token),
            "token_expires_at": expires_at,
            "is_active": True,
            "is_enabled": True,
        }
        if tokens.get("refresh_token"):
            data["refresh_token_encrypted"] = encrypt(tokens["refresh_token"])
        if scope:
            data["scope"] = scope
        if account_id:
            data["remote_account_id"] = account_id

        with self.engine.begin() as conn:
            integration_id = upsert_integration(conn, property_id, self.platform, data)
            ensure_queue_item(conn, integration_id)
            write_sync_log(
                conn,
                action="oauth_connect",
                status="success",
                integration_id=integration_id,
                property_id=property_id,
                details={"purpose": decoded.purpose, "account_resolved": account_id is not None},
            )

        self.token_manager.cache.set(integration_id, access_token, expires_at)
        logger.info(
            "oauth_connected",
            integration_id=str(integration_id),
            property_id=str(property_id),
            purpose=decoded.purpose,
        )
        return OAuthResult(
            integration_id=integration_id,
            property_id=property_id,
            remote_account_id=account_id,
            purpose=decoded.purpose,
            scope=scope,
        )

    def _exchange(self, code: str, redirect_uri: Optional[str]) -> dict[str, Any]:
        try:
            return self.token_manager.exchange_code(code, redirect_uri)
        except TokenGrantError as e:
            text = " ".join(str(v) for v in (e.error, e.description, e.message) if v).lower()
            logger.warning("oauth_code_exchange_failed", error=e.error, status_code=e.status_code)
            if "redirect_uri" in text:
                raise OAuthError(
                    OAuthError.REDIRECT_MISMATCH, "Redirect URI does not match registration"
                ) from e
            raise OAuthError(
                OAuthError.INVALID_CODE, "Authorization code is invalid or expired"
            ) from e

    def _resolve_property(self, state: OAuthState, user_id: Any) -> Any:
        with self.engine.connect() as conn:
            if state.integration_id:
                integration = get_integration(conn, state.integration_id)
                if integration is not None:
                    owner = get_property(conn, integration["property_id"])
                    if owner is not None and (
                        user_id is None or str(owner.get("owner_id")) == str(user_id)
                    ):
                        return integration["property_id"]

            if state.property_id:
                prop = get_property(conn, state.property_id)
                if prop is not None and (
                    user_id is None or str(prop.get("owner_id")) == str(user_id)
                ):
                    return prop["id"]

            if user_id is not None:
                candidates = get_active_integrations_for_owner(conn, user_id, self.platform)
                if len(candidates) == 1:
                    return candidates[0]["property_id"]

        raise OAuthError(
            OAuthError.NO_INTEGRATION,
            "No property or integration could be resolved for this authorization",
            status_code=404,
        )

    def _fetch_account_id(self, access_token: str) -> Optional[str]:
        for path in ACCOUNT_PATHS:
            res = self.client.call("GET", path, access_token)
            if 200 <= res.status_code < 300:
                account_id = extract_account_id(response_json(res))
                if account_id:
                    return account_id
            logger.info("oauth_account_lookup_miss", path=path, status_code=res.status_code)
        logger.warning("oauth_account_unresolved")
        return None


def _scopes(scope: Optional[str]) -> set[str]:
    if not scope:
        return set()
    return {s.strip() for s in scope.replace(" ", ",").split(",") if s.strip()}
