"""
Error taxonomy for marketplace synchronization.

Every failure the sync engine, token manager or OAuth handler can surface is a
subclass of :class:`MarketplaceError`. Routes translate these into HTTP
responses; the sync engine records them as tagged step outcomes.
"""

from __future__ import annotations

from typing import Any, Optional


class MarketplaceError(Exception):
    """Base class for all marketplace synchronization errors."""

    status_code: Optional[int] = None

    def __init__(self, message: str, status_code: Optional[int] = None, details: Any = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details


class ReauthRequired(MarketplaceError):
    """
    Stored credentials can no longer be refreshed.

    Fatal for the current sync and never retried faster than the normal
    schedule; the user has to reconnect the integration.
    """

    status_code = 401


class ValidationError(MarketplaceError):
    """Integration configuration is malformed (bad account or listing identifier)."""

    status_code = 400


class RateLimited(MarketplaceError):
    """HTTP 429 persisted after the client's retries were exhausted."""

    status_code = 429


class Conflict(MarketplaceError):
    """HTTP 409: the marketplace already holds a paid or committed booking."""

    status_code = 409


class NotFound(MarketplaceError):
    """HTTP 404 from a marketplace endpoint."""

    status_code = 404


class NetworkError(MarketplaceError):
    """Connection-level failure after the client's retries were exhausted."""


class TokenGrantError(MarketplaceError):
    """
    The token endpoint rejected a grant.

    Attributes:
        error: OAuth error code from the response body (e.g. ``invalid_grant``)
        description: Human-readable ``error_description`` if provided
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error: Optional[str] = None,
        description: Optional[str] = None,
    ):
        super().__init__(message, status_code=status_code)
        self.error = error
        self.description = description


class OAuthError(MarketplaceError):
    """
    OAuth callback failure with a machine-readable reason code.

    The frontend renders a specific message per reason, so each failure mode
    has its own code.
    """

    INVALID_STATE = "invalid_state"
    INVALID_CODE = "invalid_code"
    REDIRECT_MISMATCH = "redirect_mismatch"
    SCOPE_MISSING = "scope_missing"
    NO_INTEGRATION = "no_integration"

    status_code = 400

    def __init__(self, reason: str, message: str, status_code: Optional[int] = None):
        super().__init__(message, status_code=status_code)
        self.reason = reason


class ScopeMissing(OAuthError):
    """The granted scope does not contain the capability the flow asked for."""

    def __init__(self, required_scope: str, granted_scope: Optional[str]):
        super().__init__(
            OAuthError.SCOPE_MISSING,
            f"Granted scope does not include {required_scope}",
            status_code=403,
        )
        self.required_scope = required_scope
        self.granted_scope = granted_scope


# Failures that must not be retried by the poller within one invocation
FATAL_ERROR_CLASSES = frozenset({ReauthRequired.__name__, ValidationError.__name__})
