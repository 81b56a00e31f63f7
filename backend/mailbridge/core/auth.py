"""
Proxy-level authentication and capability checks.

WHY: The proxy holds no user database. Every request authenticates itself
with one of two shared secrets (x-api-key), which decides its capability,
and optionally carries the caller's own mailbox token, which is forwarded
to the backend untouched. This module is the whole gate: no network calls,
no side effects beyond accept/reject.
"""

import hmac
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from mailbridge.core.config import Settings
from mailbridge.core.exceptions import AuthenticationError, AuthorizationError


class Capability(str, Enum):
    """Permission level derived from the proxy API key."""

    ADMIN = "admin"
    """Full access, including sends and label changes."""

    READ_ONLY = "read_only"
    """Key embedded in the public widget; listing and reading only."""


@dataclass(frozen=True)
class ProviderCredential:
    """
    Per-request authentication context.

    WHAT: Capability plus the opaque bearer token for the mail backend.

    WHY: Threaded explicitly through every downstream call instead of being
    parked in shared state, so two concurrent requests can never see each
    other's token.
    """

    capability: Capability
    bearer_token: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.capability == Capability.ADMIN

    def __repr__(self) -> str:
        # Never render the token, even in debug output
        has_token = "yes" if self.bearer_token else "no"
        return f"ProviderCredential(capability={self.capability.value}, token={has_token})"


def _matches(candidate: str, secret: str) -> bool:
    # Constant-time comparison
    return bool(secret) and hmac.compare_digest(candidate.encode(), secret.encode())


def resolve_capability(api_key: Optional[str], settings: Settings) -> Capability:
    """
    Map a proxy API key to a capability.

    Args:
        api_key: Value of the x-api-key header
        settings: Loaded settings holding both secrets

    Returns:
        Capability.ADMIN or Capability.READ_ONLY

    Raises:
        AuthenticationError: If the key matches neither secret
    """
    if not api_key:
        raise AuthenticationError(message="Missing API key")

    if _matches(api_key, settings.APP_SECRET_KEY):
        return Capability.ADMIN
    if _matches(api_key, settings.WIDGET_API_KEY):
        return Capability.READ_ONLY

    raise AuthenticationError(message="Invalid API key")


def extract_bearer_token(
    authorization: Optional[str],
    fallback: Optional[str] = None,
) -> Optional[str]:
    """
    Pull the mailbox token out of the request headers.

    Accepts "Authorization: Bearer <token>" and, for older Gmail widgets,
    a raw token in x-google-token.

    Returns:
        The token, or None when neither header carries a non-empty value
    """
    token = None
    if authorization:
        value = authorization.strip()
        scheme, _, rest = value.partition(" ")
        if scheme.lower() == "bearer":
            value = rest
        token = value.strip()

    if not token and fallback:
        token = fallback.strip()

    return token or None


def require_admin(credential: ProviderCredential) -> ProviderCredential:
    """
    Ensure the request may mutate backend state.

    Raises:
        AuthorizationError: If the key only grants read access
    """
    if not credential.is_admin:
        raise AuthorizationError(
            message="Admin API key required for this action",
            capability=credential.capability.value,
        )
    return credential


def require_account_token(credential: ProviderCredential) -> str:
    """
    Ensure a mailbox account is connected.

    Raises:
        AuthenticationError: If no bearer token was supplied
    """
    if not credential.bearer_token:
        raise AuthenticationError(message="No account connected")
    return credential.bearer_token


def is_origin_allowed(origin: Optional[str], settings: Settings) -> bool:
    """
    Check a request Origin against the cross-origin allow-list.

    Requests without an Origin header are not cross-origin browser calls
    and are always allowed.
    """
    if not origin:
        return True
    if settings.allows_any_origin:
        return True
    return origin.rstrip("/") in {o.rstrip("/") for o in settings.allowed_origins}
