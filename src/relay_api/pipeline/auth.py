"""
Request authentication.

Two credential kinds are accepted:
    Authorization: Bearer <token>   verified by the identity service
    X-API-Key: <secret>             compared with API_SECRET_KEY

The bearer header wins when both are present. Failures raise
RelayError(AUTHENTICATION) with one of:
    "invalid authorization header"   Authorization present but not Bearer
    "invalid or expired token"       identity service rejected the token
    "token validation failed"        identity service unreachable/unconfigured
    "invalid key"                    static key mismatch or no secret configured
    "no credential provided"         neither header present

Role checks (admin-only routes) are not done here; handlers layer them on
top of the returned AuthContext.
"""
from __future__ import annotations

import hmac
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional

from relay_api.core.errors import RelayError
from relay_api.core.logging import get_logger, verbose, warn

_LOG = get_logger("relay.auth")

SYSTEM_IDENTITY = "system"

# token -> user dict with "id", or None when rejected
IdentityVerifier = Callable[[str], Optional[Dict[str, Any]]]


class AuthMethod(str, Enum):
    TOKEN = "token"
    STATIC_KEY = "static-key"


@dataclass(frozen=True)
class AuthContext:
    """Resolved caller identity. Lives for one request."""
    identity: str
    auth_method: AuthMethod
    email: Optional[str] = None

    @property
    def is_system(self) -> bool:
        return self.auth_method is AuthMethod.STATIC_KEY


class Authenticator:
    """
    Resolve request headers into an AuthContext.

    Args:
        verifier: Token verification callable (SupabaseClient.get_user),
            None when no identity service is configured.
        static_key: The configured API secret, None when unset.
    """

    def __init__(self, verifier: Optional[IdentityVerifier], static_key: Optional[str]):
        self._verifier = verifier
        self._static_key = static_key

    def authenticate(self, headers: Mapping[str, str]) -> AuthContext:
        lowered = {k.lower(): v for k, v in headers.items()}
        authorization = lowered.get("authorization")
        api_key = lowered.get("x-api-key")

        if authorization:
            return self._authenticate_token(authorization)
        if api_key:
            return self._authenticate_key(api_key)
        raise RelayError.authentication("no credential provided")

    def _authenticate_token(self, header: str) -> AuthContext:
        scheme, _, token = header.strip().partition(" ")
        token = token.strip()
        if scheme.lower() != "bearer" or not token:
            raise RelayError.authentication("invalid authorization header")

        if self._verifier is None:
            warn(_LOG, "token_verifier_missing")
            raise RelayError.authentication("token validation failed")

        try:
            user = self._verifier(token)
        except RelayError as e:
            warn(_LOG, "token_validation_failed", error=e.cause or e.message)
            raise RelayError.authentication("token validation failed") from e

        if not user:
            raise RelayError.authentication("invalid or expired token")

        verbose(_LOG, "authenticated", method=AuthMethod.TOKEN.value)
        return AuthContext(identity=str(user["id"]), auth_method=AuthMethod.TOKEN, email=user.get("email"))

    def _authenticate_key(self, presented: str) -> AuthContext:
        if not self._static_key:
            raise RelayError.authentication("invalid key")
        if not hmac.compare_digest(presented.encode("utf-8"), self._static_key.encode("utf-8")):
            raise RelayError.authentication("invalid key")

        verbose(_LOG, "authenticated", method=AuthMethod.STATIC_KEY.value)
        return AuthContext(identity=SYSTEM_IDENTITY, auth_method=AuthMethod.STATIC_KEY)
