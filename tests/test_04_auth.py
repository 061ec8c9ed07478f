"""
Tests for request authentication.

Tests cover:
- Bearer tokens accepted/rejected by the identity verifier
- Malformed Authorization headers
- Identity service unavailable or unconfigured
- Static key match, mismatch and unconfigured secret
- Header precedence and missing credentials
"""
import pytest

from relay_api.core.errors import ErrorKind, RelayError
from relay_api.pipeline.auth import SYSTEM_IDENTITY, AuthContext, Authenticator, AuthMethod

USERS = {"good-token": {"id": "user-1", "email": "ada@example.com"}}


def verifier(token):
    return USERS.get(token)


def broken_verifier(token):
    raise RelayError.provider_failure("supabase", "Identity service unavailable", cause="connection refused")


def auth_failure(authenticator, headers) -> str:
    with pytest.raises(RelayError) as info:
        authenticator.authenticate(headers)
    assert info.value.kind is ErrorKind.AUTHENTICATION
    return info.value.message


class TestBearer:
    """Authorization: Bearer <token>."""

    def test_valid_token(self):
        ctx = Authenticator(verifier, None).authenticate({"Authorization": "Bearer good-token"})
        assert ctx == AuthContext(identity="user-1", auth_method=AuthMethod.TOKEN, email="ada@example.com")
        assert ctx.is_system is False

    def test_header_name_is_case_insensitive(self):
        ctx = Authenticator(verifier, None).authenticate({"authorization": "bearer good-token"})
        assert ctx.identity == "user-1"

    def test_rejected_token(self):
        msg = auth_failure(Authenticator(verifier, None), {"Authorization": "Bearer stale"})
        assert msg == "invalid or expired token"

    @pytest.mark.parametrize("header", ["Basic dXNlcjpwYXNz", "Bearer", "Bearer   ", "good-token"])
    def test_malformed_header(self, header):
        msg = auth_failure(Authenticator(verifier, None), {"Authorization": header})
        assert msg == "invalid authorization header"

    def test_verifier_unavailable(self):
        msg = auth_failure(Authenticator(broken_verifier, None), {"Authorization": "Bearer good-token"})
        assert msg == "token validation failed"

    def test_no_verifier_configured(self):
        msg = auth_failure(Authenticator(None, "k"), {"Authorization": "Bearer good-token"})
        assert msg == "token validation failed"


class TestStaticKey:
    """X-API-Key: <secret>."""

    def test_matching_key(self):
        ctx = Authenticator(None, "secret").authenticate({"X-API-Key": "secret"})
        assert ctx.identity == SYSTEM_IDENTITY
        assert ctx.auth_method is AuthMethod.STATIC_KEY
        assert ctx.is_system is True

    def test_wrong_key(self):
        assert auth_failure(Authenticator(None, "secret"), {"X-API-Key": "guess"}) == "invalid key"

    def test_unconfigured_secret_rejects_everything(self):
        assert auth_failure(Authenticator(None, None), {"X-API-Key": "anything"}) == "invalid key"
        assert auth_failure(Authenticator(None, ""), {"X-API-Key": "anything"}) == "invalid key"


class TestPrecedence:
    def test_no_credentials(self):
        assert auth_failure(Authenticator(verifier, "secret"), {}) == "no credential provided"

    def test_bearer_wins_over_key(self):
        ctx = Authenticator(verifier, "secret").authenticate(
            {"Authorization": "Bearer good-token", "X-API-Key": "secret"}
        )
        assert ctx.auth_method is AuthMethod.TOKEN

    def test_bad_bearer_not_rescued_by_key(self):
        msg = auth_failure(
            Authenticator(verifier, "secret"),
            {"Authorization": "Bearer stale", "X-API-Key": "secret"},
        )
        assert msg == "invalid or expired token"
