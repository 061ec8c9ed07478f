"""
Tests for the error taxonomy and response envelopes.

Tests cover:
- ErrorKind status/code/title table
- classify() mapping of arbitrary exceptions
- to_envelope() shape, provider prefix and internal sanitization
- validation_fields() from pydantic errors
"""
from __future__ import annotations

import httpx
import pytest
from pydantic import BaseModel, Field, ValidationError

from relay_api.core.errors import (
    GENERIC_INTERNAL_MESSAGE,
    ErrorKind,
    RelayError,
    classify,
    to_envelope,
    validation_error,
    validation_fields,
)


class _Model(BaseModel):
    name: str = Field(..., min_length=1)
    count: int


class TestErrorKind:
    """Each kind has exactly one status and code."""

    @pytest.mark.parametrize("kind,status,code", [
        (ErrorKind.VALIDATION, 400, "VALIDATION_ERROR"),
        (ErrorKind.AUTHENTICATION, 401, "AUTHENTICATION_ERROR"),
        (ErrorKind.AUTHORIZATION, 403, "AUTHORIZATION_ERROR"),
        (ErrorKind.NOT_FOUND, 404, "NOT_FOUND"),
        (ErrorKind.RATE_LIMIT, 429, "RATE_LIMIT_EXCEEDED"),
        (ErrorKind.EXTERNAL_PROVIDER, 502, "EXTERNAL_API_ERROR"),
        (ErrorKind.INTERNAL, 500, "INTERNAL_SERVER_ERROR"),
    ])
    def test_status_and_code(self, kind, status, code):
        assert kind.status == status
        assert kind.code == code

    def test_codes_are_unique(self):
        codes = [k.code for k in ErrorKind]
        assert len(codes) == len(set(codes))

    def test_retryable(self):
        assert ErrorKind.EXTERNAL_PROVIDER.retryable is True
        assert ErrorKind.VALIDATION.retryable is False


class TestClassify:
    """Every exception maps onto exactly one kind."""

    def test_relay_error_passes_through(self):
        err = RelayError.authorization("nope")
        assert classify(err) is err

    def test_unknown_exception_is_internal(self):
        err = classify(KeyError("boom"))
        assert err.kind is ErrorKind.INTERNAL
        assert "KeyError" in err.cause

    def test_pydantic_error_is_validation(self):
        with pytest.raises(ValidationError) as info:
            _Model.model_validate({"name": ""})
        err = classify(info.value)
        assert err.kind is ErrorKind.VALIDATION
        fields = {d["field"] for d in err.details}
        assert fields == {"name", "count"}

    def test_httpx_error_is_provider_failure(self):
        request = httpx.Request("GET", "https://api.example.com/x")
        err = classify(httpx.ConnectError("refused", request=request))
        assert err.kind is ErrorKind.EXTERNAL_PROVIDER
        assert err.provider == "api.example.com"


class TestEnvelope:
    """to_envelope() output."""

    def test_shape(self):
        body = to_envelope(RelayError.authentication("no credential provided"))
        assert body["error"] == "Authentication Error"
        assert body["message"] == "no credential provided"
        assert body["code"] == "AUTHENTICATION_ERROR"
        assert body["timestamp"].endswith("Z")
        assert "details" not in body

    def test_validation_details(self):
        err = validation_error([{"field": "text", "message": "too short"}])
        body = to_envelope(err)
        assert body["details"] == [{"field": "text", "message": "too short"}]
        assert body["message"] == "Invalid request data: text: too short"

    def test_provider_prefix_and_no_cause(self):
        err = RelayError.provider_failure("openai", "Upstream request failed", cause="HTTP 500: secret trace")
        body = to_envelope(err)
        assert body["message"] == "openai: Upstream request failed"
        assert "secret" not in str(body)

    def test_internal_sanitized_outside_development(self):
        err = RelayError.internal("db password is hunter2")
        assert to_envelope(err)["message"] == GENERIC_INTERNAL_MESSAGE
        assert to_envelope(err, development=True)["message"] == "db password is hunter2"


class TestValidationFields:
    def test_nested_locations_are_dotted(self):
        class Outer(BaseModel):
            items: list[_Model]

        with pytest.raises(ValidationError) as info:
            Outer.model_validate({"items": [{"name": "a", "count": "x"}]})
        assert validation_fields(info.value)[0]["field"] == "items.0.count"
