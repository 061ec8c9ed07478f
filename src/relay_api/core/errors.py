"""
Error Taxonomy and Response Envelopes.

Every failure the relay reports is a RelayError carrying an ErrorKind.
The kind fixes the HTTP status, the machine-readable code and the
human-readable title of the error envelope:

    Kind               Status  Code                   Title
    VALIDATION         400     VALIDATION_ERROR       Validation Error
    AUTHENTICATION     401     AUTHENTICATION_ERROR   Authentication Error
    AUTHORIZATION      403     AUTHORIZATION_ERROR    Authorization Error
    NOT_FOUND          404     NOT_FOUND              Not Found
    RATE_LIMIT         429     RATE_LIMIT_EXCEEDED    Rate Limit Exceeded
    EXTERNAL_PROVIDER  502     EXTERNAL_API_ERROR     External API Error
    INTERNAL           500     INTERNAL_SERVER_ERROR  Internal Server Error

Envelope:
    {"error": title, "message": ..., "code": ..., "timestamp": ISO-8601}
    plus "details" (list of violated fields) for validation failures.

Outside the development environment an INTERNAL error never exposes its
message; the caller sees "An unexpected error occurred".
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from relay_api.utils.timeit import iso_now


class ErrorKind(str, Enum):
    VALIDATION = "VALIDATION_ERROR"
    AUTHENTICATION = "AUTHENTICATION_ERROR"
    AUTHORIZATION = "AUTHORIZATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    RATE_LIMIT = "RATE_LIMIT_EXCEEDED"
    EXTERNAL_PROVIDER = "EXTERNAL_API_ERROR"
    INTERNAL = "INTERNAL_SERVER_ERROR"

    @property
    def status(self) -> int:
        return _STATUS[self]

    @property
    def code(self) -> str:
        return self.value

    @property
    def title(self) -> str:
        return _TITLES[self]

    @property
    def retryable(self) -> bool:
        return self in _RETRYABLE


_STATUS = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.AUTHENTICATION: 401,
    ErrorKind.AUTHORIZATION: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.RATE_LIMIT: 429,
    ErrorKind.EXTERNAL_PROVIDER: 502,
    ErrorKind.INTERNAL: 500,
}

_TITLES = {
    ErrorKind.VALIDATION: "Validation Error",
    ErrorKind.AUTHENTICATION: "Authentication Error",
    ErrorKind.AUTHORIZATION: "Authorization Error",
    ErrorKind.NOT_FOUND: "Not Found",
    ErrorKind.RATE_LIMIT: "Rate Limit Exceeded",
    ErrorKind.EXTERNAL_PROVIDER: "External API Error",
    ErrorKind.INTERNAL: "Internal Server Error",
}

# Reported in logs only; nothing in the relay retries
_RETRYABLE = {ErrorKind.RATE_LIMIT, ErrorKind.EXTERNAL_PROVIDER, ErrorKind.INTERNAL}

GENERIC_INTERNAL_MESSAGE = "An unexpected error occurred"


class RelayError(Exception):
    """
    The single error type of the relay.

    Attributes:
        kind: ErrorKind discriminant (fixes status/code/title).
        message: Caller-facing message.
        details: Caller-facing details; only serialized for VALIDATION.
        provider: Upstream name for EXTERNAL_PROVIDER errors.
        cause: Raw upstream/internal detail for the process log. Never
            serialized into a response.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        details: Optional[Any] = None,
        provider: Optional[str] = None,
        cause: Optional[str] = None,
    ):
        self.kind = kind
        self.message = message
        self.details = details
        self.provider = provider
        self.cause = cause
        super().__init__(message)

    @property
    def status(self) -> int:
        return self.kind.status

    @property
    def code(self) -> str:
        return self.kind.code

    @property
    def retryable(self) -> bool:
        return self.kind.retryable

    def __repr__(self) -> str:
        return f"RelayError({self.kind.name}, {self.message!r})"

    # ── constructors ────────────────────────────────────────────────────────

    @classmethod
    def validation(cls, message: str, fields: Optional[List[Dict[str, str]]] = None) -> "RelayError":
        return cls(ErrorKind.VALIDATION, message, details=fields or [])

    @classmethod
    def authentication(cls, message: str = "Authentication required") -> "RelayError":
        return cls(ErrorKind.AUTHENTICATION, message)

    @classmethod
    def authorization(cls, message: str = "Insufficient permissions") -> "RelayError":
        return cls(ErrorKind.AUTHORIZATION, message)

    @classmethod
    def not_found(cls, message: str = "Resource not found") -> "RelayError":
        return cls(ErrorKind.NOT_FOUND, message)

    @classmethod
    def provider_failure(cls, provider: str, message: str, cause: Optional[str] = None) -> "RelayError":
        return cls(ErrorKind.EXTERNAL_PROVIDER, message, provider=provider, cause=cause)

    @classmethod
    def internal(cls, message: str = "Internal server error", cause: Optional[str] = None) -> "RelayError":
        return cls(ErrorKind.INTERNAL, message, cause=cause)


def validation_fields(exc: PydanticValidationError) -> List[Dict[str, str]]:
    """
    Flatten pydantic errors into [{"field": "messages.0.content", "message": ...}].

    Locations use the wire (alias) names since models validate by alias.
    """
    fields = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "__root__")
        fields.append({"field": loc or "body", "message": err.get("msg", "invalid value")})
    return fields


def validation_error(fields: List[Dict[str, str]]) -> RelayError:
    summary = ", ".join(f"{f['field']}: {f['message']}" for f in fields)
    return RelayError.validation(f"Invalid request data: {summary}", fields)


def classify(exc: BaseException) -> RelayError:
    """
    Map any exception onto exactly one ErrorKind.

    RelayError passes through unchanged. pydantic validation failures
    become VALIDATION, httpx transport failures become EXTERNAL_PROVIDER,
    and everything else is INTERNAL.
    """
    if isinstance(exc, RelayError):
        return exc
    if isinstance(exc, PydanticValidationError):
        return validation_error(validation_fields(exc))
    if isinstance(exc, httpx.HTTPError):
        provider = exc.request.url.host if _has_request(exc) else "upstream"
        return RelayError.provider_failure(provider, "Upstream request failed", cause=f"{type(exc).__name__}: {exc}")
    return RelayError.internal(str(exc) or type(exc).__name__, cause=f"{type(exc).__name__}: {exc}")


def _has_request(exc: httpx.HTTPError) -> bool:
    try:
        exc.request
    except RuntimeError:
        return False
    return True


def to_envelope(err: RelayError, development: bool = False) -> Dict[str, Any]:
    """
    Serialize a RelayError into the caller-facing error envelope.

    Args:
        err: Classified error.
        development: When False, INTERNAL messages are replaced with a
            generic one.
    """
    message = err.message
    if err.kind is ErrorKind.EXTERNAL_PROVIDER and err.provider:
        message = f"{err.provider}: {err.message}"
    elif err.kind is ErrorKind.INTERNAL and not development:
        message = GENERIC_INTERNAL_MESSAGE

    body: Dict[str, Any] = {
        "error": err.kind.title,
        "message": message,
        "code": err.kind.code,
        "timestamp": iso_now(),
    }
    if err.kind is ErrorKind.VALIDATION and err.details:
        body["details"] = err.details
    return body
