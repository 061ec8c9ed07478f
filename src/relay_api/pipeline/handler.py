"""
Request pipeline shared by every relayed capability.

Stage flow for one request:

    RECEIVED -> AUTHENTICATING -> AUTHORIZING -> VALIDATING -> CACHE_CHECK
        CACHE_CHECK -- hit  --> RESPONDING
        CACHE_CHECK -- miss --> PROVIDER_CALL -> CACHE_STORE -> RESPONDING
    any stage -- failure --> TERMINAL (error envelope)

Guarantees:
    - Authentication and validation failures never reach the provider.
    - A cache hit never reaches the provider.
    - A miss calls the provider exactly once.
    - A provider failure goes to the capability's fallback when it has one
      (200, nothing cached); otherwise it surfaces as EXTERNAL_PROVIDER.
    - Exactly one LogRecord is written per request, whatever the outcome.
    - Cache-store and log-sink failures never change the response.

Capabilities are described declaratively with :class:`Capability`; the
pipeline itself holds no per-capability logic.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Type

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from relay_api.core.errors import (
    ErrorKind,
    RelayError,
    classify,
    to_envelope,
    validation_error,
    validation_fields,
)
from relay_api.core.logging import fail, get_logger, info, success, verbose, warn
from relay_api.core.metrics import RelayMetrics
from relay_api.pipeline.auth import AuthContext, Authenticator, AuthMethod
from relay_api.pipeline.cache import ResponseCache
from relay_api.pipeline.call_log import CallLogger
from relay_api.utils.timeit import iso_now, timeit

_LOG = get_logger("relay.pipeline")

ANY_AUTH: FrozenSet[AuthMethod] = frozenset(AuthMethod)
TOKEN_ONLY: FrozenSet[AuthMethod] = frozenset({AuthMethod.TOKEN})


class Stage(str, Enum):
    RECEIVED = "received"
    AUTHENTICATING = "authenticating"
    AUTHORIZING = "authorizing"
    VALIDATING = "validating"
    CACHE_CHECK = "cache_check"
    PROVIDER_CALL = "provider_call"
    CACHE_STORE = "cache_store"
    RESPONDING = "responding"
    TERMINAL = "terminal"


@dataclass
class PipelineRequest:
    """Transport-independent view of an inbound HTTP request."""
    method: str
    endpoint: str
    headers: Mapping[str, str]
    body: Any = None
    path_params: Dict[str, str] = field(default_factory=dict)
    query: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PipelineResult:
    status: int
    body: Dict[str, Any]
    cache_status: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    stage: Stage = Stage.TERMINAL


def _default_respond(result: Any, payload: BaseModel) -> Dict[str, Any]:
    return {"success": True, "data": result, "timestamp": iso_now()}


@dataclass
class Capability:
    """
    Declarative description of one relayed operation.

    Attributes:
        name: Capability name used in metrics and logs ("text-analysis").
        service_name: Upstream name written to the LogRecord ("openai").
        schema: pydantic model validating the request (body or query).
        invoke: ``(payload, auth, request) -> result``. Called once per miss.
        auth_methods: Credential kinds this capability accepts.
        namespace: Cache namespace; None disables caching.
        volatile_fields: Field names ignored by cache key derivation.
        cache_content: Maps the payload to the content the key is derived
            from. Defaults to the payload's wire-form dump.
        still_valid: ``(cached, payload) -> bool`` checked on a cache hit; a
            False answer drops the entry and the request is served as a miss.
        fallback: ``(payload, error) -> result`` used when the provider
            fails. None surfaces the failure.
        authorize: ``(auth, request) -> None`` raising AUTHORIZATION.
        required_fields: ``(payload) -> [(field, message), ...]`` for
            variant-specific requirements a flat schema can't express.
        source: "body" or "query", where the schema input comes from.
        summarize: ``(payload) -> dict`` request summary for the LogRecord.
        respond: ``(result, payload) -> body`` response builder.
        success_status: HTTP status on success.
        cache_control: Cache-Control header value for success responses.
    """
    name: str
    service_name: str
    schema: Type[BaseModel]
    invoke: Callable[[Any, AuthContext, PipelineRequest], Any]
    auth_methods: FrozenSet[AuthMethod] = TOKEN_ONLY
    namespace: Optional[str] = None
    volatile_fields: Iterable[str] = ()
    cache_content: Optional[Callable[[Any], Any]] = None
    still_valid: Optional[Callable[[Any, Any], bool]] = None
    fallback: Optional[Callable[[Any, RelayError], Any]] = None
    authorize: Optional[Callable[[AuthContext, PipelineRequest], None]] = None
    required_fields: Optional[Callable[[Any], List[tuple]]] = None
    source: str = "body"
    summarize: Optional[Callable[[Any], Dict[str, Any]]] = None
    respond: Callable[[Any, Any], Dict[str, Any]] = _default_respond
    success_status: int = 200
    cache_control: Optional[str] = None

    @property
    def cacheable(self) -> bool:
        return self.namespace is not None


class RequestPipeline:
    """
    Runs capabilities through the shared stage flow.

    One instance per application, built by the container with its
    collaborators injected.
    """

    def __init__(
        self,
        authenticator: Authenticator,
        cache: ResponseCache,
        call_logger: CallLogger,
        metrics: RelayMetrics,
        development: bool = False,
    ):
        self.authenticator = authenticator
        self.cache = cache
        self.call_logger = call_logger
        self.metrics = metrics
        self.development = development

    def run(self, capability: Capability, request: PipelineRequest) -> PipelineResult:
        """
        Process one request. Never raises; failures become error envelopes.
        """
        stage = Stage.RECEIVED
        auth: Optional[AuthContext] = None
        payload: Any = None
        summary: Dict[str, Any] = {}
        cache_status: Optional[str] = None
        error_message: Optional[str] = None
        result: Optional[PipelineResult] = None

        with timeit(capability.name) as t:
            try:
                stage = Stage.AUTHENTICATING
                auth = self.authenticator.authenticate(request.headers)
                if auth.auth_method not in capability.auth_methods:
                    raise RelayError.authentication(
                        f"{auth.auth_method.value} credentials are not accepted here"
                    )
                verbose(_LOG, "stage", event=stage.value, identity=auth.identity)

                if capability.authorize is not None:
                    stage = Stage.AUTHORIZING
                    capability.authorize(auth, request)

                stage = Stage.VALIDATING
                payload = self._validate(capability, request)
                summary = capability.summarize(payload) if capability.summarize else {}
                verbose(_LOG, "stage", event=stage.value)

                key: Optional[str] = None
                if capability.cacheable:
                    stage = Stage.CACHE_CHECK
                    key = self._key(capability, payload)
                    cached = self.cache.get(key)
                    if cached is not None and capability.still_valid is not None \
                            and not capability.still_valid(cached, payload):
                        warn(_LOG, "cache_entry_stale", key=key[:24])
                        self.cache.delete(key)
                        cached = None
                    if cached is not None:
                        cache_status = "hit"
                        self.metrics.record_cache(capability.namespace, "hit")
                        stage = Stage.RESPONDING
                        result = self._respond(capability, cached, payload, cache_status)
                        return result
                    cache_status = "miss"
                    self.metrics.record_cache(capability.namespace, "miss")
                    info(_LOG, "cache_miss", key=key[:24])

                stage = Stage.PROVIDER_CALL
                try:
                    with timeit("provider_call") as pt:
                        value = capability.invoke(payload, auth, request)
                except RelayError as e:
                    if e.kind is not ErrorKind.EXTERNAL_PROVIDER or capability.fallback is None:
                        raise
                    self.metrics.record_provider_call(capability.service_name, "failure")
                    error_message = e.cause or e.message
                    warn(_LOG, "provider_fallback", provider=capability.service_name, error=error_message)
                    cache_status = "fallback"
                    stage = Stage.RESPONDING
                    result = self._respond(capability, capability.fallback(payload, e), payload, cache_status)
                    return result
                self.metrics.record_provider_call(capability.service_name, "success")
                verbose(_LOG, "stage", event=stage.value, seconds=round(pt.timing.seconds, 4))

                if key is not None:
                    stage = Stage.CACHE_STORE
                    self._store(capability, key, value)

                stage = Stage.RESPONDING
                result = self._respond(capability, value, payload, cache_status)
                return result

            except Exception as e:
                err = classify(e)
                if err.kind is ErrorKind.EXTERNAL_PROVIDER and stage is Stage.PROVIDER_CALL:
                    self.metrics.record_provider_call(capability.service_name, "failure")
                error_message = err.cause or err.message
                fail(
                    _LOG, "request_failed",
                    capability=capability.name,
                    stage=stage.value,
                    code=err.code,
                    status=err.status,
                    error=error_message,
                    retryable=err.retryable,
                    exc_info=err.kind is ErrorKind.INTERNAL,
                )
                result = PipelineResult(
                    status=err.status,
                    body=to_envelope(err, development=self.development),
                    cache_status=cache_status,
                    stage=Stage.TERMINAL,
                )
                return result

            finally:
                # timeit has not exited yet, read the running clock
                elapsed = t.elapsed()
                status = result.status if result is not None else 500
                self.metrics.record_request(capability.name, status, elapsed)
                self.call_logger.record(
                    self.call_logger.build(
                        service_name=capability.service_name,
                        endpoint=request.endpoint,
                        method=request.method,
                        request_summary=summary,
                        response_status=status,
                        duration_ms=int(round(elapsed * 1000)),
                        error_message=error_message,
                        identity=auth.identity if auth is not None and not auth.is_system else None,
                        cache_status=cache_status,
                    )
                )
                if result is not None and result.status < 400:
                    success(_LOG, "done", capability=capability.name, status=status,
                            cache=cache_status, seconds=round(elapsed, 4))

    # ─────────────────────────────────────────────────────────────────────────
    # Stages
    # ─────────────────────────────────────────────────────────────────────────

    def _validate(self, capability: Capability, request: PipelineRequest) -> Any:
        raw = request.query if capability.source == "query" else request.body
        if capability.source == "body" and not isinstance(raw, dict):
            raise validation_error([{"field": "body", "message": "Request body must be a JSON object"}])

        try:
            payload = capability.schema.model_validate(raw)
        except PydanticValidationError as e:
            raise validation_error(validation_fields(e)) from e

        if capability.required_fields is not None:
            missing = capability.required_fields(payload)
            if missing:
                raise validation_error([{"field": f, "message": m} for f, m in missing])
        return payload

    @staticmethod
    def _key(capability: Capability, payload: Any) -> str:
        if capability.cache_content is not None:
            content = capability.cache_content(payload)
        else:
            content = payload.model_dump(mode="json", by_alias=True, exclude_none=True)
        return ResponseCache.key(content, capability.namespace, capability.volatile_fields)

    def _store(self, capability: Capability, key: str, value: Any) -> None:
        try:
            self.cache.set(key, value, capability.namespace)
        except Exception as e:
            self.metrics.record_cache(capability.namespace, "store_failed")
            warn(_LOG, "cache_store_failed", key=key[:24], error=str(e))
            return
        self.metrics.record_cache(capability.namespace, "store")

    @staticmethod
    def _respond(capability: Capability, value: Any, payload: Any, cache_status: Optional[str]) -> PipelineResult:
        headers = {}
        if capability.cache_control:
            headers["Cache-Control"] = capability.cache_control
        if cache_status in ("hit", "miss"):
            headers["X-Cache"] = cache_status.upper()
        return PipelineResult(
            status=capability.success_status,
            body=capability.respond(value, payload),
            cache_status=cache_status,
            headers=headers,
            stage=Stage.RESPONDING,
        )
