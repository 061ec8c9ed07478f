"""
Shared request pipeline.

Components:
    - auth.py: Authenticator (bearer token or static key)
    - cache.py: Namespaced TTL response cache
    - call_log.py: One LogRecord per request, best-effort sink
    - handler.py: Capability description and RequestPipeline
"""
from .auth import AuthContext, Authenticator, AuthMethod
from .cache import ResponseCache
from .call_log import CallLogger, LogRecord
from .handler import Capability, PipelineRequest, PipelineResult, RequestPipeline

__all__ = [
    "AuthContext",
    "Authenticator",
    "AuthMethod",
    "ResponseCache",
    "CallLogger",
    "LogRecord",
    "Capability",
    "PipelineRequest",
    "PipelineResult",
    "RequestPipeline",
]
