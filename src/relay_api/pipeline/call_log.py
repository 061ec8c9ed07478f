"""
Call Logger: one LogRecord per pipeline request, written to a log sink.

Writes are best-effort. A sink failure is reported on the process log
(the secondary channel) and never reaches the caller.

Sinks:
    SupabaseLogSink  inserts into the ``unified_logs`` table
    ProcessLogSink   writes records to the process log only (used when no
                     datastore is configured)

Row layout written by SupabaseLogSink:
    event_category  "api_call"
    event_type      "external_api"
    user_id         caller identity for token callers, else null
    event_data      session_id, service_name, endpoint, method,
                    request_body, response_status, duration, error_message,
                    cache_status
    metadata        {"timestamp": ..., "api_middlelayer": true}
"""
from __future__ import annotations

import random
import string
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional, Protocol

from relay_api.core.logging import debug, fail, get_logger, info
from relay_api.providers.supabase import SupabaseClient
from relay_api.utils.timeit import iso_now

_LOG = get_logger("relay.call_log")

LOG_TABLE = "unified_logs"


def new_session_id() -> str:
    """``api_<epoch ms>_<9 random base36 chars>``"""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"api_{int(time.time() * 1000)}_{suffix}"


@dataclass(frozen=True)
class LogRecord:
    session_id: str
    service_name: str
    endpoint: str
    method: str
    request_summary: Dict[str, Any]
    response_status: int
    duration_ms: int
    error_message: Optional[str] = None
    timestamp: str = field(default_factory=iso_now)
    identity: Optional[str] = None
    cache_status: Optional[str] = None


class LogSink(Protocol):
    def write(self, record: LogRecord) -> None: ...

    def write_event(self, category: str, event_type: str, user_id: Optional[str], data: Dict[str, Any]) -> None: ...


class SupabaseLogSink:
    """Persist records into the shared ``unified_logs`` table."""

    def __init__(self, client: SupabaseClient):
        self._client = client

    def write(self, record: LogRecord) -> None:
        self._client.insert(
            LOG_TABLE,
            {
                "event_category": "api_call",
                "event_type": "external_api",
                "user_id": record.identity,
                "event_data": {
                    "session_id": record.session_id,
                    "service_name": record.service_name,
                    "endpoint": record.endpoint,
                    "method": record.method,
                    "request_body": record.request_summary,
                    "response_status": record.response_status,
                    "duration": record.duration_ms,
                    "error_message": record.error_message,
                    "cache_status": record.cache_status,
                },
                "metadata": {"timestamp": record.timestamp, "api_middlelayer": True},
            },
            returning=False,
        )

    def write_event(self, category: str, event_type: str, user_id: Optional[str], data: Dict[str, Any]) -> None:
        self._client.insert(
            LOG_TABLE,
            {
                "event_category": category,
                "event_type": event_type,
                "user_id": user_id,
                "event_data": data,
                "metadata": {"timestamp": iso_now(), "api_middlelayer": True},
            },
            returning=False,
        )


class ProcessLogSink:
    """Fallback sink: records go to the process log only."""

    def write(self, record: LogRecord) -> None:
        info(
            _LOG, "call",
            service=record.service_name,
            endpoint=record.endpoint,
            status=record.response_status,
            duration_ms=record.duration_ms,
        )

    def write_event(self, category: str, event_type: str, user_id: Optional[str], data: Dict[str, Any]) -> None:
        info(_LOG, "event", category=category, event_type=event_type)


class CallLogger:
    """
    Best-effort writer in front of a LogSink.

    ``session_id`` identifies this process instance and is stamped on
    every record built through :meth:`build`.
    """

    def __init__(self, sink: LogSink, session_id: Optional[str] = None):
        self.sink = sink
        self.session_id = session_id or new_session_id()

    def build(self, **fields: Any) -> LogRecord:
        return LogRecord(session_id=self.session_id, **fields)

    def record(self, record: LogRecord) -> bool:
        """
        Write a record. Never raises.

        Returns:
            True if the sink accepted the record.
        """
        try:
            self.sink.write(record)
        except Exception as e:
            fail(
                _LOG, "log_sink_write_failed",
                service=record.service_name,
                endpoint=record.endpoint,
                status=record.response_status,
                error=f"{type(e).__name__}: {getattr(e, 'cause', None) or e}",
            )
            return False
        debug(_LOG, "log_written", record=asdict(record))
        return True

    def record_event(self, category: str, event_type: str, user_id: Optional[str], data: Dict[str, Any]) -> bool:
        """Write a domain event row (e.g. ``email_sent``). Never raises."""
        try:
            self.sink.write_event(category, event_type, user_id, data)
        except Exception as e:
            fail(_LOG, "log_sink_event_failed", event_type=event_type, error=f"{type(e).__name__}: {e}")
            return False
        return True
