"""
Timing Utilities.

    timeit: context manager measuring a code block with perf_counter()
    iso_now: UTC ISO-8601 timestamp used in every JSON response

Example Usage:
    with timeit("provider_call") as t:
        result = adapter.analyze(request)
    print(f"Took {t.timing.seconds:.3f}s")
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from time import perf_counter
from typing import Any, Dict, Optional


@dataclass
class Timing:
    """
    Timing measurement result.

    Attributes:
        name: What was timed (e.g., "provider_call", "cache_check").
        seconds: Duration in seconds.
        meta: Optional metadata.
    """
    name: str
    seconds: float
    meta: Optional[Dict[str, Any]] = None

    @property
    def ms(self) -> int:
        return int(round(self.seconds * 1000))


class timeit:
    """
    Context manager for timing code blocks.

    The timing is recorded on exit even when the block raises, so callers
    can log the duration of a failed stage from a finally clause.
    """

    def __init__(self, name: str, meta: Optional[Dict[str, Any]] = None):
        self.name = name
        self.meta = meta
        self._t0: float | None = None
        self.timing: Timing | None = None

    def __enter__(self) -> "timeit":
        self._t0 = perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        t1 = perf_counter()
        assert self._t0 is not None
        self.timing = Timing(name=self.name, seconds=(t1 - self._t0), meta=self.meta)

    def elapsed(self) -> float:
        """Seconds since entry, usable while the block is still running."""
        assert self._t0 is not None
        return perf_counter() - self._t0


def iso_now() -> str:
    """Current UTC time as ISO-8601 with millisecond precision and a Z suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
