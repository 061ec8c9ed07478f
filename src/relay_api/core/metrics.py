"""
Prometheus Metrics for the relay.

Metrics Exposed:
    relay_requests_total{capability,status}       - Counter of pipeline requests by outcome status
    relay_request_duration_seconds{capability}    - Histogram of end-to-end latency
    relay_cache_events_total{namespace,result}    - Counter of cache hits/misses/stores
    relay_provider_calls_total{provider,outcome}  - Counter of upstream calls

Each RelayMetrics owns its CollectorRegistry, so several apps (one per test)
can live in the same process without duplicate-series errors.

Usage:
    metrics = RelayMetrics()
    metrics.record_request("text-analysis", 200, 0.42)
    metrics.record_cache("completion", "hit")
    content, content_type = metrics.get_metrics_response()
"""
from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)


class RelayMetrics:
    """Counters and histograms for the request pipeline."""

    def __init__(self) -> None:
        self._registry = CollectorRegistry()

        self._requests_total = Counter(
            "relay_requests_total",
            "Total pipeline requests",
            ["capability", "status"],
            registry=self._registry,
        )
        self._request_duration = Histogram(
            "relay_request_duration_seconds",
            "Pipeline request duration in seconds",
            ["capability"],
            buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
            registry=self._registry,
        )
        self._cache_events = Counter(
            "relay_cache_events_total",
            "Cache lookups and stores",
            ["namespace", "result"],
            registry=self._registry,
        )
        self._provider_calls = Counter(
            "relay_provider_calls_total",
            "Upstream provider calls",
            ["provider", "outcome"],
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def record_request(self, capability: str, status: int, duration: float) -> None:
        """
        Record a finished pipeline request.

        Args:
            capability: Capability name (e.g., "text-analysis").
            status: HTTP status returned to the caller.
            duration: End-to-end seconds.
        """
        self._requests_total.labels(capability=capability, status=str(status)).inc()
        self._request_duration.labels(capability=capability).observe(duration)

    def record_cache(self, namespace: str, result: str) -> None:
        """result is one of "hit", "miss", "store", "store_failed"."""
        self._cache_events.labels(namespace=namespace, result=result).inc()

    def record_provider_call(self, provider: str, outcome: str) -> None:
        """outcome is "success" or "failure"."""
        self._provider_calls.labels(provider=provider, outcome=outcome).inc()

    def get_metrics_response(self) -> tuple[bytes, str]:
        """
        Get metrics in Prometheus text format.

        Returns:
            Tuple of (content_bytes, content_type)
        """
        return generate_latest(self._registry), CONTENT_TYPE_LATEST
