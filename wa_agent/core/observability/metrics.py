"""
Metrics Collector with Prometheus Integration

Provides:
- Prometheus counters/gauges/histograms for resilient operations, cache,
  queue and agent pool
- An in-memory duration recorder with percentile summaries
- ``timed``: scoped timing that records elapsed time on every exit path

Each ``MetricsCollector`` owns its own ``CollectorRegistry``. Collectors are
constructed by the runtime context and passed to the components that report
into them, so tests can build as many as they like without duplicate
registration errors.
"""

import time
from collections import deque
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from wa_agent.core.config.constants import METRICS_MAX_SAMPLES
from wa_agent.core.logging.logger import get_logger

logger = get_logger(__name__)

_CIRCUIT_STATE_VALUES = {"closed": 0, "half_open": 1, "open": 2}


class DurationRecorder:
    """
    Bounded in-memory latency samples per operation.

    Keeps the most recent ``max_samples`` durations (milliseconds) for each
    operation and summarizes them on demand.
    """

    def __init__(self, max_samples: int = METRICS_MAX_SAMPLES):
        self._max_samples = max_samples
        self._samples: dict[str, deque[float]] = {}

    def record(self, operation: str, duration_ms: float) -> None:
        samples = self._samples.get(operation)
        if samples is None:
            samples = deque(maxlen=self._max_samples)
            self._samples[operation] = samples
        samples.append(duration_ms)

    def summary(self, operation: str) -> dict[str, float] | None:
        """
        Summarize recorded durations for one operation.

        Returns:
            count/min/max/avg/p50/p95/p99, or None if nothing was recorded
        """
        samples = self._samples.get(operation)
        if not samples:
            return None

        ordered = sorted(samples)
        count = len(ordered)
        return {
            "count": count,
            "min": ordered[0],
            "max": ordered[-1],
            "avg": sum(ordered) / count,
            "p50": ordered[int(count * 0.5)],
            "p95": ordered[min(int(count * 0.95), count - 1)],
            "p99": ordered[min(int(count * 0.99), count - 1)],
        }

    def summaries(self) -> dict[str, dict[str, float] | None]:
        return {operation: self.summary(operation) for operation in list(self._samples)}


class MetricsCollector:
    """
    Centralized metrics collector.

    STAGE-M: Metrics collection

    Usage:
        metrics = MetricsCollector()
        metrics.record_operation_result("llm-openai", "success")
        with timed(metrics, "llm-openai"):
            ...
        output = metrics.get_prometheus_metrics()
    """

    def __init__(self, registry: CollectorRegistry | None = None, namespace: str = "wa_agent"):
        self.registry = registry or CollectorRegistry()
        self.durations = DurationRecorder()

        self._operation_calls = Counter(
            f"{namespace}_operation_calls_total",
            "Resilient operation calls by outcome",
            ["operation", "outcome"],
            registry=self.registry,
        )
        self._operation_retries = Counter(
            f"{namespace}_operation_retries_total",
            "Failed attempts that were retried",
            ["operation"],
            registry=self.registry,
        )
        self._operation_duration = Histogram(
            f"{namespace}_operation_duration_seconds",
            "Resilient operation latency",
            ["operation"],
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
            registry=self.registry,
        )
        self._circuit_state = Gauge(
            f"{namespace}_circuit_breaker_state",
            "Circuit breaker state (0=closed, 1=half_open, 2=open)",
            ["operation"],
            registry=self.registry,
        )
        self._cache_hits = Counter(
            f"{namespace}_cache_hits_total",
            "Cache hits",
            ["tier"],
            registry=self.registry,
        )
        self._cache_misses = Counter(
            f"{namespace}_cache_misses_total",
            "Cache misses",
            registry=self.registry,
        )
        self._remote_errors = Counter(
            f"{namespace}_remote_errors_total",
            "Degraded remote tier operations",
            ["component", "operation"],
            registry=self.registry,
        )
        self._queue_depth = Gauge(
            f"{namespace}_queue_depth",
            "Current queue depth",
            ["queue_name"],
            registry=self.registry,
        )
        self._agent_pool_size = Gauge(
            f"{namespace}_agent_pool_size",
            "Warm agents currently pooled",
            registry=self.registry,
        )

        logger.debug("Metrics collector initialized", stage="M.0")

    # =========================================================================
    # Resilient Operations
    # =========================================================================

    def record_operation_result(self, operation: str, outcome: str) -> None:
        """Record an execute() outcome: success, failure, rejected, timeout."""
        self._operation_calls.labels(operation=operation, outcome=outcome).inc()

    def record_retry(self, operation: str) -> None:
        self._operation_retries.labels(operation=operation).inc()

    def record_duration(self, operation: str, duration_seconds: float) -> None:
        self._operation_duration.labels(operation=operation).observe(duration_seconds)
        self.durations.record(operation, duration_seconds * 1000)

    def set_circuit_state(self, operation: str, state: str) -> None:
        state_value = _CIRCUIT_STATE_VALUES.get(state, 0)
        self._circuit_state.labels(operation=operation).set(state_value)

    # =========================================================================
    # Cache / Queue / Pool
    # =========================================================================

    def record_cache_hit(self, tier: str) -> None:
        self._cache_hits.labels(tier=tier).inc()

    def record_cache_miss(self) -> None:
        self._cache_misses.inc()

    def record_remote_error(self, component: str, operation: str) -> None:
        self._remote_errors.labels(component=component, operation=operation).inc()

    def set_queue_depth(self, queue_name: str, depth: int) -> None:
        self._queue_depth.labels(queue_name=queue_name).set(depth)

    def set_agent_pool_size(self, size: int) -> None:
        self._agent_pool_size.set(size)

    # =========================================================================
    # Export
    # =========================================================================

    def get_duration_summaries(self) -> dict[str, Any]:
        return self.durations.summaries()

    def get_prometheus_metrics(self) -> bytes:
        """Prometheus text exposition of this collector's registry."""
        return generate_latest(self.registry)

    def get_content_type(self) -> str:
        return CONTENT_TYPE_LATEST


@contextmanager
def timed(metrics: MetricsCollector | None, operation: str) -> Iterator[None]:
    """
    Record the elapsed time of the enclosed block, including when it raises.

    A ``None`` collector turns this into a no-op so call sites need no branch.

    Usage:
        with timed(metrics, "twilio-send"):
            await send(...)
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        if metrics is not None:
            metrics.record_duration(operation, time.perf_counter() - start)
