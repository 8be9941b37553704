"""
Prometheus metrics collection module.

Metrics Categories:
- RED Metrics: Rate, Errors, Duration of the gateway's own HTTP surface
- Dispatch Metrics: Upstream queue depth, in-flight calls, retries, wait time
- Gateway Metrics: Routing decisions, session store size, stream outcomes
- Resource Metrics: CPU, memory

All metrics follow Prometheus naming conventions:
- Counters: _total suffix
- Histograms: _seconds suffix for duration
- Gauges: No special suffix
"""
import re

import psutil
from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    generate_latest,
    REGISTRY,
    CONTENT_TYPE_LATEST,
)

from gateway.core.logging import get_logger

logger = get_logger(__name__)

registry = REGISTRY

# ============================================================================
# RED METRICS - Rate, Errors, Duration
# ============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total number of HTTP requests",
    ["method", "endpoint", "status"],
    registry=registry,
)

http_errors_total = Counter(
    "http_errors_total",
    "Total number of HTTP errors",
    ["method", "endpoint", "status_code"],
    registry=registry,
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
    registry=registry,
)

# ============================================================================
# DISPATCH METRICS
# ============================================================================

upstream_queue_depth = Gauge(
    "upstream_queue_depth",
    "Number of upstream calls waiting for a concurrency slot",
    ["queue"],
    registry=registry,
)

upstream_in_flight = Gauge(
    "upstream_in_flight",
    "Number of upstream calls currently holding a concurrency slot",
    ["queue"],
    registry=registry,
)

upstream_calls_total = Counter(
    "upstream_calls_total",
    "Total number of upstream call attempts",
    ["operation", "outcome"],  # outcome: success, retryable_error, error
    registry=registry,
)

upstream_retries_total = Counter(
    "upstream_retries_total",
    "Total number of upstream retries scheduled after a retryable failure",
    ["operation"],
    registry=registry,
)

upstream_retries_exhausted_total = Counter(
    "upstream_retries_exhausted_total",
    "Total number of operations that failed after exhausting retries",
    ["operation"],
    registry=registry,
)

upstream_call_duration_seconds = Histogram(
    "upstream_call_duration_seconds",
    "Upstream call attempt latency in seconds",
    ["operation"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
    registry=registry,
)

upstream_queue_wait_seconds = Histogram(
    "upstream_queue_wait_seconds",
    "Time spent waiting for a concurrency slot and the pacing gate",
    ["queue"],
    buckets=[0.0, 0.1, 0.5, 1.0, 1.5, 3.0, 5.0, 10.0, 30.0, 60.0],
    registry=registry,
)

# ============================================================================
# GATEWAY METRICS
# ============================================================================

routing_decisions_total = Counter(
    "routing_decisions_total",
    "Total number of routing decisions",
    ["route", "forced"],
    registry=registry,
)

sessions_active = Gauge(
    "sessions_active",
    "Number of live conversation sessions",
    registry=registry,
)

sessions_evicted_total = Counter(
    "sessions_evicted_total",
    "Total number of evicted sessions",
    ["reason"],  # "expired", "capacity", "deleted"
    registry=registry,
)

stream_events_total = Counter(
    "stream_events_total",
    "Total number of stream events emitted",
    ["event"],
    registry=registry,
)

stream_outcomes_total = Counter(
    "stream_outcomes_total",
    "Total number of finished streams by outcome",
    ["outcome"],  # "end", "error", "cancelled"
    registry=registry,
)

source_filter_warnings_total = Counter(
    "source_filter_warnings_total",
    "Total number of source filter warnings",
    ["kind"],
    registry=registry,
)

# ============================================================================
# RESOURCE METRICS
# ============================================================================

system_cpu_usage_percent = Gauge(
    "system_cpu_usage_percent",
    "System CPU usage percentage",
    registry=registry,
)

system_memory_usage_bytes = Gauge(
    "system_memory_usage_bytes",
    "System memory usage in bytes",
    registry=registry,
)


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

_SESSION_PATH = re.compile(r"^/sessions/[^/]+$")


def normalize_endpoint(path: str) -> str:
    """
    Normalize endpoint path for metrics.

    Replaces dynamic segments (session IDs) with placeholders
    to avoid high cardinality in metrics.

    Examples:
        /sessions/session-1700000000-ab12 -> /sessions/{session_id}
        /chat?x=1 -> /chat
        /health -> /health
    """
    if "?" in path:
        path = path.split("?")[0]

    if _SESSION_PATH.match(path):
        return "/sessions/{session_id}"

    return path


def record_http_request(
    method: str,
    endpoint: str,
    status_code: int,
    duration_seconds: float,
) -> None:
    """
    Record HTTP request metrics (RED metrics).

    Args:
        method: HTTP method (GET, POST, etc.)
        endpoint: Request path (normalized here)
        status_code: HTTP status code
        duration_seconds: Request duration in seconds
    """
    normalized_endpoint = normalize_endpoint(endpoint)

    http_requests_total.labels(
        method=method,
        endpoint=normalized_endpoint,
        status=str(status_code),
    ).inc()

    if status_code >= 400:
        http_errors_total.labels(
            method=method,
            endpoint=normalized_endpoint,
            status_code=str(status_code),
        ).inc()

    http_request_duration_seconds.labels(
        method=method,
        endpoint=normalized_endpoint,
    ).observe(duration_seconds)


def record_upstream_call(operation: str, outcome: str, duration_seconds: float) -> None:
    """Record one upstream call attempt."""
    upstream_calls_total.labels(operation=operation, outcome=outcome).inc()
    upstream_call_duration_seconds.labels(operation=operation).observe(duration_seconds)


def record_upstream_retry(operation: str) -> None:
    upstream_retries_total.labels(operation=operation).inc()


def record_retries_exhausted(operation: str) -> None:
    upstream_retries_exhausted_total.labels(operation=operation).inc()


def record_queue_wait(queue: str, wait_seconds: float) -> None:
    upstream_queue_wait_seconds.labels(queue=queue).observe(wait_seconds)


def update_queue_metrics(queue: str, waiting: int, in_flight: int) -> None:
    """
    Update dispatch queue gauges.

    Args:
        queue: Queue name
        waiting: Calls waiting for a slot
        in_flight: Calls holding a slot
    """
    upstream_queue_depth.labels(queue=queue).set(waiting)
    upstream_in_flight.labels(queue=queue).set(in_flight)


def record_routing_decision(route: str, forced: bool = False) -> None:
    routing_decisions_total.labels(route=route, forced=str(forced).lower()).inc()


def update_session_metrics(active: int) -> None:
    sessions_active.set(active)


def record_session_eviction(reason: str, count: int = 1) -> None:
    if count > 0:
        sessions_evicted_total.labels(reason=reason).inc(count)


def record_stream_event(event: str) -> None:
    stream_events_total.labels(event=event).inc()


def record_stream_outcome(outcome: str) -> None:
    stream_outcomes_total.labels(outcome=outcome).inc()


def record_source_filter_warning(kind: str) -> None:
    source_filter_warnings_total.labels(kind=kind).inc()


def update_resource_metrics() -> None:
    """
    Update system resource metrics (CPU, memory).

    Called on-demand when metrics are scraped.
    """
    try:
        cpu_percent = psutil.cpu_percent(interval=0.1)
        system_cpu_usage_percent.set(cpu_percent)

        memory = psutil.virtual_memory()
        system_memory_usage_bytes.set(memory.used)
    except Exception as e:
        logger.warning(
            "metrics_resource_update_failed",
            error=str(e),
            error_type=type(e).__name__,
        )


def get_metrics() -> bytes:
    """
    Get Prometheus metrics in text format.

    Returns:
        Prometheus metrics text format
    """
    update_resource_metrics()

    return generate_latest(registry)


def get_metrics_content_type() -> str:
    """Get content type for metrics endpoint."""
    return CONTENT_TYPE_LATEST
