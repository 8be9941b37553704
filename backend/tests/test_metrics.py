"""
Unit tests for Prometheus metrics collection.

Tests verify:
- RED metrics (Rate, Errors, Duration) are recorded correctly
- Dispatch queue, routing, session and stream metrics are recorded correctly
- Resource metrics (CPU, memory) are updated correctly
- Metrics output is valid Prometheus text
"""
from unittest.mock import MagicMock, patch

import pytest
from prometheus_client import CollectorRegistry

from gateway.core.metrics import (
    get_metrics,
    get_metrics_content_type,
    normalize_endpoint,
    record_http_request,
    record_retries_exhausted,
    record_routing_decision,
    record_session_eviction,
    record_source_filter_warning,
    record_stream_event,
    record_stream_outcome,
    record_upstream_call,
    record_upstream_retry,
    registry,
    sessions_active,
    system_cpu_usage_percent,
    system_memory_usage_bytes,
    update_queue_metrics,
    update_resource_metrics,
    update_session_metrics,
)


def _sample(name, **labels):
    return registry.get_sample_value(name, labels) or 0.0


class TestMetricsInitialization:

    def test_metrics_registry_exists(self):
        assert isinstance(registry, CollectorRegistry)

    def test_get_metrics_content_type(self):
        assert get_metrics_content_type().startswith("text/plain")


class TestEndpointNormalization:
    """Test endpoint normalization for metrics."""

    def test_normalize_session_endpoint(self):
        assert normalize_endpoint("/sessions/session-1700000000-ab12") == "/sessions/{session_id}"

    def test_normalize_strips_query_string(self):
        assert normalize_endpoint("/chat?debug=1") == "/chat"

    @pytest.mark.parametrize("path", ["/health", "/chat/stream", "/sessions", "/metrics"])
    def test_static_endpoints_unchanged(self, path):
        assert normalize_endpoint(path) == path


class TestREDMetrics:
    """Test RED metrics (Rate, Errors, Duration)."""

    def test_record_http_request_success(self):
        before = _sample("http_requests_total", method="GET", endpoint="/chat/status", status="200")

        record_http_request(method="GET", endpoint="/chat/status", status_code=200, duration_seconds=0.1)

        assert _sample("http_requests_total", method="GET", endpoint="/chat/status", status="200") == before + 1
        assert _sample(
            "http_request_duration_seconds_count", method="GET", endpoint="/chat/status"
        ) >= 1

    def test_record_http_request_error(self):
        before = _sample("http_errors_total", method="POST", endpoint="/chat", status_code="429")

        record_http_request(method="POST", endpoint="/chat", status_code=429, duration_seconds=0.05)

        assert _sample("http_errors_total", method="POST", endpoint="/chat", status_code="429") == before + 1

    def test_success_is_not_an_error(self):
        before = _sample("http_errors_total", method="GET", endpoint="/chat/models", status_code="200")

        record_http_request(method="GET", endpoint="/chat/models", status_code=200, duration_seconds=0.01)

        assert _sample("http_errors_total", method="GET", endpoint="/chat/models", status_code="200") == before

    def test_record_http_request_normalizes_endpoint(self):
        before = _sample(
            "http_requests_total", method="DELETE", endpoint="/sessions/{session_id}", status="200"
        )

        record_http_request(method="DELETE", endpoint="/sessions/abc", status_code=200, duration_seconds=0.1)

        assert _sample(
            "http_requests_total", method="DELETE", endpoint="/sessions/{session_id}", status="200"
        ) == before + 1


class TestGatewayMetrics:
    """Test dispatch, routing, session and stream metrics."""

    def test_upstream_call_and_retries(self):
        calls = _sample("upstream_calls_total", operation="invoke_agent", outcome="retryable_error")
        retries = _sample("upstream_retries_total", operation="invoke_agent")
        exhausted = _sample("upstream_retries_exhausted_total", operation="invoke_agent")

        record_upstream_call("invoke_agent", "retryable_error", 0.3)
        record_upstream_retry("invoke_agent")
        record_retries_exhausted("invoke_agent")

        assert _sample("upstream_calls_total", operation="invoke_agent", outcome="retryable_error") == calls + 1
        assert _sample("upstream_retries_total", operation="invoke_agent") == retries + 1
        assert _sample("upstream_retries_exhausted_total", operation="invoke_agent") == exhausted + 1

    def test_queue_gauges(self):
        update_queue_metrics("metrics-test", waiting=3, in_flight=2)

        assert _sample("upstream_queue_depth", queue="metrics-test") == 3
        assert _sample("upstream_in_flight", queue="metrics-test") == 2

    def test_routing_decision(self):
        before = _sample("routing_decisions_total", route="knowledge-base", forced="true")

        record_routing_decision("knowledge-base", forced=True)

        assert _sample("routing_decisions_total", route="knowledge-base", forced="true") == before + 1

    def test_session_metrics(self):
        update_session_metrics(7)
        assert sessions_active._value.get() == 7

        before = _sample("sessions_evicted_total", reason="expired")
        record_session_eviction("expired", 3)
        record_session_eviction("expired", 0)
        assert _sample("sessions_evicted_total", reason="expired") == before + 3

    def test_stream_metrics(self):
        events = _sample("stream_events_total", event="chunk")
        outcomes = _sample("stream_outcomes_total", outcome="cancelled")

        record_stream_event("chunk")
        record_stream_outcome("cancelled")

        assert _sample("stream_events_total", event="chunk") == events + 1
        assert _sample("stream_outcomes_total", outcome="cancelled") == outcomes + 1

    def test_source_filter_warning(self):
        before = _sample("source_filter_warnings_total", kind="rejected")

        record_source_filter_warning("rejected")

        assert _sample("source_filter_warnings_total", kind="rejected") == before + 1


class TestResourceMetrics:
    """Test resource metrics."""

    @patch("gateway.core.metrics.psutil.cpu_percent")
    @patch("gateway.core.metrics.psutil.virtual_memory")
    def test_update_resource_metrics(self, mock_memory, mock_cpu):
        mock_cpu.return_value = 45.5
        mock_memory_obj = MagicMock()
        mock_memory_obj.used = 1024 * 1024 * 512
        mock_memory.return_value = mock_memory_obj

        update_resource_metrics()

        assert system_cpu_usage_percent._value.get() == 45.5
        assert system_memory_usage_bytes._value.get() == 1024 * 1024 * 512

    @patch("gateway.core.metrics.psutil.cpu_percent")
    @patch("gateway.core.metrics.psutil.virtual_memory")
    def test_update_resource_metrics_handles_errors(self, mock_memory, mock_cpu):
        mock_cpu.side_effect = Exception("CPU error")
        mock_memory.side_effect = Exception("Memory error")

        # Should not raise
        update_resource_metrics()


class TestMetricsOutput:

    def test_get_metrics_contains_gateway_metrics(self):
        record_upstream_call("invoke_agent", "success", 0.1)

        output = get_metrics()

        assert isinstance(output, bytes)
        text = output.decode("utf-8")
        assert "http_requests_total" in text
        assert "upstream_calls_total" in text
        assert "system_cpu_usage_percent" in text
