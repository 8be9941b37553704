"""
Unit tests for OpenTelemetry tracing helpers.

Tests verify:
- Trace IDs are read from the active span
- W3C trace context is injected into upstream headers only inside a span
- Span helpers are safe outside a recorded span
"""
import pytest
from opentelemetry.sdk.trace import TracerProvider

from gateway.core.tracing import (
    StatusCode,
    get_trace_id_from_context,
    inject_trace_context,
    record_exception,
    set_span_attribute,
    set_span_status,
)


@pytest.fixture
def tracer():
    return TracerProvider().get_tracer("gateway.tests")


class TestTraceContext:

    def test_trace_id_inside_span(self, tracer):
        with tracer.start_as_current_span("upstream.dispatch") as span:
            trace_id = get_trace_id_from_context()

        assert trace_id == format(span.get_span_context().trace_id, "032x")
        assert len(trace_id) == 32

    def test_no_trace_id_outside_span(self):
        assert get_trace_id_from_context() is None

    def test_inject_inside_span(self, tracer):
        headers = {"Content-Type": "application/json"}
        with tracer.start_as_current_span("upstream.dispatch"):
            trace_id = get_trace_id_from_context()
            inject_trace_context(headers)

        assert headers["traceparent"].split("-")[1] == trace_id
        assert headers["Content-Type"] == "application/json"

    def test_inject_outside_span_adds_nothing(self):
        headers = {}
        inject_trace_context(headers)

        assert headers == {}


class TestSpanHelpers:

    def test_helpers_without_active_span(self):
        # Should not raise
        set_span_attribute("route", "agent")
        set_span_status(StatusCode.ERROR, "upstream failed")
        record_exception(ValueError("boom"))

    def test_helpers_on_active_span(self, tracer):
        with tracer.start_as_current_span("http.request") as span:
            set_span_attribute("session.id", "s1")
            record_exception(RuntimeError("upstream failed"))

        assert span.attributes["session.id"] == "s1"
        assert span.status.status_code == StatusCode.ERROR
        assert span.events[0].name == "exception"
