"""
OpenTelemetry tracing for the gateway.

Spans cover the inbound request (``http.request``) and every upstream
dispatch attempt (``upstream.dispatch``). The W3C ``traceparent`` header is
forwarded to the backend so its spans join the gateway's trace.

Configuration:
- OTEL_SERVICE_NAME: Service name (default: knowledge_gateway)
- OTEL_EXPORTER_OTLP_ENDPOINT: OTLP gRPC endpoint; spans are not exported when unset
- OTEL_TRACES_SAMPLER_ARG: Sampling ratio between 0.0 and 1.0 (default: 1.0)
"""
import os
from typing import Any, Dict, Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased
from opentelemetry.trace import Status, StatusCode, Tracer
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

from .logging import get_logger

logger = get_logger(__name__)

TRACER_NAME = "gateway"

_tracer_provider: Optional[TracerProvider] = None
_propagator = TraceContextTextMapPropagator()


def configure_tracing(service_name: Optional[str] = None, otlp_endpoint: Optional[str] = None) -> None:
    """Install the SDK tracer provider, exporting over OTLP when an endpoint is configured."""
    global _tracer_provider

    service_name = service_name or os.getenv("OTEL_SERVICE_NAME", "knowledge_gateway")
    otlp_endpoint = otlp_endpoint or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    sampling_rate = min(1.0, max(0.0, float(os.getenv("OTEL_TRACES_SAMPLER_ARG", "1.0"))))

    _tracer_provider = TracerProvider(
        resource=Resource.create({"service.name": service_name, "service.version": "1.0.0"}),
        sampler=ParentBased(TraceIdRatioBased(sampling_rate)),
    )
    if otlp_endpoint:
        try:
            _tracer_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint)))
        except Exception as e:
            logger.warning(
                "tracing_otlp_configuration_failed",
                endpoint=otlp_endpoint,
                error=str(e),
                error_type=type(e).__name__,
            )
            otlp_endpoint = None

    trace.set_tracer_provider(_tracer_provider)
    logger.info(
        "tracing_configured",
        service_name=service_name,
        sampling_rate=sampling_rate,
        otlp_endpoint=otlp_endpoint,
    )


def get_tracer() -> Tracer:
    """Tracer from the registered provider (a no-op one until configure_tracing runs)."""
    return trace.get_tracer(TRACER_NAME)


def inject_trace_context(headers: Dict[str, str]) -> None:
    """Add ``traceparent`` for the active span to outgoing upstream headers."""
    if trace.get_current_span().get_span_context().is_valid:
        _propagator.inject(headers)


def get_trace_id_from_context() -> Optional[str]:
    """Hex trace ID of the active span, or None outside a recorded span."""
    span_context = trace.get_current_span().get_span_context()
    return format(span_context.trace_id, "032x") if span_context.is_valid else None


def set_span_attribute(key: str, value: Any) -> None:
    trace.get_current_span().set_attribute(key, value)


def record_exception(exception: BaseException) -> None:
    span = trace.get_current_span()
    span.record_exception(exception)
    span.set_status(Status(StatusCode.ERROR, str(exception)))


def set_span_status(status_code: StatusCode, description: Optional[str] = None) -> None:
    # Descriptions are only accepted alongside ERROR
    trace.get_current_span().set_status(
        Status(status_code, description if status_code == StatusCode.ERROR else None)
    )


def instrument_fastapi(app) -> None:
    """Let the FastAPI instrumentation open a server span per request."""
    try:
        FastAPIInstrumentor.instrument_app(app)
    except Exception as e:
        logger.warning(
            "tracing_fastapi_instrumentation_failed",
            error=str(e),
            error_type=type(e).__name__,
        )


def shutdown_tracing() -> None:
    """Flush pending spans on application shutdown."""
    if _tracer_provider is None:
        return
    try:
        _tracer_provider.shutdown()
    except Exception as e:
        logger.warning("tracing_shutdown_failed", error=str(e), error_type=type(e).__name__)
