"""
Request context middleware.

Binds the trace ID (X-Trace-ID, else X-Request-ID, else the active
OpenTelemetry trace, else a fresh UUID), a per-request ID and the
conversation session (X-Session-ID) to the logging context, records the HTTP
metrics for every response, and echoes X-Trace-ID / X-Request-ID back.
"""
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from .logging import (
    generate_request_id,
    generate_trace_id,
    get_logger,
    set_request_id,
    set_session_id,
    set_trace_id,
)
from .metrics import record_http_request
from .tracing import get_trace_id_from_context, get_tracer, record_exception, set_span_attribute

logger = get_logger(__name__)


def _resolve_trace_id(request: Request) -> str:
    trace_id = request.headers.get("X-Trace-ID") or request.headers.get("X-Request-ID")
    if trace_id:
        return trace_id
    otel_trace_id = get_trace_id_from_context()
    if otel_trace_id:
        # Same UUID shape as generated IDs
        return str(uuid.UUID(hex=otel_trace_id))
    return generate_trace_id()


class TraceIDMiddleware(BaseHTTPMiddleware):
    """Per-request trace/session context, HTTP metrics and response headers."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        trace_id = _resolve_trace_id(request)
        request_id = generate_request_id()
        session_id = request.headers.get("X-Session-ID")
        method, path = request.method, request.url.path

        set_trace_id(trace_id)
        set_request_id(request_id)
        set_session_id(session_id)
        started = time.perf_counter()
        try:
            with get_tracer().start_as_current_span("http.request"):
                set_span_attribute("http.method", method)
                set_span_attribute("http.route", path)
                if session_id:
                    set_span_attribute("session.id", session_id)

                try:
                    response = await call_next(request)
                except Exception as e:
                    elapsed = time.perf_counter() - started
                    record_exception(e)
                    record_http_request(method, path, 500, elapsed)
                    logger.error(
                        "request_failed",
                        method=method,
                        path=path,
                        error=str(e),
                        error_type=type(e).__name__,
                        latency_ms=int(elapsed * 1000),
                        exc_info=True,
                    )
                    raise

                elapsed = time.perf_counter() - started
                set_span_attribute("http.status_code", response.status_code)
                record_http_request(method, path, response.status_code, elapsed)
                logger.info(
                    "request_completed",
                    method=method,
                    path=path,
                    status_code=response.status_code,
                    latency_ms=int(elapsed * 1000),
                )
                response.headers["X-Trace-ID"] = trace_id
                response.headers["X-Request-ID"] = request_id
                return response
        finally:
            set_trace_id(None)
            set_request_id(None)
            set_session_id(None)
