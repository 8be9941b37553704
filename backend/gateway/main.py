import asyncio
import os
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .core.config import get_settings
from .core.errors import GatewayError, RetriesExhaustedError
from .core.logging import configure_logging, get_logger, get_trace_id
from .core.middleware import TraceIDMiddleware
from .core.tracing import (
    StatusCode,
    configure_tracing,
    get_trace_id_from_context,
    instrument_fastapi,
    record_exception,
    set_span_status,
    shutdown_tracing,
)
from .routes import chat, health, metrics, sessions
from .services.sessions.store import get_session_store, run_session_sweeper

# LOG_JSON=false switches to console rendering
log_level = os.getenv("LOG_LEVEL", "INFO")
json_output = os.getenv("LOG_JSON", "true").lower() == "true"
configure_logging(log_level=log_level, json_output=json_output)

logger = get_logger(__name__)

configure_tracing()

app = FastAPI(
    title="Knowledge Gateway API",
    description="Rate-limited chat gateway in front of a generative-AI retrieval backend",
    version="1.0.0"
)

# Browser clients read the trace and Retry-After headers
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Trace-ID", "X-Request-ID", "Retry-After"],
)

app.add_middleware(TraceIDMiddleware)

instrument_fastapi(app)

_sweeper_task: Optional[asyncio.Task] = None


@app.on_event("startup")
async def startup_event():
    """Validate configuration and start the session sweeper."""
    global _sweeper_task
    logger.info("app_startup_started")

    settings = get_settings()
    if not settings.knowledge_base_id:
        logger.warning(
            "app_startup_knowledge_base_unconfigured",
            message="KNOWLEDGE_BASE_ID not set. Knowledge-base routing will return configuration errors.",
        )
    if not (settings.agent_alias_id or settings.agent_alias_url):
        logger.warning(
            "app_startup_agent_alias_unconfigured",
            message="AGENT_ALIAS_ID / AGENT_ALIAS_URL not set. Agent routing will return configuration errors.",
        )

    _sweeper_task = asyncio.create_task(
        run_session_sweeper(get_session_store(), settings.sessions.sweep_interval_seconds)
    )
    logger.info("app_startup_completed")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup resources on application shutdown."""
    global _sweeper_task
    logger.info("app_shutdown_started")
    if _sweeper_task is not None:
        _sweeper_task.cancel()
        try:
            await _sweeper_task
        except asyncio.CancelledError:
            pass
        _sweeper_task = None
    shutdown_tracing()
    logger.info("app_shutdown_completed")


def _error_response(
    status_code: int,
    content: Dict[str, Any],
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    """JSON error body with trace ID. HTTP metrics are recorded by TraceIDMiddleware."""
    trace_id = get_trace_id() or get_trace_id_from_context()
    response = JSONResponse(
        status_code=status_code,
        content={**content, "status_code": status_code, "trace_id": trace_id},
        headers=headers,
    )
    if trace_id:
        response.headers["X-Trace-ID"] = trace_id
    return response


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies are rejected with 400 before any upstream call."""
    errors = [
        {
            "field": ".".join(str(part) for part in error.get("loc", ()) if part != "body"),
            "message": error.get("msg"),
            "type": error.get("type"),
        }
        for error in exc.errors()
    ]
    logger.warning(
        "request_validation_failed",
        path=request.url.path,
        method=request.method,
        error_count=len(errors),
    )
    return _error_response(400, {"detail": "Invalid request", "errors": errors})


@app.exception_handler(GatewayError)
async def gateway_exception_handler(request: Request, exc: GatewayError):
    """Map the gateway error taxonomy onto HTTP responses."""
    set_span_status(StatusCode.ERROR if exc.status_code >= 500 else StatusCode.OK, exc.message)

    headers = None
    if isinstance(exc, RetriesExhaustedError):
        headers = {"Retry-After": str(max(1, int(round(exc.retry_after))))}

    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "gateway_error",
        status_code=exc.status_code,
        error=exc.message,
        error_type=exc.error_type,
        path=request.url.path,
        method=request.method,
    )
    return _error_response(
        exc.status_code,
        {"detail": exc.message, **exc.to_payload()},
        headers=headers,
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions."""
    set_span_status(StatusCode.ERROR if exc.status_code >= 500 else StatusCode.OK, str(exc.detail))
    logger.warning(
        "http_exception",
        status_code=exc.status_code,
        detail=exc.detail,
        path=request.url.path,
        method=request.method,
    )
    return _error_response(exc.status_code, {"detail": exc.detail})


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions."""
    record_exception(exc)
    set_span_status(StatusCode.ERROR, str(exc))

    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
        exc_info=True,
    )
    return _error_response(500, {"detail": "Internal server error"})


app.include_router(health.router, prefix="/health", tags=["Health"])
app.include_router(chat.router, prefix="/chat", tags=["Chat"])
app.include_router(sessions.router, prefix="/sessions", tags=["Sessions"])
app.include_router(metrics.router, prefix="/metrics", tags=["Metrics"])
