"""
Structured logging for the gateway.

Events are snake_case names with keyword fields, rendered as JSON in
deployments and as coloured console lines locally. Each entry is stamped
with the service name and, while a request is being served, its trace_id,
request_id and session_id.
"""
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog
from structlog.types import Processor

SERVICE_NAME = "knowledge_gateway"

trace_id_var: ContextVar[Optional[str]] = ContextVar("trace_id", default=None)
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
session_id_var: ContextVar[Optional[str]] = ContextVar("session_id", default=None)

_service_name = SERVICE_NAME


def add_request_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """structlog processor adding the request context variables to an entry."""
    for key, var in (("trace_id", trace_id_var), ("request_id", request_id_var)):
        value = var.get()
        if value:
            event_dict[key] = value
    session_id = session_id_var.get()
    if session_id:
        # An explicit session_id field on the event wins
        event_dict.setdefault("session_id", session_id)
    event_dict["service"] = _service_name
    event_dict.setdefault("timestamp", datetime.now(timezone.utc).isoformat())
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    service_name: Optional[str] = None,
    json_output: bool = True,
) -> None:
    """
    Route structlog through the standard library at ``log_level``.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        service_name: Overrides the ``service`` field (defaults to SERVICE_NAME)
        json_output: JSON lines when True, console rendering when False
    """
    global _service_name
    _service_name = service_name or SERVICE_NAME

    processors: List[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_request_context,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer(),
    ]
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def set_trace_id(trace_id: Optional[str]) -> None:
    trace_id_var.set(trace_id)


def get_trace_id() -> Optional[str]:
    return trace_id_var.get()


def set_request_id(request_id: Optional[str]) -> None:
    request_id_var.set(request_id)


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def set_session_id(session_id: Optional[str]) -> None:
    """Bind the conversation session to log entries of the current request."""
    session_id_var.set(session_id)


def get_session_id() -> Optional[str]:
    return session_id_var.get()


def generate_trace_id() -> str:
    return str(uuid.uuid4())


def generate_request_id() -> str:
    return str(uuid.uuid4())
