"""
Retrieval/generation backend client.

The gateway does not run models; it calls a backend over HTTP (httpx):

- POST /invoke: single-shot call, JSON in and out
  -> {"answer", "citations", "session_id", "metadata"}
- POST /invoke-stream: streaming call, newline-delimited JSON events
  -> {"type": "chunk", "text"} | {"type": "citation", "citation"} |
     {"type": "metadata", "metadata"} | {"type": "complete", "result"} |
     {"type": "error", "message", "code", "status"}

Failures are mapped onto the gateway error taxonomy so the dispatch queue can
classify them: HTTP 429 and throttling codes become UpstreamThrottled, other
HTTP errors keep their status on UpstreamError, timeouts count as 504 and
connection failures as UpstreamUnavailable.

Environment configuration:
- UPSTREAM_API_BASE: Base URL of the backend
- UPSTREAM_API_KEY: Bearer token (optional)
- UPSTREAM_TIMEOUT_SECONDS: Request timeout in seconds (default: 60.0)
"""
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from gateway.core.config import get_settings
from gateway.core.errors import UpstreamError, UpstreamThrottled, UpstreamUnavailable
from gateway.core.logging import get_logger
from gateway.core.tracing import inject_trace_context
from gateway.services.dispatch.retry import THROTTLING_CODES
from gateway.services.streaming.relay import StreamCallbacks

logger = get_logger(__name__)

AGENT_ROUTE = "agent"
KNOWLEDGE_BASE_ROUTE = "knowledge-base"


@dataclass
class UpstreamOptions:
    """Per-call options forwarded to the backend."""

    route: str = AGENT_ROUTE
    model_id: Optional[str] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    instruction_type: str = "default"
    knowledge_base_id: Optional[str] = None
    agent_id: Optional[str] = None
    agent_alias_id: Optional[str] = None
    data_sources: Optional[Dict[str, List[str]]] = None

    def to_payload(self) -> Dict[str, Any]:
        return {key: value for key, value in self.__dict__.items() if value is not None}


@dataclass
class UpstreamResult:
    answer: str
    citations: List[Dict[str, Any]] = field(default_factory=list)
    session_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "UpstreamResult":
        return cls(
            answer=payload.get("answer") or "No answer generated",
            citations=list(payload.get("citations") or []),
            session_id=payload.get("session_id"),
            metadata=dict(payload.get("metadata") or {}),
        )


class UpstreamBackend(ABC):
    """Interface of the retrieval/generation backend."""

    @abstractmethod
    async def invoke(self, query: str, session_id: str, options: UpstreamOptions) -> UpstreamResult:
        """Single-shot call."""

    @abstractmethod
    async def invoke_streaming(
        self,
        query: str,
        session_id: str,
        options: UpstreamOptions,
        callbacks: StreamCallbacks,
    ) -> None:
        """
        Streaming call.

        Invokes ``callbacks`` as events arrive and ``on_complete`` at the end.
        Failures are raised rather than reported through ``on_error`` so the
        dispatch queue can retry attempts that have not emitted anything yet.
        """

    async def health(self) -> Dict[str, Any]:
        return {"status": "unknown"}


def _error_from_body(status: Optional[int], body: Dict[str, Any], fallback: str) -> UpstreamError:
    message = body.get("message") or body.get("error") or fallback
    code = body.get("code")
    if status == 429 or code in THROTTLING_CODES:
        return UpstreamThrottled(message, upstream_status=status or 429, code=code or "ThrottlingException")
    return UpstreamError(message, upstream_status=status, code=code)


def map_http_error(response: httpx.Response) -> UpstreamError:
    """Build the gateway error for a failed backend response."""
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    return _error_from_body(
        response.status_code,
        body,
        f"Upstream returned HTTP {response.status_code}",
    )


class HttpUpstreamBackend(UpstreamBackend):
    """Async HTTP client for the backend."""

    def __init__(
        self,
        api_base: str,
        api_key: Optional[str] = None,
        timeout_seconds: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_base = api_base.rstrip("/")
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        inject_trace_context(headers)
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport)

    @staticmethod
    def _payload(query: str, session_id: str, options: UpstreamOptions) -> Dict[str, Any]:
        return {"query": query, "session_id": session_id, "options": options.to_payload()}

    async def invoke(self, query: str, session_id: str, options: UpstreamOptions) -> UpstreamResult:
        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.api_base}/invoke",
                    headers=self._headers(),
                    json=self._payload(query, session_id, options),
                )
        except httpx.TimeoutException as exc:
            logger.warning("upstream_timeout", route=options.route, error=str(exc), error_type=type(exc).__name__)
            raise UpstreamError(f"Upstream timed out: {exc}", upstream_status=504) from exc
        except httpx.TransportError as exc:
            logger.warning("upstream_unreachable", route=options.route, error=str(exc), error_type=type(exc).__name__)
            raise UpstreamUnavailable(f"Upstream unreachable: {exc}") from exc

        if response.status_code >= 400:
            raise map_http_error(response)

        return UpstreamResult.from_payload(response.json())

    async def invoke_streaming(
        self,
        query: str,
        session_id: str,
        options: UpstreamOptions,
        callbacks: StreamCallbacks,
    ) -> None:
        try:
            async with self._client() as client:
                async with client.stream(
                    "POST",
                    f"{self.api_base}/invoke-stream",
                    headers=self._headers(),
                    json=self._payload(query, session_id, options),
                ) as response:
                    if response.status_code >= 400:
                        await response.aread()
                        raise map_http_error(response)

                    async for line in response.aiter_lines():
                        if not line.strip():
                            continue
                        if await self._dispatch_line(line, callbacks):
                            return
        except httpx.TimeoutException as exc:
            raise UpstreamError(f"Upstream stream timed out: {exc}", upstream_status=504) from exc
        except httpx.TransportError as exc:
            raise UpstreamUnavailable(f"Upstream stream interrupted: {exc}") from exc

    @staticmethod
    async def _dispatch_line(line: str, callbacks: StreamCallbacks) -> bool:
        """Forward one NDJSON event. Returns True once the stream is complete."""
        try:
            event = json.loads(line)
        except ValueError as exc:
            raise UpstreamError(f"Malformed upstream stream event: {line[:100]!r}") from exc

        kind = event.get("type")
        if kind == "chunk":
            await callbacks.on_chunk(event.get("text") or "")
        elif kind == "citation":
            await callbacks.on_citation(event.get("citation") or {})
        elif kind == "metadata":
            await callbacks.on_metadata(event.get("metadata") or {})
        elif kind == "complete":
            await callbacks.on_complete(event.get("result") or {})
            return True
        elif kind == "error":
            raise _error_from_body(event.get("status"), event, "Upstream stream failed")
        else:
            logger.debug("upstream_stream_event_ignored", event_type=kind)
        return False

    async def health(self) -> Dict[str, Any]:
        try:
            async with self._client() as client:
                response = await client.get(f"{self.api_base}/health", headers=self._headers())
            return {
                "status": "healthy" if response.status_code < 400 else "unhealthy",
                "status_code": response.status_code,
            }
        except httpx.HTTPError as exc:
            return {"status": "unreachable", "error": str(exc)}


_upstream_backend: Optional[UpstreamBackend] = None


def get_upstream_backend() -> UpstreamBackend:
    """Global backend client built from settings."""
    global _upstream_backend
    if _upstream_backend is None:
        settings = get_settings()
        _upstream_backend = HttpUpstreamBackend(
            api_base=settings.upstream_api_base,
            api_key=settings.upstream_api_key,
            timeout_seconds=settings.upstream_timeout_seconds,
        )
    return _upstream_backend
