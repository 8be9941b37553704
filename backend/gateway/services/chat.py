"""
Chat orchestration.

One request flows through:
    source filter -> intent router -> session lookup -> context window
    -> dispatch queue -> upstream backend (single-shot or streaming)

The session is only updated after the upstream call succeeds. Streaming
calls go through the same dispatch queue; the queue slot is held for the
whole stream.
"""
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional

from gateway.core.config import Settings, get_settings
from gateway.core.errors import ConfigurationError, StreamTransportError
from gateway.core.logging import get_logger, set_session_id
from gateway.core.metrics import record_routing_decision
from gateway.models.requests import ChatRequest
from gateway.models.responses import ChatResponse, RoutingInfo, SourceFilteringInfo
from gateway.services.dispatch.queue import DispatchQueue, get_dispatch_queue
from gateway.services.routing.intent_router import (
    IntentRouter,
    RoutingContext,
    RoutingDecision,
    get_intent_router,
)
from gateway.services.sessions.context import ConversationTurn, build_context_window, render_prompt
from gateway.services.sessions.store import Session, SessionStore, get_session_store
from gateway.services.sources.filter import FilterResult, SourceFilterService, get_source_filter_service
from gateway.services.streaming.relay import (
    END,
    CancellationToken,
    StreamCallbacks,
    StreamEvent,
    StreamingRelay,
    error_message,
)
from gateway.services.upstream.alias import AliasResolver, get_alias_resolver
from gateway.services.upstream.backend import (
    AGENT_ROUTE,
    UpstreamBackend,
    UpstreamOptions,
    UpstreamResult,
    get_upstream_backend,
)

logger = get_logger(__name__)


@dataclass
class PreparedCall:
    """Everything resolved before an upstream call is dispatched."""

    session: Session
    message: str
    prompt: str
    decision: RoutingDecision
    filtering: FilterResult
    options: UpstreamOptions
    context_messages: int
    # Session clock reading when the message arrived
    received_at: float


class _TrackingCallbacks(StreamCallbacks):
    """Forwards to the relay and remembers whether anything was emitted."""

    def __init__(self, inner: StreamCallbacks):
        self._inner = inner
        self.emitted = False

    async def on_chunk(self, text: str) -> None:
        self.emitted = True
        await self._inner.on_chunk(text)

    async def on_citation(self, citation: Dict[str, Any]) -> None:
        self.emitted = True
        await self._inner.on_citation(citation)

    async def on_metadata(self, metadata: Dict[str, Any]) -> None:
        self.emitted = True
        await self._inner.on_metadata(metadata)

    async def on_complete(self, result: Optional[Dict[str, Any]] = None) -> None:
        self.emitted = True
        await self._inner.on_complete(result)

    async def on_error(self, error: BaseException) -> None:
        await self._inner.on_error(error)


def _routing_info(router: IntentRouter, decision: RoutingDecision) -> RoutingInfo:
    return RoutingInfo(
        route=decision.route,
        confidence=round(decision.confidence, 3),
        reason=decision.reason,
        query_type=decision.query_type,
        streaming_type=decision.streaming_type,
        fallback_route=decision.fallback_route,
        scores={key: round(value, 3) for key, value in decision.scores.items()},
        forced=decision.forced,
        explanation=router.explain(decision),
    )


def _filtering_info(result: FilterResult) -> Optional[SourceFilteringInfo]:
    if result.original_count == 0 and not result.warnings:
        return None
    return SourceFilteringInfo(**result.to_dict())


class ChatService:
    """Coordinates the gateway components for one chat request."""

    def __init__(
        self,
        dispatch: DispatchQueue,
        sessions: SessionStore,
        router: IntentRouter,
        source_filter: SourceFilterService,
        backend: UpstreamBackend,
        alias_resolver: AliasResolver,
        settings: Settings,
    ):
        self.dispatch = dispatch
        self.sessions = sessions
        self.router = router
        self.source_filter = source_filter
        self.backend = backend
        self.alias_resolver = alias_resolver
        self.settings = settings

    # ------------------------------------------------------------------
    # Preparation
    # ------------------------------------------------------------------

    def route(self, message: str, previous_routes: List[str], forced: Optional[str] = None) -> RoutingDecision:
        """Forced route when given, otherwise the heuristic decision."""
        if forced:
            decision = self.router.force(forced)
        else:
            decision = self.router.classify(message, RoutingContext.from_routes(previous_routes))
        record_routing_decision(decision.route, decision.forced)
        return decision

    async def preview_route(self, message: str, session_id: Optional[str] = None) -> RoutingInfo:
        """Routing decision for a message without calling upstream or touching the session."""
        previous_routes: List[str] = []
        if session_id:
            session = await self.sessions.get(session_id)
            if session is not None:
                previous_routes = session.route_history
        decision = self.router.classify(message, RoutingContext.from_routes(previous_routes))
        return _routing_info(self.router, decision)

    async def _options_for(self, request: ChatRequest, decision: RoutingDecision, filtering: FilterResult) -> UpstreamOptions:
        options = UpstreamOptions(
            route=decision.route,
            model_id=self.settings.resolve_model_id(request.model),
            temperature=request.temperature,
            top_p=request.top_p,
            instruction_type=request.instruction_type,
            data_sources=filtering.validated.to_dict() if filtering.validated else None,
        )
        if decision.route == AGENT_ROUTE:
            options.agent_id = self.settings.agent_id
            options.agent_alias_id = await self.alias_resolver.resolve()
        else:
            if not self.settings.knowledge_base_id:
                raise ConfigurationError(
                    "Service configuration error: KNOWLEDGE_BASE_ID is not set. "
                    "Configure the knowledge base before using knowledge-base routing."
                )
            options.knowledge_base_id = self.settings.knowledge_base_id
        return options

    async def prepare(self, request: ChatRequest) -> PreparedCall:
        """
        Resolve filtering, routing, session and prompt for a request.

        Raises:
            ConfigurationError: The chosen route is not configured
        """
        selection = request.data_sources.to_selection() if request.data_sources else None
        filtering = await self.source_filter.validate(selection)

        session = await self.sessions.get_or_create(request.session_id)
        set_session_id(session.id)

        decision = self.route(request.message, session.route_history, forced=request.route)
        options = await self._options_for(request, decision, filtering)

        if request.conversation_history is not None:
            history = [turn.to_turn() for turn in request.conversation_history]
        else:
            history = session.conversation_history
        window: List[ConversationTurn] = build_context_window(history, request.history.to_options())
        prompt = render_prompt(request.message, window, request.instruction_type, session.topics)

        logger.info(
            "chat_prepared",
            route=decision.route,
            confidence=round(decision.confidence, 3),
            forced=decision.forced,
            model_id=options.model_id,
            context_messages=len(window),
            source_count=filtering.source_count,
        )
        return PreparedCall(
            session=session,
            message=request.message,
            prompt=prompt,
            decision=decision,
            filtering=filtering,
            options=options,
            context_messages=len(window),
            received_at=session.last_activity,
        )

    async def _remember(self, call: PreparedCall, answer: str) -> None:
        await self.sessions.append_exchange(
            call.session.id, call.message, answer, user_timestamp=call.received_at
        )
        await self.sessions.record_route(call.session.id, call.decision.route)

    # ------------------------------------------------------------------
    # Single-shot
    # ------------------------------------------------------------------

    async def ask(self, request: ChatRequest) -> ChatResponse:
        """Answer one message through the dispatch queue."""
        started = time.perf_counter()
        call = await self.prepare(request)

        result: UpstreamResult = await self.dispatch.submit(
            lambda: self.backend.invoke(call.prompt, call.session.id, call.options),
            operation=f"invoke_{call.decision.route}",
        )
        await self._remember(call, result.answer)

        processing_ms = int((time.perf_counter() - started) * 1000)
        logger.info(
            "chat_completed",
            route=call.decision.route,
            sources_count=len(result.citations),
            processing_time_ms=processing_ms,
        )
        return ChatResponse(
            answer=result.answer,
            sources=result.citations,
            session_id=call.session.id,
            routing=_routing_info(self.router, call.decision),
            model=call.options.model_id,
            source_filtering=_filtering_info(call.filtering),
            metadata={
                **result.metadata,
                "processingTime": f"{processing_ms}ms",
                "contextMessages": call.context_messages,
                "instructionType": request.instruction_type,
                "upstreamSessionId": result.session_id,
            },
        )

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    def _relay_for(self, call: PreparedCall) -> StreamingRelay:
        async def producer(callbacks: StreamCallbacks) -> None:
            tracking = _TrackingCallbacks(callbacks)

            async def attempt() -> None:
                try:
                    await self.backend.invoke_streaming(call.prompt, call.session.id, call.options, tracking)
                except Exception as exc:
                    if tracking.emitted:
                        raise StreamTransportError(f"Stream interrupted: {error_message(exc)}") from exc
                    raise

            await self.dispatch.submit(attempt, operation=f"stream_{call.decision.route}")

        start_data: Dict[str, Any] = {
            "sessionId": call.session.id,
            "message": call.message,
            "route": call.decision.route,
            "streamingType": call.decision.streaming_type,
            "model": call.options.model_id,
            "routing": _routing_info(self.router, call.decision).model_dump(by_alias=True),
        }
        if call.filtering.warnings:
            start_data["sourceWarnings"] = list(call.filtering.warnings)
        return StreamingRelay(producer, start_data=start_data)

    async def stream(
        self,
        call: PreparedCall,
        token: Optional[CancellationToken] = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        Relay a prepared call as stream events.

        The session is updated before the ``end`` frame is handed out, so a
        client that disconnects right after completion still has its turn
        recorded. Cancelled or failed streams leave the session untouched.
        """
        relay = self._relay_for(call)
        events = relay.events(token)
        try:
            async for event in events:
                if event.event == END:
                    await self._remember(call, relay.content)
                    logger.info(
                        "chat_stream_completed",
                        route=call.decision.route,
                        content_length=len(relay.content),
                        elapsed_ms=relay.elapsed_ms(),
                    )
                yield event
        finally:
            await events.aclose()


_chat_service: Optional[ChatService] = None


def get_chat_service() -> ChatService:
    """Get global chat service wired to the global components."""
    global _chat_service
    if _chat_service is None:
        _chat_service = ChatService(
            dispatch=get_dispatch_queue(),
            sessions=get_session_store(),
            router=get_intent_router(),
            source_filter=get_source_filter_service(),
            backend=get_upstream_backend(),
            alias_resolver=get_alias_resolver(),
            settings=get_settings(),
        )
    return _chat_service
