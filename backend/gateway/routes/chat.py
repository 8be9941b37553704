"""
Chat endpoints.

POST /chat          - single-shot answer
POST /chat/stream   - Server-Sent Events stream
GET  /chat/status   - dispatch queue status
GET  /chat/models   - available model keys
POST /chat/route    - routing decision preview (no upstream call)
"""
from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from gateway.core.config import AVAILABLE_MODELS, Settings, get_settings
from gateway.core.logging import get_logger
from gateway.models.requests import ChatRequest, RoutePreviewRequest
from gateway.models.responses import (
    ChatResponse,
    ModelInfo,
    ModelsResponse,
    QueueStatusResponse,
    RoutingInfo,
)
from gateway.services.chat import ChatService, get_chat_service
from gateway.services.dispatch.queue import DispatchQueue, get_dispatch_queue
from gateway.services.streaming.relay import CancellationToken
from gateway.services.streaming.sse import SSE_HEADERS, format_sse

logger = get_logger(__name__)

router = APIRouter()


@router.post("", response_model=ChatResponse)
async def chat(body: ChatRequest, service: ChatService = Depends(get_chat_service)):
    """
    Answer a message.

    The route is chosen by the intent router unless ``route`` forces one.
    Upstream calls go through the dispatch queue; persistent throttling
    surfaces as HTTP 429 with a Retry-After header.
    """
    return await service.ask(body)


@router.post("/stream")
async def chat_stream(body: ChatRequest, service: ChatService = Depends(get_chat_service)):
    """
    Stream an answer as Server-Sent Events.

    Frames: ``start``, then ``chunk`` / ``citation`` / ``metadata``, then one
    ``end`` or ``error``. Configuration problems are reported before the
    stream opens, as a regular error response.
    """
    call = await service.prepare(body)
    token = CancellationToken()

    async def event_generator():
        try:
            async for event in service.stream(call, token):
                yield format_sse(event)
        finally:
            # Client went away or the stream finished; either way stop the producer
            token.cancel()

    return StreamingResponse(event_generator(), media_type="text/event-stream", headers=SSE_HEADERS)


@router.get("/status", response_model=QueueStatusResponse)
async def chat_status(dispatch: DispatchQueue = Depends(get_dispatch_queue)):
    """Dispatch queue status."""
    return QueueStatusResponse(**dispatch.status(), is_rate_limited=dispatch.is_rate_limited())


@router.get("/models", response_model=ModelsResponse)
async def chat_models(settings: Settings = Depends(get_settings)):
    return ModelsResponse(
        default_model_id=settings.default_model_id,
        models=[ModelInfo(key=key, **entry) for key, entry in AVAILABLE_MODELS.items()],
    )


@router.post("/route", response_model=RoutingInfo)
async def preview_route(body: RoutePreviewRequest, service: ChatService = Depends(get_chat_service)):
    decision = await service.preview_route(body.message, body.session_id)
    logger.info("route_previewed", route=decision.route, confidence=decision.confidence)
    return decision
