"""
Prometheus metrics endpoint.

GET /metrics
Returns Prometheus-formatted metrics for scraping.
"""
from fastapi import APIRouter, Depends, Response
from fastapi.responses import PlainTextResponse

from gateway.core.logging import get_logger
from gateway.core.metrics import get_metrics, get_metrics_content_type
from gateway.services.sessions.store import SessionStore, get_session_store

logger = get_logger(__name__)
router = APIRouter()


@router.get("", response_class=PlainTextResponse)
async def metrics(store: SessionStore = Depends(get_session_store)):
    """
    Prometheus metrics endpoint.

    Expired sessions are evicted first so ``sessions_active`` only counts
    live ones.
    """
    try:
        await store.evict_expired()
        return Response(content=get_metrics(), media_type=get_metrics_content_type())
    except Exception as e:
        logger.error(
            "metrics_endpoint_error",
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        return Response(
            content=b"# Error collecting metrics\n",
            media_type=get_metrics_content_type(),
        )
