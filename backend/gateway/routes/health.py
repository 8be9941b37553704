"""
Health check endpoints.
"""
from fastapi import APIRouter, Depends

from gateway.core.config import Settings, get_settings
from gateway.core.logging import get_logger
from gateway.services.dispatch.queue import DispatchQueue, get_dispatch_queue
from gateway.services.upstream.backend import UpstreamBackend, get_upstream_backend

logger = get_logger(__name__)
router = APIRouter()


@router.get("")
async def health_check():
    """
    Basic health check endpoint.
    """
    return {
        "status": "ok",
        "message": "Gateway is running"
    }


@router.get("/upstream")
async def upstream_health(
    backend: UpstreamBackend = Depends(get_upstream_backend),
    dispatch: DispatchQueue = Depends(get_dispatch_queue),
    settings: Settings = Depends(get_settings),
):
    """
    Health of the upstream side.

    Returns:
        - upstream: backend health probe result
        - queue: dispatch queue status
        - configuration: which routes have their identifiers configured
    """
    upstream = await backend.health()
    if upstream.get("status") != "healthy":
        logger.warning("upstream_health_degraded", **upstream)

    return {
        "status": "ok" if upstream.get("status") == "healthy" else "degraded",
        "upstream": upstream,
        "queue": {**dispatch.status(), "is_rate_limited": dispatch.is_rate_limited()},
        "configuration": {
            "knowledge_base_configured": bool(settings.knowledge_base_id),
            "agent_configured": bool(settings.agent_id),
            "agent_alias_source": "url" if settings.agent_alias_url else ("static" if settings.agent_alias_id else None),
            "catalog_configured": bool(settings.catalog_url),
        },
    }
