"""Pydantic models for API requests and responses."""

from .requests import ChatRequest, RoutePreviewRequest
from .responses import ChatResponse, QueueStatusResponse, SessionDetail, SessionsResponse

__all__ = ["ChatRequest", "RoutePreviewRequest", "ChatResponse", "QueueStatusResponse", "SessionDetail", "SessionsResponse"]
