"""
Response models for API endpoints.

These models define the structure of API responses.
"""
from typing import Any, Dict, List, Optional

from pydantic import Field

from gateway.models.base import CamelModel


class RoutingInfo(CamelModel):
    route: str
    confidence: float
    reason: str
    query_type: str
    streaming_type: str
    fallback_route: str
    scores: Dict[str, float] = Field(default_factory=dict)
    forced: bool = False
    explanation: Optional[str] = None


class SourceFilteringInfo(CamelModel):
    validated: Optional[Dict[str, List[str]]] = None
    warnings: List[str] = Field(default_factory=list)
    source_count: int = 0
    original_count: int = 0
    validation_skipped: bool = False


class ChatResponse(CamelModel):
    answer: str
    sources: List[Dict[str, Any]] = Field(default_factory=list)
    session_id: str
    routing: RoutingInfo
    model: str
    source_filtering: Optional[SourceFilteringInfo] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class RetryPolicyInfo(CamelModel):
    max_retries: int
    base_delay: float
    max_delay: float
    jitter_factor: float


class QueueStatusResponse(CamelModel):
    queue_length: int
    in_flight: int
    max_concurrent: int
    min_interval: float
    last_dispatch: Optional[float] = None
    seconds_since_last_dispatch: Optional[float] = None
    retry_policy: RetryPolicyInfo
    is_rate_limited: bool


class ModelInfo(CamelModel):
    key: str
    id: str
    name: str
    provider: str
    description: str


class ModelsResponse(CamelModel):
    default_model_id: str
    models: List[ModelInfo]


class SessionInfo(CamelModel):
    session_id: str
    created_at: str
    last_activity: str
    message_count: int
    topics: List[str] = Field(default_factory=list)
    recent_routes: List[str] = Field(default_factory=list)


class SessionMessage(CamelModel):
    role: str
    content: str
    timestamp: Optional[float] = None


class SessionDetail(SessionInfo):
    conversation_history: List[SessionMessage] = Field(default_factory=list)


class SessionsSummary(CamelModel):
    total_sessions: int
    active_sessions: int
    oldest_session: Optional[str] = None
    average_messages: float
    session_ttl_seconds: float
    max_entries: int


class SessionsResponse(CamelModel):
    summary: SessionsSummary
    sessions: List[SessionInfo]
