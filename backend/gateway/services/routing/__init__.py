"""Intent routing between the agent and knowledge-base strategies."""

from .intent_router import (
    ROUTE_AGENT,
    ROUTE_KNOWLEDGE_BASE,
    IntentRouter,
    RoutingContext,
    RoutingDecision,
    get_intent_router,
    session_pattern_from,
)

__all__ = [
    "ROUTE_AGENT",
    "ROUTE_KNOWLEDGE_BASE",
    "IntentRouter",
    "RoutingContext",
    "RoutingDecision",
    "get_intent_router",
    "session_pattern_from",
]
