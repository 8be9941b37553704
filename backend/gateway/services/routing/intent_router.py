"""
Intent router: choose between the agent route and the knowledge-base route.

Rule-based and deterministic. The agent route can run actions and is the
conservative default; the knowledge-base route is cheaper, streams natively
and is chosen only when a query is clearly information-seeking.

Algorithm:
1. Strong phrases short-circuit: strong action phrases without strong
   knowledge phrases (or vice versa) pick that route at 0.9 confidence.
2. Otherwise both vocabularies are scored: 0.1 per matched indicator,
   +0.3 for a leading imperative verb / question word, +0.2 boosts, each
   score capped at 1.0.
3. Session continuity adds 0.05 per matching route among the last three,
   plus 0.1 when the session has consistently used one route.
4. Knowledge route only if knowledge > action + 0.2.

Vocabulary terms match on word boundaries.
"""
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Pattern, Sequence, Tuple

from gateway.core.logging import get_logger

logger = get_logger(__name__)

ROUTE_AGENT = "agent"
ROUTE_KNOWLEDGE_BASE = "knowledge-base"

QUERY_TYPE_ACTION = "action-oriented"
QUERY_TYPE_INFORMATION = "information-seeking"

STREAMING_TYPE_AGENT = "optimized-fake"
STREAMING_TYPE_KNOWLEDGE_BASE = "true-aws-streaming"

PATTERN_MOSTLY_ACTIONS = "mostly-actions"
PATTERN_MOSTLY_KNOWLEDGE = "mostly-knowledge"
PATTERN_MIXED = "mixed"

ACTION_INDICATORS = (
    # operations
    "call", "invoke", "execute", "run", "trigger", "perform", "do",
    "create", "delete", "update", "modify", "change", "add", "remove",
    "send", "post", "get", "put", "patch",
    # functions and endpoints
    "function", "method", "endpoint", "api", "service", "operation",
    "action", "command", "script", "automation",
    # data manipulation
    "calculate", "compute", "process", "transform", "convert",
    "generate", "produce", "build", "make",
    # integrations
    "integrate", "connect", "sync", "import", "export",
    "webhook", "callback", "notification",
    # system operations
    "configure", "setup", "install", "deploy", "start", "stop",
    "restart", "reset", "initialize",
)

KNOWLEDGE_INDICATORS = (
    # information seeking
    "what", "how", "why", "when", "where", "who", "which",
    "explain", "describe", "tell me about", "information about",
    "details about", "learn about", "understand",
    # discovery
    "find", "search", "look for", "discover", "explore",
    "show me", "list", "display", "browse",
    # comparison
    "compare", "difference", "similar", "versus", "vs",
    "pros and cons", "advantages", "disadvantages",
    # documentation
    "documentation", "guide", "manual", "tutorial",
    "example", "sample", "demo", "illustration",
    # specification
    "specification", "requirements", "features", "capabilities",
    "overview", "summary", "description",
)

STRONG_ACTION_PHRASES = (
    "api call", "function call", "execute function", "run function",
    "trigger action", "perform action", "call endpoint",
    "invoke service", "automation", "workflow",
)

STRONG_KNOWLEDGE_PHRASES = (
    "what is", "tell me about", "explain", "describe",
    "information about", "details about", "documentation",
    "how does", "why does", "when does",
)

LEADING_ACTION_VERBS = frozenset({"call", "invoke", "execute", "run", "create", "delete", "update"})
LEADING_QUESTION_WORDS = frozenset({"what", "how", "why", "when", "where", "who", "which"})

INDICATOR_WEIGHT = 0.1
LEADING_WORD_BOOST = 0.3
PATTERN_BOOST = 0.2
STRONG_CONFIDENCE = 0.9
DEFAULT_CONFIDENCE = 0.5
BASE_CONFIDENCE = 0.6
MAX_CONFIDENCE = 0.9
KNOWLEDGE_MARGIN = 0.2
RECENT_ROUTE_WINDOW = 3
RECENT_ROUTE_BONUS = 0.05
SESSION_PATTERN_BONUS = 0.1
SESSION_PATTERN_MIN_ROUTES = 3
SESSION_PATTERN_SHARE = 0.75


def _compile(terms: Iterable[str]) -> Tuple[Tuple[str, Pattern[str]], ...]:
    return tuple((term, re.compile(rf"\b{re.escape(term)}\b")) for term in terms)


_ACTION_PATTERNS = _compile(ACTION_INDICATORS)
_KNOWLEDGE_PATTERNS = _compile(KNOWLEDGE_INDICATORS)
_STRONG_ACTION_PATTERNS = _compile(STRONG_ACTION_PHRASES)
_STRONG_KNOWLEDGE_PATTERNS = _compile(STRONG_KNOWLEDGE_PHRASES)
_API_PATTERN = re.compile(r"\b(?:apis?|endpoints?)\b")
_ABOUT_PATTERN = re.compile(r"\babout\b")
# Prefix match so "documents" and "guides" count
_DOCUMENTATION_PATTERN = re.compile(r"\b(?:document|manual|guide)")
_WORD_PATTERN = re.compile(r"[a-z0-9']+")


@dataclass(frozen=True)
class RoutingContext:
    """Recent routing history of the session."""

    previous_routes: Tuple[str, ...] = ()
    session_pattern: Optional[str] = None

    @classmethod
    def from_routes(cls, routes: Sequence[str]) -> "RoutingContext":
        return cls(previous_routes=tuple(routes), session_pattern=session_pattern_from(routes))


@dataclass(frozen=True)
class RoutingDecision:
    route: str
    confidence: float
    reason: str
    query_type: str
    streaming_type: str
    fallback_route: str
    scores: Dict[str, float] = field(default_factory=dict)
    analysis: Dict[str, Any] = field(default_factory=dict)
    forced: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "route": self.route,
            "confidence": round(self.confidence, 3),
            "reason": self.reason,
            "query_type": self.query_type,
            "streaming_type": self.streaming_type,
            "fallback_route": self.fallback_route,
            "scores": {key: round(value, 3) for key, value in self.scores.items()},
            "analysis": dict(self.analysis),
            "forced": self.forced,
        }


def session_pattern_from(routes: Sequence[str]) -> Optional[str]:
    """
    Summarize a session's routing history.

    Needs at least three routes; one route must account for 75% of them to
    count as a consistent pattern.
    """
    if len(routes) < SESSION_PATTERN_MIN_ROUTES:
        return None
    agent_share = sum(1 for route in routes if route == ROUTE_AGENT) / len(routes)
    if agent_share >= SESSION_PATTERN_SHARE:
        return PATTERN_MOSTLY_ACTIONS
    if 1 - agent_share >= SESSION_PATTERN_SHARE:
        return PATTERN_MOSTLY_KNOWLEDGE
    return PATTERN_MIXED


def _for_route(route: str, confidence: float, reason: str, **extra: Any) -> RoutingDecision:
    is_agent = route == ROUTE_AGENT
    return RoutingDecision(
        route=route,
        confidence=confidence,
        reason=reason,
        query_type=QUERY_TYPE_ACTION if is_agent else QUERY_TYPE_INFORMATION,
        streaming_type=STREAMING_TYPE_AGENT if is_agent else STREAMING_TYPE_KNOWLEDGE_BASE,
        fallback_route=ROUTE_KNOWLEDGE_BASE if is_agent else ROUTE_AGENT,
        **extra,
    )


class IntentRouter:
    """Heuristic query router."""

    def classify(self, query: str, context: Optional[RoutingContext] = None) -> RoutingDecision:
        """
        Route a query.

        Args:
            query: User message
            context: Recent routing history of the session

        Returns:
            RoutingDecision with scores and a human-readable reason
        """
        context = context or RoutingContext()
        text = (query or "").lower().strip()
        words = _WORD_PATTERN.findall(text)

        strong_action = any(pattern.search(text) for _, pattern in _STRONG_ACTION_PATTERNS)
        strong_knowledge = any(pattern.search(text) for _, pattern in _STRONG_KNOWLEDGE_PATTERNS)
        analysis = {
            "has_strong_action_keywords": strong_action,
            "has_strong_knowledge_keywords": strong_knowledge,
            "query_length": len(query or ""),
            "word_count": len(words),
        }

        if strong_action and not strong_knowledge:
            return _for_route(
                ROUTE_AGENT,
                STRONG_CONFIDENCE,
                "Strong action/API keywords detected",
                analysis=analysis,
            )
        if strong_knowledge and not strong_action:
            return _for_route(
                ROUTE_KNOWLEDGE_BASE,
                STRONG_CONFIDENCE,
                "Strong knowledge-seeking keywords detected",
                analysis=analysis,
            )

        first_word = words[0] if words else ""
        action_score = self._action_score(text, first_word)
        knowledge_score = self._knowledge_score(text, first_word)
        action_bonus, knowledge_bonus = self._context_bonus(context)

        final_action = action_score + action_bonus
        final_knowledge = knowledge_score + knowledge_bonus
        scores = {
            "action": final_action,
            "knowledge": final_knowledge,
            "action_bonus": action_bonus,
            "knowledge_bonus": knowledge_bonus,
        }
        analysis.update(
            has_action_indicators=action_score > 0,
            has_knowledge_indicators=knowledge_score > 0,
        )

        if final_knowledge > final_action + KNOWLEDGE_MARGIN:
            return _for_route(
                ROUTE_KNOWLEDGE_BASE,
                min(MAX_CONFIDENCE, BASE_CONFIDENCE + (final_knowledge - final_action)),
                f"Knowledge score ({final_knowledge:.2f}) > Action score ({final_action:.2f})",
                scores=scores,
                analysis=analysis,
            )

        if final_action > final_knowledge:
            return _for_route(
                ROUTE_AGENT,
                min(MAX_CONFIDENCE, BASE_CONFIDENCE + (final_action - final_knowledge)),
                f"Action score ({final_action:.2f}) > Knowledge score ({final_knowledge:.2f})",
                scores=scores,
                analysis=analysis,
            )

        return _for_route(
            ROUTE_AGENT,
            DEFAULT_CONFIDENCE,
            "Default routing to agent for safety",
            scores=scores,
            analysis=analysis,
        )

    @staticmethod
    def _action_score(text: str, first_word: str) -> float:
        score = INDICATOR_WEIGHT * sum(1 for _, pattern in _ACTION_PATTERNS if pattern.search(text))
        if first_word in LEADING_ACTION_VERBS:
            score += LEADING_WORD_BOOST
        if _API_PATTERN.search(text):
            score += PATTERN_BOOST
        return min(1.0, score)

    @staticmethod
    def _knowledge_score(text: str, first_word: str) -> float:
        score = INDICATOR_WEIGHT * sum(1 for _, pattern in _KNOWLEDGE_PATTERNS if pattern.search(text))
        if first_word in LEADING_QUESTION_WORDS:
            score += LEADING_WORD_BOOST
        if "?" in text or _ABOUT_PATTERN.search(text):
            score += PATTERN_BOOST
        if _DOCUMENTATION_PATTERN.search(text):
            score += PATTERN_BOOST
        return min(1.0, score)

    @staticmethod
    def _context_bonus(context: RoutingContext) -> Tuple[float, float]:
        recent = context.previous_routes[-RECENT_ROUTE_WINDOW:]
        action_bonus = RECENT_ROUTE_BONUS * sum(1 for route in recent if route == ROUTE_AGENT)
        knowledge_bonus = RECENT_ROUTE_BONUS * sum(1 for route in recent if route == ROUTE_KNOWLEDGE_BASE)

        if context.session_pattern == PATTERN_MOSTLY_ACTIONS:
            action_bonus += SESSION_PATTERN_BONUS
        elif context.session_pattern == PATTERN_MOSTLY_KNOWLEDGE:
            knowledge_bonus += SESSION_PATTERN_BONUS

        return action_bonus, knowledge_bonus

    def force(self, route: str) -> RoutingDecision:
        """Decision for a route the client chose explicitly."""
        return _for_route(route, 1.0, "Route requested by client", forced=True)

    @staticmethod
    def explain(decision: RoutingDecision) -> str:
        """User-facing explanation of a decision."""
        confidence = f"{decision.confidence * 100:.0f}%"
        if decision.route == ROUTE_AGENT:
            return (
                f"Using Agent mode ({confidence} confidence) - {decision.reason}. "
                "This enables action groups and comprehensive capabilities."
            )
        return (
            f"Using Knowledge Base streaming ({confidence} confidence) - {decision.reason}. "
            "This provides real-time streaming responses."
        )


_intent_router: Optional[IntentRouter] = None


def get_intent_router() -> IntentRouter:
    """Get global intent router instance."""
    global _intent_router
    if _intent_router is None:
        _intent_router = IntentRouter()
    return _intent_router
