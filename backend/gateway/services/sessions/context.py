"""
Context window assembly for the next upstream call.

The window is the bounded slice of prior conversation folded into the query
text. Its size is ``max_messages`` scaled by the context weight, and each
turn's content is truncated according to the same weight.
"""
import re
from dataclasses import dataclass
from typing import List, Optional, Sequence

STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
    "with", "by", "how", "what", "where", "when", "why", "can", "could",
    "would", "should",
})

MIN_MESSAGES = 2
MAX_MESSAGES = 20

# weight -> (message count multiplier, per-turn character limit)
CONTEXT_WEIGHTS = {
    "light": (0.5, 300),
    "balanced": (1.0, 800),
    "heavy": (1.5, None),
}

INSTRUCTION_PRESETS = {
    "default": None,
    "business": "Answer as a business analyst: focus on outcomes, costs and recommendations.",
    "technical": "Answer as a senior engineer: be precise and include technical detail where relevant.",
    "customer_service": "Answer as a friendly support agent: be clear, empathetic and solution-oriented.",
    "concise": "Answer as briefly as possible while staying accurate.",
    "detailed": "Answer thoroughly, with structure, examples and relevant context.",
}


@dataclass(frozen=True)
class ConversationTurn:
    role: str  # "user" or "assistant"
    content: str
    timestamp: Optional[float] = None


@dataclass(frozen=True)
class HistoryOptions:
    """Client-controlled history settings."""

    enabled: bool = True
    max_messages: int = 6
    context_weight: str = "balanced"

    def window_size(self) -> int:
        multiplier, _ = CONTEXT_WEIGHTS.get(self.context_weight, CONTEXT_WEIGHTS["balanced"])
        size = int(round(self.max_messages * multiplier))
        return max(MIN_MESSAGES, min(MAX_MESSAGES, size))

    def content_limit(self) -> Optional[int]:
        _, limit = CONTEXT_WEIGHTS.get(self.context_weight, CONTEXT_WEIGHTS["balanced"])
        return limit


def _truncate(text: str, limit: Optional[int]) -> str:
    if limit is None or len(text) <= limit:
        return text
    return text[: limit - 3].rstrip() + "..."


def build_context_window(
    history: Sequence[ConversationTurn],
    options: Optional[HistoryOptions] = None,
) -> List[ConversationTurn]:
    """
    Select the turns to fold into the next upstream call.

    Returns the last ``options.window_size()`` turns with their content
    truncated by weight, or an empty list when history is disabled.
    """
    options = options or HistoryOptions()
    if not options.enabled or not history:
        return []

    limit = options.content_limit()
    return [
        ConversationTurn(role=turn.role, content=_truncate(turn.content, limit), timestamp=turn.timestamp)
        for turn in list(history)[-options.window_size():]
    ]


def render_prompt(
    message: str,
    window: Sequence[ConversationTurn] = (),
    instruction_type: str = "default",
    topics: Sequence[str] = (),
) -> str:
    """Fold instructions, recent topics and the context window into the query text."""
    parts: List[str] = []

    instructions = INSTRUCTION_PRESETS.get(instruction_type)
    if instructions:
        parts.append(f"Instructions: {instructions}")

    if window:
        lines = [
            f"{'User' if turn.role == 'user' else 'Assistant'}: {turn.content}"
            for turn in window
        ]
        parts.append("Previous conversation:\n" + "\n".join(lines))

    recent_topics = [topic for topic in topics if topic != "general"][-3:]
    if recent_topics:
        parts.append(f"We've been discussing {', '.join(recent_topics)}.")

    if not parts:
        return message

    parts.append(f"Current question: {message}")
    return "\n\n".join(parts)


def extract_topic(query: str) -> str:
    """First three non-stop words longer than three characters, or 'general'."""
    words = re.findall(r"\w+", query.lower())
    keywords = [word for word in words if len(word) > 3 and word not in STOP_WORDS]
    return " ".join(keywords[:3]) if keywords else "general"
