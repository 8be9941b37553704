"""
Conversation sessions: in-memory registry and context window assembly.
"""
from .context import ConversationTurn, HistoryOptions, build_context_window, extract_topic, render_prompt
from .store import InMemorySessionStore, Session, SessionStore, get_session_store

__all__ = [
    "ConversationTurn",
    "HistoryOptions",
    "build_context_window",
    "extract_topic",
    "render_prompt",
    "InMemorySessionStore",
    "Session",
    "SessionStore",
    "get_session_store",
]
