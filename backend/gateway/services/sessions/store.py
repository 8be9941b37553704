"""
Conversation session registry.

SessionStore is the abstraction callers depend on; InMemorySessionStore is
the process-local implementation. Sessions live in memory only and are lost
on restart.

Concurrency: every mutation of a session runs under that session's
asyncio.Lock, so concurrent requests on one session append in completion
order and a user/assistant exchange is always stored as an adjacent pair.

Eviction: idle TTL (lazy on access plus a periodic sweep) and an LRU cap on
the number of live sessions.
"""
import asyncio
import random
import string
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from gateway.core.config import get_settings
from gateway.core.logging import get_logger
from gateway.core.metrics import record_session_eviction, update_session_metrics
from gateway.services.sessions.context import ConversationTurn, extract_topic

logger = get_logger(__name__)

MAX_TOPICS = 10
MAX_ROUTE_HISTORY = 10
# Sessions used within this window count as active in summaries
ACTIVE_WINDOW_SECONDS = 5 * 60


@dataclass
class Session:
    """State of one conversation."""

    id: str
    created_at: float
    last_activity: float
    message_count: int = 0
    conversation_history: List[ConversationTurn] = field(default_factory=list)
    topics: List[str] = field(default_factory=list)
    route_history: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def snapshot(self) -> "Session":
        """Copy safe to read across awaits."""
        return Session(
            id=self.id,
            created_at=self.created_at,
            last_activity=self.last_activity,
            message_count=self.message_count,
            conversation_history=list(self.conversation_history),
            topics=list(self.topics),
            route_history=list(self.route_history),
            metadata=dict(self.metadata),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.id,
            "created_at": _iso(self.created_at),
            "last_activity": _iso(self.last_activity),
            "message_count": self.message_count,
            "topics": list(self.topics),
            "recent_routes": list(self.route_history[-3:]),
        }


def _iso(epoch_seconds: float) -> str:
    return datetime.fromtimestamp(epoch_seconds, tz=timezone.utc).isoformat()


def generate_session_id(clock: Callable[[], float] = time.time) -> str:
    """Generate ``session-<millis>-<random>``."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"session-{int(clock() * 1000)}-{suffix}"


class SessionStore(ABC):
    """Registry of conversation sessions keyed by session id."""

    @abstractmethod
    async def get_or_create(self, session_id: Optional[str] = None) -> Session:
        """Return a snapshot of the session, creating it on first reference."""

    @abstractmethod
    async def append_turn(self, session_id: str, turn: ConversationTurn) -> Session:
        """Append one turn to the session's history."""

    @abstractmethod
    async def append_exchange(
        self,
        session_id: str,
        user_text: str,
        assistant_text: str,
        user_timestamp: Optional[float] = None,
    ) -> Session:
        """
        Append a user turn and its assistant reply as one adjacent pair.

        ``user_timestamp`` is when the message arrived; it defaults to now.
        """

    @abstractmethod
    async def record_route(self, session_id: str, route: str) -> None:
        """Remember a routing decision for the session."""

    @abstractmethod
    async def get(self, session_id: str) -> Optional[Session]:
        """Return a snapshot of a live session, or None."""

    @abstractmethod
    async def delete(self, session_id: str) -> bool:
        """Drop a session. Returns False when it did not exist."""

    @abstractmethod
    async def list_sessions(self) -> List[Session]:
        """Snapshots of all live sessions, most recently used last."""

    @abstractmethod
    async def evict_expired(self) -> int:
        """Drop idle sessions. Returns the number evicted."""

    @abstractmethod
    async def summary(self) -> Dict[str, Any]:
        """Aggregate view over live sessions."""


class InMemorySessionStore(SessionStore):
    """
    Process-local session store.

    Args:
        ttl_seconds: Idle time after which a session expires
        max_entries: LRU cap on live sessions
        clock: Epoch-seconds clock (injectable for tests)
    """

    def __init__(
        self,
        ttl_seconds: float = 30 * 60,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._sessions: "OrderedDict[str, Session]" = OrderedDict()
        # Only sessions with an operation in progress hold a lock entry
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    @asynccontextmanager
    async def _locked(self, session_id: str) -> AsyncIterator[None]:
        """Hold the session's lock; the entry is removed once nobody holds or awaits it."""
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        self._lock_users[session_id] = self._lock_users.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            users = self._lock_users[session_id] - 1
            if users:
                self._lock_users[session_id] = users
            else:
                del self._lock_users[session_id]
                del self._locks[session_id]

    def _is_expired(self, session: Session, now: float) -> bool:
        return now - session.last_activity > self.ttl_seconds

    def _drop(self, session_id: str, reason: str) -> None:
        if self._sessions.pop(session_id, None) is not None:
            record_session_eviction(reason)
            update_session_metrics(len(self._sessions))

    def _live(self, session_id: str) -> Optional[Session]:
        session = self._sessions.get(session_id)
        if session is None:
            return None
        if self._is_expired(session, self._clock()):
            logger.info("session_expired", session_id=session_id)
            self._drop(session_id, "expired")
            return None
        return session

    def _create(self, session_id: str) -> Session:
        now = self._clock()
        session = Session(id=session_id, created_at=now, last_activity=now)
        self._sessions[session_id] = session
        while len(self._sessions) > self.max_entries:
            oldest_id = next(iter(self._sessions))
            logger.info("session_evicted_capacity", session_id=oldest_id, max_entries=self.max_entries)
            self._drop(oldest_id, "capacity")
        update_session_metrics(len(self._sessions))
        logger.info("session_created", session_id=session_id)
        return session

    def _touch(self, session: Session) -> None:
        session.last_activity = self._clock()
        self._sessions.move_to_end(session.id)

    def _load(self, session_id: str) -> Session:
        session = self._live(session_id)
        if session is None:
            session = self._create(session_id)
        return session

    async def get_or_create(self, session_id: Optional[str] = None) -> Session:
        session_id = session_id or generate_session_id(self._clock)
        async with self._locked(session_id):
            session = self._load(session_id)
            self._touch(session)
            return session.snapshot()

    async def append_turn(self, session_id: str, turn: ConversationTurn) -> Session:
        async with self._locked(session_id):
            session = self._load(session_id)
            session.conversation_history.append(turn)
            if turn.role == "user":
                session.message_count += 1
                self._add_topic(session, turn.content)
            self._touch(session)
            return session.snapshot()

    async def append_exchange(
        self,
        session_id: str,
        user_text: str,
        assistant_text: str,
        user_timestamp: Optional[float] = None,
    ) -> Session:
        async with self._locked(session_id):
            session = self._load(session_id)
            now = self._clock()
            asked_at = now if user_timestamp is None else user_timestamp
            session.conversation_history.append(ConversationTurn(role="user", content=user_text, timestamp=asked_at))
            session.conversation_history.append(ConversationTurn(role="assistant", content=assistant_text, timestamp=now))
            session.message_count += 1
            self._add_topic(session, user_text)
            self._touch(session)
            return session.snapshot()

    async def record_route(self, session_id: str, route: str) -> None:
        async with self._locked(session_id):
            session = self._load(session_id)
            session.route_history.append(route)
            del session.route_history[:-MAX_ROUTE_HISTORY]
            self._touch(session)

    @staticmethod
    def _add_topic(session: Session, text: str) -> None:
        session.topics.append(extract_topic(text))
        del session.topics[:-MAX_TOPICS]

    async def get(self, session_id: str) -> Optional[Session]:
        session = self._live(session_id)
        return session.snapshot() if session else None

    async def delete(self, session_id: str) -> bool:
        if session_id not in self._sessions:
            return False
        async with self._locked(session_id):
            if session_id not in self._sessions:
                return False
            self._drop(session_id, "deleted")
            logger.info("session_deleted", session_id=session_id)
            return True

    async def list_sessions(self) -> List[Session]:
        await self.evict_expired()
        return [session.snapshot() for session in self._sessions.values()]

    async def evict_expired(self) -> int:
        now = self._clock()
        expired = [sid for sid, session in self._sessions.items() if self._is_expired(session, now)]
        for session_id in expired:
            self._drop(session_id, "expired")
        if expired:
            logger.info("sessions_evicted", count=len(expired), remaining=len(self._sessions))
        return len(expired)

    async def summary(self) -> Dict[str, Any]:
        await self.evict_expired()
        sessions = list(self._sessions.values())
        now = self._clock()
        return {
            "total_sessions": len(sessions),
            "active_sessions": sum(1 for s in sessions if now - s.last_activity < ACTIVE_WINDOW_SECONDS),
            "oldest_session": _iso(min(s.created_at for s in sessions)) if sessions else None,
            "average_messages": (sum(s.message_count for s in sessions) / len(sessions)) if sessions else 0.0,
            "session_ttl_seconds": self.ttl_seconds,
            "max_entries": self.max_entries,
        }


async def run_session_sweeper(store: SessionStore, interval_seconds: float) -> None:
    """Evict expired sessions every ``interval_seconds`` until cancelled."""
    logger.info("session_sweeper_started", interval_seconds=interval_seconds)
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await store.evict_expired()
        except Exception as e:
            logger.error(
                "session_sweep_failed",
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )


_session_store: Optional[SessionStore] = None


def get_session_store() -> SessionStore:
    """Global session store built from settings."""
    global _session_store
    if _session_store is None:
        sessions = get_settings().sessions
        _session_store = InMemorySessionStore(
            ttl_seconds=sessions.ttl_seconds,
            max_entries=sessions.max_entries,
        )
    return _session_store
