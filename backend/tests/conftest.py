"""
Shared fixtures: fake clocks and in-memory collaborators.
"""
import asyncio
from typing import Any, Dict, List, Optional

import pytest

from gateway.core.config import Settings
from gateway.services.chat import ChatService
from gateway.services.dispatch.queue import DispatchQueue
from gateway.services.dispatch.retry import RetryPolicy
from gateway.services.routing.intent_router import IntentRouter
from gateway.services.sessions.store import InMemorySessionStore
from gateway.services.sources.catalog import StaticCatalogProvider
from gateway.services.sources.filter import SourceFilterService
from gateway.services.sources.selection import SourceSelection
from gateway.services.streaming.relay import StreamCallbacks
from gateway.services.upstream.alias import StaticAliasResolver
from gateway.services.upstream.backend import UpstreamBackend, UpstreamOptions, UpstreamResult


class FakeClock:
    """Manual clock; ``sleep`` advances time instead of waiting."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


class FakeBackend(UpstreamBackend):
    """Scripted backend recording every call."""

    def __init__(
        self,
        answer: str = "Here is the answer",
        chunks: Optional[List[str]] = None,
        citations: Optional[List[Dict[str, Any]]] = None,
        failures: Optional[List[Exception]] = None,
    ):
        self.answer = answer
        self.chunks = chunks if chunks is not None else ["Here ", "is ", "the answer"]
        self.citations = citations or []
        self.failures = list(failures or [])
        self.calls: List[Dict[str, Any]] = []

    def _maybe_fail(self) -> None:
        if self.failures:
            raise self.failures.pop(0)

    async def invoke(self, query: str, session_id: str, options: UpstreamOptions) -> UpstreamResult:
        self.calls.append({"query": query, "session_id": session_id, "options": options})
        self._maybe_fail()
        return UpstreamResult(
            answer=self.answer,
            citations=list(self.citations),
            session_id="upstream-session",
            metadata={"latency": "fast"},
        )

    async def invoke_streaming(self, query, session_id, options, callbacks: StreamCallbacks) -> None:
        self.calls.append({"query": query, "session_id": session_id, "options": options})
        self._maybe_fail()
        for chunk in self.chunks:
            await callbacks.on_chunk(chunk)
        for citation in self.citations:
            await callbacks.on_citation(citation)
        await callbacks.on_complete({"session_id": "upstream-session"})

    async def health(self) -> Dict[str, Any]:
        return {"status": "healthy", "status_code": 200}


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def settings():
    return Settings(
        knowledge_base_id="KB123",
        agent_id="AGENT1",
        agent_alias_id="ALIAS1",
    )


@pytest.fixture
def catalog():
    return SourceSelection(websites=("known.com", "docs.example.com"), pdfs=("handbook.pdf",))


@pytest.fixture
def fake_backend():
    return FakeBackend(citations=[{"title": "Refund policy", "uri": "s3://kb/refunds.pdf"}])


@pytest.fixture
def chat_service(fake_backend, settings, catalog, fake_clock):
    dispatch = DispatchQueue(
        max_concurrent=2,
        min_interval=0.0,
        retry_policy=RetryPolicy(max_retries=2, base_delay=0.5, max_delay=2.0, jitter_factor=0.0),
        clock=fake_clock,
        sleep=fake_clock.sleep,
    )
    return ChatService(
        dispatch=dispatch,
        sessions=InMemorySessionStore(clock=fake_clock),
        router=IntentRouter(),
        source_filter=SourceFilterService(StaticCatalogProvider(catalog)),
        backend=fake_backend,
        alias_resolver=StaticAliasResolver(settings.agent_alias_id),
        settings=settings,
    )
