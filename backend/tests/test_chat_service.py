"""
Tests for chat orchestration with in-memory collaborators.

Tests verify:
- Routing, source filtering and context are folded into the upstream call
- Sessions are updated only after a successful call
- Configuration errors surface before any upstream call
- Streaming retries only before the first frame and records the exchange on completion
"""
import pytest

from gateway.core.config import Settings
from gateway.core.errors import ConfigurationError, RetriesExhaustedError, UpstreamThrottled
from gateway.models.requests import ChatRequest
from gateway.services.streaming.relay import CancellationToken, StreamCallbacks
from gateway.services.upstream.alias import StaticAliasResolver

from conftest import FakeBackend


class MidStreamFailure(FakeBackend):
    """Emits one chunk, then fails with a retryable error."""

    async def invoke_streaming(self, query, session_id, options, callbacks: StreamCallbacks) -> None:
        self.calls.append({"query": query})
        await callbacks.on_chunk("partial ")
        raise UpstreamThrottled("Rate is too high")


class SlowBackend(FakeBackend):
    """Takes `delay` seconds of the shared fake clock to answer."""

    def __init__(self, clock, delay: float):
        super().__init__()
        self.clock = clock
        self.delay = delay

    async def invoke(self, query, session_id, options):
        self.clock.advance(self.delay)
        return await super().invoke(query, session_id, options)


class TestAsk:

    @pytest.mark.asyncio
    async def test_knowledge_question(self, chat_service, fake_backend):
        response = await chat_service.ask(ChatRequest(message="What is the refund policy?", session_id="s1"))

        assert response.answer == "Here is the answer"
        assert response.session_id == "s1"
        assert response.routing.route == "knowledge-base"
        assert response.routing.explanation.startswith("Using Knowledge Base streaming")
        assert response.model == Settings().default_model_id
        assert response.sources == [{"title": "Refund policy", "uri": "s3://kb/refunds.pdf"}]
        assert response.source_filtering is None
        assert response.metadata["upstreamSessionId"] == "upstream-session"
        assert response.metadata["latency"] == "fast"

        options = fake_backend.calls[0]["options"]
        assert options.route == "knowledge-base"
        assert options.knowledge_base_id == "KB123"
        assert options.agent_alias_id is None

    @pytest.mark.asyncio
    async def test_action_request_resolves_alias(self, chat_service, fake_backend):
        response = await chat_service.ask(ChatRequest(message="Create a new ticket for customer 123"))

        assert response.routing.route == "agent"
        assert response.session_id.startswith("session-")
        options = fake_backend.calls[0]["options"]
        assert options.agent_id == "AGENT1"
        assert options.agent_alias_id == "ALIAS1"

    @pytest.mark.asyncio
    async def test_forced_route(self, chat_service, fake_backend):
        response = await chat_service.ask(ChatRequest(message="Create a ticket", route="knowledge-base"))

        assert response.routing.route == "knowledge-base"
        assert response.routing.forced is True
        assert response.routing.confidence == 1.0

    @pytest.mark.asyncio
    async def test_model_key_and_parameters_forwarded(self, chat_service, fake_backend):
        await chat_service.ask(ChatRequest(message="What is new?", model="claude-3-haiku", temperature=0.2, top_p=0.9))

        options = fake_backend.calls[0]["options"]
        assert options.model_id.startswith("anthropic.claude-3-haiku")
        assert options.temperature == 0.2
        assert options.top_p == 0.9

    @pytest.mark.asyncio
    async def test_sources_filtered_before_call(self, chat_service, fake_backend):
        response = await chat_service.ask(ChatRequest.model_validate({
            "message": "What is the refund policy?",
            "dataSources": {"websites": ["known.com", "unknown.com"]},
        }))

        assert fake_backend.calls[0]["options"].data_sources == {"websites": ["known.com"]}
        assert response.source_filtering.source_count == 1
        assert response.source_filtering.original_count == 2
        assert 'Website "unknown.com" not found in knowledge base' in response.source_filtering.warnings

    @pytest.mark.asyncio
    async def test_session_history_folded_into_prompt(self, chat_service, fake_backend):
        await chat_service.ask(ChatRequest(message="What is the refund policy?", session_id="s1"))
        await chat_service.ask(ChatRequest(message="What about laptops?", session_id="s1"))

        prompt = fake_backend.calls[1]["query"]
        assert "Previous conversation:\nUser: What is the refund policy?\nAssistant: Here is the answer" in prompt
        assert prompt.endswith("Current question: What about laptops?")

        session = await chat_service.sessions.get("s1")
        assert session.message_count == 2
        assert session.route_history == ["knowledge-base", "knowledge-base"]

    @pytest.mark.asyncio
    async def test_client_history_overrides_server_history(self, chat_service, fake_backend):
        await chat_service.ask(ChatRequest(message="What is the refund policy?", session_id="s1"))
        await chat_service.ask(ChatRequest.model_validate({
            "message": "And shipping?",
            "sessionId": "s1",
            "conversationHistory": [{"role": "user", "content": "Tell me about delivery"}],
        }))

        prompt = fake_backend.calls[1]["query"]
        assert "User: Tell me about delivery" in prompt
        assert "User: What is the refund policy?" not in prompt

    @pytest.mark.asyncio
    async def test_history_disabled(self, chat_service, fake_backend):
        await chat_service.ask(ChatRequest(message="What is the refund policy?", session_id="s1"))
        await chat_service.ask(ChatRequest.model_validate({
            "message": "What about laptops?",
            "sessionId": "s1",
            "history": {"enabled": False},
        }))

        assert "Previous conversation" not in fake_backend.calls[1]["query"]

    @pytest.mark.asyncio
    async def test_missing_knowledge_base_is_configuration_error(self, chat_service, fake_backend):
        chat_service.settings = Settings(agent_alias_id="ALIAS1")

        with pytest.raises(ConfigurationError):
            await chat_service.ask(ChatRequest(message="What is the refund policy?"))
        assert fake_backend.calls == []

    @pytest.mark.asyncio
    async def test_missing_alias_is_configuration_error(self, chat_service, fake_backend):
        chat_service.alias_resolver = StaticAliasResolver(None)

        with pytest.raises(ConfigurationError):
            await chat_service.ask(ChatRequest(message="Create a new ticket for customer 123"))
        assert fake_backend.calls == []

    @pytest.mark.asyncio
    async def test_throttling_retried_then_exhausted(self, chat_service, fake_backend):
        fake_backend.failures = [UpstreamThrottled() for _ in range(3)]

        with pytest.raises(RetriesExhaustedError):
            await chat_service.ask(ChatRequest(message="What is the refund policy?", session_id="s1"))

        assert len(fake_backend.calls) == 3
        assert chat_service.dispatch.in_flight == 0
        session = await chat_service.sessions.get("s1")
        assert session.message_count == 0

    @pytest.mark.asyncio
    async def test_user_turn_keeps_arrival_time(self, chat_service, fake_clock):
        chat_service.backend = SlowBackend(fake_clock, delay=7.0)
        arrived = fake_clock()

        await chat_service.ask(ChatRequest(message="What is the refund policy?", session_id="s1"))

        user, assistant = (await chat_service.sessions.get("s1")).conversation_history
        assert user.timestamp == arrived
        assert assistant.timestamp == arrived + 7.0

    @pytest.mark.asyncio
    async def test_preview_route_does_not_create_session(self, chat_service):
        routing = await chat_service.preview_route("What is the refund policy?", "unknown")

        assert routing.route == "knowledge-base"
        assert await chat_service.sessions.get("unknown") is None


class TestStream:

    @pytest.mark.asyncio
    async def test_stream_events_and_session_update(self, chat_service):
        call = await chat_service.prepare(ChatRequest(message="What is the refund policy?", session_id="s1"))
        events = [event async for event in chat_service.stream(call)]

        assert [e.event for e in events] == ["start", "chunk", "chunk", "chunk", "citation", "end"]
        assert events[0].data["sessionId"] == "s1"
        assert events[0].data["streamingType"] == "true-aws-streaming"
        assert events[-1].data["sources"] == [{"title": "Refund policy", "uri": "s3://kb/refunds.pdf"}]

        session = await chat_service.sessions.get("s1")
        assert session.conversation_history[-1].content == "Here is the answer"
        assert session.route_history == ["knowledge-base"]

    @pytest.mark.asyncio
    async def test_throttling_before_first_frame_is_retried(self, chat_service, fake_backend):
        fake_backend.failures = [UpstreamThrottled()]
        call = await chat_service.prepare(ChatRequest(message="What is the refund policy?"))
        events = [event async for event in chat_service.stream(call)]

        assert events[-1].event == "end"
        assert len(fake_backend.calls) == 2

    @pytest.mark.asyncio
    async def test_throttling_exhausted_before_first_frame(self, chat_service, fake_backend):
        fake_backend.failures = [UpstreamThrottled() for _ in range(3)]
        call = await chat_service.prepare(ChatRequest(message="What is the refund policy?", session_id="s1"))
        events = [event async for event in chat_service.stream(call)]

        assert [e.event for e in events] == ["start", "error"]
        assert events[-1].data["type"] == "rate_limited"
        assert len(fake_backend.calls) == 3
        assert chat_service.dispatch.in_flight == 0
        session = await chat_service.sessions.get("s1")
        assert session.conversation_history == []

    @pytest.mark.asyncio
    async def test_failure_after_first_frame_is_not_retried(self, chat_service):
        backend = MidStreamFailure()
        chat_service.backend = backend
        call = await chat_service.prepare(ChatRequest(message="What is the refund policy?", session_id="s1"))
        events = [event async for event in chat_service.stream(call)]

        assert [e.event for e in events] == ["start", "chunk", "error"]
        assert events[-1].data["type"] == "stream_error"
        assert "Rate is too high" in events[-1].data["error"]
        assert len(backend.calls) == 1

        session = await chat_service.sessions.get("s1")
        assert session.conversation_history == []
        assert chat_service.dispatch.in_flight == 0

    @pytest.mark.asyncio
    async def test_cancelled_stream_leaves_session_untouched(self, chat_service):
        call = await chat_service.prepare(ChatRequest(message="What is the refund policy?", session_id="s1"))
        token = CancellationToken()
        seen = []
        async for event in chat_service.stream(call, token):
            seen.append(event.event)
            if event.event == "chunk":
                token.cancel()

        assert seen[-1] != "end"
        session = await chat_service.sessions.get("s1")
        assert session.conversation_history == []
