"""
Streaming relay: upstream callbacks in, ordered client events out.

A producer is an async callable that receives StreamCallbacks and invokes
them in real time. The relay turns those calls into an async iterator of
StreamEvent:

    start, (chunk | citation | metadata)*, end | error

- ``start`` is always first and carries echo/session metadata.
- Exactly one terminal frame (``end`` or ``error``) is emitted last.
- Callbacks after the terminal frame are ignored.
- A producer that raises yields one ``error`` frame; a producer that returns
  without a terminal callback yields one ``error`` frame too.
- At most one frame is buffered; a producer awaiting a callback is held
  until the consumer takes the previous frame.

Cancellation: when the CancellationToken fires or the consumer closes the
iterator (client disconnect), the producer task is cancelled and no further
frames are emitted. A cancelled stream has no terminal frame.
"""
import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

from gateway.core.errors import GatewayError, StreamTransportError
from gateway.core.logging import get_logger
from gateway.core.metrics import record_stream_event, record_stream_outcome

logger = get_logger(__name__)

START = "start"
CHUNK = "chunk"
CITATION = "citation"
METADATA = "metadata"
END = "end"
ERROR = "error"

TERMINAL_EVENTS = frozenset({END, ERROR})


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class StreamEvent:
    """One outbound frame."""

    event: str
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.event in TERMINAL_EVENTS


class CancellationToken:
    """Signals a stream consumer went away."""

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


class StreamCallbacks:
    """Callbacks a streaming producer invokes. Defaults do nothing."""

    async def on_chunk(self, text: str) -> None:
        pass

    async def on_citation(self, citation: Dict[str, Any]) -> None:
        pass

    async def on_metadata(self, metadata: Dict[str, Any]) -> None:
        pass

    async def on_complete(self, result: Optional[Dict[str, Any]] = None) -> None:
        pass

    async def on_error(self, error: BaseException) -> None:
        pass


Producer = Callable[[StreamCallbacks], Awaitable[None]]


def error_message(error: BaseException) -> str:
    if isinstance(error, GatewayError):
        return error.message
    return str(error) or type(error).__name__


class _RelayCallbacks(StreamCallbacks):
    def __init__(self, relay: "StreamingRelay"):
        self._relay = relay

    async def on_chunk(self, text: str) -> None:
        if not text:
            return
        if await self._relay._emit(CHUNK, {"content": text}):
            self._relay._chunks.append(text)

    async def on_citation(self, citation: Dict[str, Any]) -> None:
        if await self._relay._emit(CITATION, {"source": citation}):
            self._relay._citations.append(citation)

    async def on_metadata(self, metadata: Dict[str, Any]) -> None:
        if await self._relay._emit(METADATA, dict(metadata)):
            self._relay._metadata.update(metadata)

    async def on_complete(self, result: Optional[Dict[str, Any]] = None) -> None:
        relay = self._relay
        payload = {
            "complete": True,
            **(result or {}),
            "totalChunks": len(relay._chunks),
            "totalTime": f"{relay.elapsed_ms()}ms",
            "sources": list(relay._citations),
        }
        await relay._emit(END, payload)

    async def on_error(self, error: BaseException) -> None:
        payload: Dict[str, Any] = {"error": error_message(error), "timestamp": _now_iso()}
        if isinstance(error, GatewayError):
            payload["type"] = error.error_type
        await self._relay._emit(ERROR, payload)


class StreamingRelay:
    """
    Relay one upstream stream to one consumer.

    Args:
        producer: Async callable driving the callbacks
        start_data: Payload of the ``start`` frame
        drain_timeout: Seconds to let the producer finish after the terminal frame
    """

    def __init__(
        self,
        producer: Producer,
        start_data: Optional[Dict[str, Any]] = None,
        drain_timeout: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._producer = producer
        self._start_data = {"timestamp": _now_iso(), **(start_data or {})}
        self._drain_timeout = drain_timeout
        self._clock = clock
        self._queue: "asyncio.Queue[StreamEvent]" = asyncio.Queue(maxsize=1)
        self._callbacks = _RelayCallbacks(self)
        self._terminated = False
        self._consumed = False
        self._started_at: Optional[float] = None
        self._chunks: List[str] = []
        self._citations: List[Dict[str, Any]] = []
        self._metadata: Dict[str, Any] = {}

    @property
    def content(self) -> str:
        """Text of all chunks relayed so far."""
        return "".join(self._chunks)

    @property
    def citations(self) -> List[Dict[str, Any]]:
        return list(self._citations)

    @property
    def metadata(self) -> Dict[str, Any]:
        return dict(self._metadata)

    def elapsed_ms(self) -> int:
        if self._started_at is None:
            return 0
        return int((self._clock() - self._started_at) * 1000)

    async def _emit(self, event: str, data: Dict[str, Any]) -> bool:
        if self._terminated:
            logger.debug("stream_callback_after_terminal_ignored", stream_event=event)
            return False
        if event in TERMINAL_EVENTS:
            self._terminated = True
        await self._queue.put(StreamEvent(event, data))
        return True

    async def _run_producer(self) -> None:
        try:
            await self._producer(self._callbacks)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(
                "stream_producer_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            await self._callbacks.on_error(e)
            return

        if not self._terminated:
            logger.warning("stream_producer_returned_without_terminal")
            await self._callbacks.on_error(StreamTransportError("Upstream stream ended without completing"))

    async def events(self, token: Optional[CancellationToken] = None) -> AsyncIterator[StreamEvent]:
        """
        Iterate the stream's events.

        Can be consumed once. Closing the iterator early cancels the producer.
        """
        if self._consumed:
            raise RuntimeError("stream events can only be consumed once")
        self._consumed = True
        token = token or CancellationToken()

        self._started_at = self._clock()
        record_stream_event(START)
        yield StreamEvent(START, self._start_data)

        producer = asyncio.create_task(self._run_producer())
        cancelled = asyncio.create_task(token.wait())
        finished = False
        try:
            while not token.cancelled:
                getter = asyncio.create_task(self._queue.get())
                done, _ = await asyncio.wait({getter, cancelled}, return_when=asyncio.FIRST_COMPLETED)
                # Cancellation wins over a frame that arrived at the same time
                if cancelled in done or getter not in done:
                    getter.cancel()
                    break

                event = getter.result()
                record_stream_event(event.event)
                yield event
                if event.is_terminal:
                    finished = True
                    record_stream_outcome(event.event)
                    break
        finally:
            cancelled.cancel()
            if finished:
                await asyncio.wait({producer}, timeout=self._drain_timeout)
            if not producer.done():
                producer.cancel()
                await asyncio.wait({producer})
            if not finished:
                record_stream_outcome("cancelled")
                logger.info("stream_cancelled", chunks_relayed=len(self._chunks), elapsed_ms=self.elapsed_ms())
