"""
Bounded-concurrency, paced, retrying dispatch queue for upstream calls.

Every upstream call goes through DispatchQueue.submit():

1. Admission: at most ``max_concurrent`` calls hold a slot; waiters are
   admitted in FIFO order.
2. Pacing: dispatch start times are at least ``min_interval`` apart,
   globally, regardless of caller.
3. Retry: retryable failures are retried with exponential backoff + jitter.
   Backoff sleeps happen outside the slot and a retry re-enters the queue at
   the tail. After ``max_retries`` retries the failure surfaces as
   RetriesExhaustedError.
4. Non-retryable failures propagate immediately.

Bookkeeping (slot count, waiter deque, last dispatch time) is only mutated
between awaits.
"""
import asyncio
import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, TypeVar

from opentelemetry.trace import Status, StatusCode

from gateway.core.config import get_settings
from gateway.core.errors import RetriesExhaustedError
from gateway.core.logging import get_logger
from gateway.core.metrics import (
    record_queue_wait,
    record_retries_exhausted,
    record_upstream_call,
    record_upstream_retry,
    update_queue_metrics,
)
from gateway.core.tracing import get_tracer
from gateway.services.dispatch.retry import RetryPolicy, is_retryable

logger = get_logger(__name__)

T = TypeVar("T")

TaskFactory = Callable[[], Awaitable[T]]


class DispatchQueue:
    """
    Executor wrapping every upstream call.

    ``clock`` and ``sleep`` are injectable so pacing and backoff can be
    tested against a fake clock.
    """

    def __init__(
        self,
        max_concurrent: int = 2,
        min_interval: float = 1.5,
        retry_policy: Optional[RetryPolicy] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        name: str = "upstream",
    ):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        if min_interval < 0:
            raise ValueError("min_interval must be >= 0")

        self.max_concurrent = max_concurrent
        self.min_interval = min_interval
        self.retry_policy = retry_policy or RetryPolicy()
        self.name = name
        self._clock = clock
        self._sleep = sleep

        self._in_flight = 0
        self._waiters: Deque[asyncio.Future] = deque()
        self._pacing_lock = asyncio.Lock()
        self._last_dispatch: Optional[float] = None

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def queue_length(self) -> int:
        return sum(1 for waiter in self._waiters if not waiter.done())

    async def _acquire_slot(self) -> None:
        if self._in_flight < self.max_concurrent and self.queue_length == 0:
            self._in_flight += 1
            self._publish_gauges()
            return

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        self._publish_gauges()
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # Slot was handed over before the cancellation landed
                self._release_slot()
            else:
                try:
                    self._waiters.remove(waiter)
                except ValueError:
                    pass
                self._publish_gauges()
            raise

    def _release_slot(self) -> None:
        # Hand the slot straight to the oldest live waiter
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                self._publish_gauges()
                return
        self._in_flight -= 1
        self._publish_gauges()

    async def _wait_for_pacing(self) -> None:
        async with self._pacing_lock:
            if self._last_dispatch is not None:
                remaining = self.min_interval - (self._clock() - self._last_dispatch)
                if remaining > 0:
                    await self._sleep(remaining)
            self._last_dispatch = self._clock()

    def _publish_gauges(self) -> None:
        update_queue_metrics(self.name, waiting=self.queue_length, in_flight=self._in_flight)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _run_attempt(self, task_factory: TaskFactory, operation: str, attempt: int) -> Any:
        queued_at = self._clock()
        await self._acquire_slot()
        try:
            await self._wait_for_pacing()
            record_queue_wait(self.name, max(0.0, self._clock() - queued_at))

            tracer = get_tracer()
            with tracer.start_as_current_span("upstream.dispatch") as span:
                span.set_attribute("upstream.operation", operation)
                span.set_attribute("upstream.attempt", attempt)
                span.set_attribute("upstream.in_flight", self._in_flight)

                started = time.perf_counter()
                try:
                    result = await task_factory()
                except Exception as exc:
                    outcome = "retryable_error" if is_retryable(exc) else "error"
                    record_upstream_call(operation, outcome, time.perf_counter() - started)
                    span.record_exception(exc)
                    span.set_status(Status(StatusCode.ERROR, str(exc)))
                    raise

                record_upstream_call(operation, "success", time.perf_counter() - started)
                return result
        finally:
            self._release_slot()

    async def submit(self, task_factory: TaskFactory, operation: str = "upstream_call") -> Any:
        """
        Run ``task_factory()`` under admission control, pacing and retry.

        Args:
            task_factory: Zero-argument callable returning a fresh awaitable per attempt
            operation: Operation name for logs, metrics and the exhaustion message

        Returns:
            The task's result

        Raises:
            RetriesExhaustedError: A retryable failure persisted past max_retries
            Exception: Any non-retryable failure, unchanged
        """
        attempt = 0
        while True:
            try:
                return await self._run_attempt(task_factory, operation, attempt)
            except Exception as exc:
                if not is_retryable(exc):
                    logger.warning(
                        "upstream_call_failed",
                        operation=operation,
                        attempt=attempt + 1,
                        error=str(exc),
                        error_type=type(exc).__name__,
                    )
                    raise

                if attempt >= self.retry_policy.max_retries:
                    retry_after = self.retry_policy.delay_for(attempt)
                    record_retries_exhausted(operation)
                    logger.error(
                        "upstream_retries_exhausted",
                        operation=operation,
                        attempts=attempt + 1,
                        retry_after_seconds=round(retry_after, 3),
                        error=str(exc),
                        error_type=type(exc).__name__,
                    )
                    raise RetriesExhaustedError(
                        operation=operation,
                        attempts=attempt + 1,
                        last_error=exc,
                        retry_after=retry_after,
                    ) from exc

                delay = self.retry_policy.delay_for(attempt)
                record_upstream_retry(operation)
                logger.warning(
                    "upstream_retry_scheduled",
                    operation=operation,
                    attempt=attempt + 1,
                    delay_seconds=round(delay, 3),
                    error=str(exc),
                    error_type=type(exc).__name__,
                )

            await self._sleep(delay)
            attempt += 1

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def status(self) -> Dict[str, Any]:
        """Snapshot of queue state. Side-effect free."""
        now = self._clock()
        since_last = None if self._last_dispatch is None else max(0.0, now - self._last_dispatch)
        return {
            "queue_length": self.queue_length,
            "in_flight": self._in_flight,
            "max_concurrent": self.max_concurrent,
            "min_interval": self.min_interval,
            "last_dispatch": self._last_dispatch,
            "seconds_since_last_dispatch": since_last,
            "retry_policy": self.retry_policy.to_dict(),
        }

    def is_rate_limited(self) -> bool:
        return self.queue_length > 0 or self._in_flight >= self.max_concurrent


_dispatch_queue: Optional[DispatchQueue] = None


def get_dispatch_queue() -> DispatchQueue:
    """Global dispatch queue built from settings."""
    global _dispatch_queue
    if _dispatch_queue is None:
        dispatch = get_settings().dispatch
        _dispatch_queue = DispatchQueue(
            max_concurrent=dispatch.max_concurrent,
            min_interval=dispatch.min_interval_seconds,
            retry_policy=RetryPolicy(
                max_retries=dispatch.max_retries,
                base_delay=dispatch.base_delay_seconds,
                max_delay=dispatch.max_delay_seconds,
                jitter_factor=dispatch.jitter_factor,
            ),
        )
    return _dispatch_queue
