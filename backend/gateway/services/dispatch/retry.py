"""
Retry policy and retryability classification for upstream calls.

Delay for 0-based attempt n:

    min(base_delay * 2**n, max_delay) * (1 + jitter_factor * U(0, 1))
"""
import random
from dataclasses import dataclass, field
from typing import Any, Callable, Dict

import httpx

from gateway.core.errors import (
    ConfigurationError,
    GatewayError,
    RetriesExhaustedError,
    StreamTransportError,
    UpstreamThrottled,
    ValidationError,
)

THROTTLING_CODES = frozenset({"ThrottlingException", "TooManyRequestsException"})
THROTTLING_MESSAGES = ("rate is too high", "throttling", "too many requests")
RETRYABLE_STATUSES = frozenset({429, 502, 503, 504})


@dataclass
class RetryPolicy:
    """Exponential backoff with multiplicative jitter."""

    max_retries: int = 5
    base_delay: float = 2.0
    max_delay: float = 30.0
    jitter_factor: float = 0.1
    rng: Callable[[], float] = field(default=random.random, repr=False, compare=False)

    def delay_for(self, attempt: int) -> float:
        """Backoff delay in seconds before retry number ``attempt`` (0-based)."""
        exponential = min(self.base_delay * (2 ** attempt), self.max_delay)
        return exponential * (1 + self.jitter_factor * self.rng())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "max_retries": self.max_retries,
            "base_delay": self.base_delay,
            "max_delay": self.max_delay,
            "jitter_factor": self.jitter_factor,
        }


def _status_of(exc: BaseException) -> Any:
    # GatewayError.status_code is the client-facing status, not the upstream one
    if isinstance(exc, GatewayError):
        return getattr(exc, "upstream_status", None)
    status = getattr(exc, "status_code", None)
    if status is None and isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
    return status


def is_retryable(exc: BaseException) -> bool:
    """
    Classify an upstream failure as transient.

    Retryable: UpstreamThrottled, throttling error names/codes, throttling
    phrases in the message, and HTTP-equivalent statuses 429/502/503/504.
    Validation, configuration and mid-stream failures are never retried.
    """
    if isinstance(exc, (ValidationError, ConfigurationError, StreamTransportError, RetriesExhaustedError)):
        return False
    if isinstance(exc, UpstreamThrottled):
        return True

    if type(exc).__name__ in THROTTLING_CODES:
        return True
    if getattr(exc, "code", None) in THROTTLING_CODES:
        return True

    message = str(exc).lower()
    if any(phrase in message for phrase in THROTTLING_MESSAGES):
        return True

    return _status_of(exc) in RETRYABLE_STATUSES
