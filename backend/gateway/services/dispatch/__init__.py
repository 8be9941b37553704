"""
Upstream dispatch: bounded concurrency, pacing and retry with backoff.
"""
from .queue import DispatchQueue, get_dispatch_queue
from .retry import RetryPolicy, is_retryable

__all__ = ["DispatchQueue", "get_dispatch_queue", "RetryPolicy", "is_retryable"]
