"""
Streaming relay: upstream callbacks to ordered client events.
"""
from .relay import CancellationToken, StreamCallbacks, StreamEvent, StreamingRelay
from .sse import SSE_HEADERS, format_sse

__all__ = [
    "CancellationToken",
    "StreamCallbacks",
    "StreamEvent",
    "StreamingRelay",
    "SSE_HEADERS",
    "format_sse",
]
