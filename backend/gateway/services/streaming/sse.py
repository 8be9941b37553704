"""Server-Sent Events encoding for stream frames."""
import json

from gateway.services.streaming.relay import StreamEvent

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def format_sse(event: StreamEvent) -> str:
    """Encode one frame as ``event: <name>\\ndata: <json>\\n\\n``."""
    return f"event: {event.event}\ndata: {json.dumps(event.data, default=str)}\n\n"
