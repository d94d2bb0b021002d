"""Transport encodings.

Provides the SSE codec used by streamable-HTTP replies.
"""

from .sse import MESSAGE_EVENT_TYPE, SSEDecoder, SSEEvent, format_sse_event, read_one_message

__all__ = [
    "MESSAGE_EVENT_TYPE",
    "SSEDecoder",
    "SSEEvent",
    "format_sse_event",
    "read_one_message",
]
