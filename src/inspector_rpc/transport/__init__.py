"""Transport layer.

Provides the channel contract the protocol engine runs over, plus
implementations:
- memory - linked in-process pair
- stdio - newline-delimited JSON over pipes (server side and subprocess client)
- SSE - HTTP event stream + POST, served with Starlette, consumed with httpx
"""

from .base import Observers, Transport, Unsubscribe
from .memory import MemoryTransport
from .sse import (
    SseClientTransport,
    SseEndpoint,
    SseServerTransport,
    create_sse_app,
    iter_sse_events,
)
from .stdio import (
    StdioClientTransport,
    StdioServerParameters,
    StdioServerTransport,
    StreamTransport,
)

__all__ = [
    # Base abstractions
    "Observers",
    "Transport",
    "Unsubscribe",
    # In-process
    "MemoryTransport",
    # stdio implementation
    "StreamTransport",
    "StdioServerTransport",
    "StdioClientTransport",
    "StdioServerParameters",
    # SSE implementation
    "SseEndpoint",
    "SseServerTransport",
    "SseClientTransport",
    "create_sse_app",
    "iter_sse_events",
]
