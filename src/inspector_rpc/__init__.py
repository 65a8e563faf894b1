"""Bidirectional JSON-RPC session engine.

A transport-agnostic protocol engine with two roles built on it:
- Server: answers the initialize handshake and serves registered methods
- Client: initiates the handshake and issues typed requests

Protocol: JSON-RPC 2.0 over any Transport (in-memory, stdio, SSE).
"""

__version__ = "0.1.0"

from .client import Client
from .config import ProtocolOptions
from .errors import (
    CapabilityNotSupportedError,
    ConnectionClosedError,
    JsonRpcProtocolError,
    MessageParseError,
    ProtocolError,
    RequestTimeoutError,
    ResultValidationError,
)
from .protocol import Protocol
from .server import HandshakeState, Server
from .transport import (
    MemoryTransport,
    SseClientTransport,
    SseEndpoint,
    SseServerTransport,
    StdioClientTransport,
    StdioServerParameters,
    StdioServerTransport,
    StreamTransport,
    Transport,
)
from .types import (
    PROTOCOL_VERSION,
    ClientCapabilities,
    Implementation,
    InitializeRequestParams,
    InitializeResult,
    JsonRpcError,
    JsonRpcErrorCode,
    JsonRpcErrorResponse,
    JsonRpcMessage,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    Method,
    ServerCapabilities,
    encode_message,
    parse_message,
)

__all__ = [
    "__version__",
    # Roles
    "Protocol",
    "Server",
    "Client",
    "HandshakeState",
    "ProtocolOptions",
    # Errors
    "ProtocolError",
    "JsonRpcProtocolError",
    "RequestTimeoutError",
    "ConnectionClosedError",
    "ResultValidationError",
    "MessageParseError",
    "CapabilityNotSupportedError",
    # Transport
    "Transport",
    "MemoryTransport",
    "StreamTransport",
    "StdioServerTransport",
    "StdioClientTransport",
    "StdioServerParameters",
    "SseEndpoint",
    "SseServerTransport",
    "SseClientTransport",
    # Protocol version
    "PROTOCOL_VERSION",
    # JSON-RPC
    "JsonRpcMessage",
    "JsonRpcRequest",
    "JsonRpcNotification",
    "JsonRpcResponse",
    "JsonRpcErrorResponse",
    "JsonRpcError",
    "JsonRpcErrorCode",
    "Method",
    "encode_message",
    "parse_message",
    # Handshake
    "Implementation",
    "ClientCapabilities",
    "ServerCapabilities",
    "InitializeRequestParams",
    "InitializeResult",
]
