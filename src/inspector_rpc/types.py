"""Message and payload type definitions.

Defines the JSON-RPC 2.0 envelope plus the handshake and domain payloads
exchanged between client and server.

Note: Field names use camelCase to match the wire format.
This is required for protocol compatibility - do not change to snake_case.
"""

from __future__ import annotations

import json
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import MessageParseError

# Protocol version
PROTOCOL_VERSION = "2024-11-05"

JSONRPC_VERSION = "2.0"

RequestId = Union[str, int]


class RpcModel(BaseModel):
    """Base model for payloads; unknown fields are kept for forward compatibility."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)


# =============================================================================
# JSON-RPC 2.0 Base Types
# =============================================================================


class JsonRpcRequest(BaseModel):
    """JSON-RPC 2.0 request."""

    jsonrpc: Literal["2.0"] = "2.0"
    id: RequestId
    method: str
    params: dict[str, Any] | None = None

    def to_wire(self) -> dict[str, Any]:
        data: dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id, "method": self.method}
        if self.params is not None:
            data["params"] = self.params
        return data


class JsonRpcNotification(BaseModel):
    """JSON-RPC 2.0 notification (no response expected)."""

    jsonrpc: Literal["2.0"] = "2.0"
    method: str
    params: dict[str, Any] | None = None

    def to_wire(self) -> dict[str, Any]:
        data: dict[str, Any] = {"jsonrpc": self.jsonrpc, "method": self.method}
        if self.params is not None:
            data["params"] = self.params
        return data


class JsonRpcResponse(BaseModel):
    """JSON-RPC 2.0 successful response."""

    jsonrpc: Literal["2.0"] = "2.0"
    id: RequestId
    result: Any = Field(default_factory=dict)

    def to_wire(self) -> dict[str, Any]:
        return {"jsonrpc": self.jsonrpc, "id": self.id, "result": self.result}


class JsonRpcError(BaseModel):
    """JSON-RPC 2.0 error object."""

    code: int
    message: str
    data: Any | None = None

    def to_wire(self) -> dict[str, Any]:
        data: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            data["data"] = self.data
        return data


class JsonRpcErrorResponse(BaseModel):
    """JSON-RPC 2.0 error response.

    ``id`` is None only when the peer could not determine the request id
    (for instance after a parse error).
    """

    jsonrpc: Literal["2.0"] = "2.0"
    id: RequestId | None
    error: JsonRpcError

    def to_wire(self) -> dict[str, Any]:
        return {"jsonrpc": self.jsonrpc, "id": self.id, "error": self.error.to_wire()}


JsonRpcMessage = Union[JsonRpcRequest, JsonRpcNotification, JsonRpcResponse, JsonRpcErrorResponse]


# Standard JSON-RPC error codes
class JsonRpcErrorCode:
    """Standard JSON-RPC 2.0 error codes."""

    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603


class Method:
    """Method names used by the client and server roles."""

    INITIALIZE = "initialize"
    INITIALIZED = "initialized"
    PING = "ping"

    TOOLS_LIST = "tools/list"
    TOOLS_CALL = "tools/call"
    RESOURCES_LIST = "resources/list"
    RESOURCES_READ = "resources/read"
    PROMPTS_LIST = "prompts/list"
    PROMPTS_GET = "prompts/get"
    LOGGING_SET_LEVEL = "logging/setLevel"

    LOG_MESSAGE = "notifications/message"


# =============================================================================
# Wire encoding
# =============================================================================


def encode_message(message: JsonRpcMessage) -> str:
    """Serialize a message to a single line of JSON."""
    return json.dumps(message.to_wire(), ensure_ascii=False, separators=(",", ":"))


def parse_message(data: str | bytes | dict[str, Any]) -> JsonRpcMessage:
    """Decode wire data into the matching message model.

    Raises:
        MessageParseError: with PARSE_ERROR for undecodable JSON, or
            INVALID_REQUEST for a well-formed value that is not a valid envelope.
    """
    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise MessageParseError(JsonRpcErrorCode.PARSE_ERROR, f"Parse error: {e}") from e

    if not isinstance(data, dict):
        raise MessageParseError(
            JsonRpcErrorCode.INVALID_REQUEST, "Message must be a JSON object"
        )

    if data.get("jsonrpc") != JSONRPC_VERSION:
        raise MessageParseError(JsonRpcErrorCode.INVALID_REQUEST, "Invalid JSON-RPC version")

    model: type[BaseModel]
    if "method" in data:
        model = JsonRpcRequest if "id" in data else JsonRpcNotification
    elif "error" in data:
        model = JsonRpcErrorResponse
    elif "result" in data:
        model = JsonRpcResponse
    else:
        raise MessageParseError(
            JsonRpcErrorCode.INVALID_REQUEST, "Message is neither a request, notification nor response"
        )

    try:
        return model.model_validate(data)  # type: ignore[return-value]
    except ValidationError as e:
        raise MessageParseError(
            JsonRpcErrorCode.INVALID_REQUEST, f"Invalid {model.__name__}: {e.error_count()} error(s)"
        ) from e


# =============================================================================
# Capability Types
# =============================================================================


class Implementation(RpcModel):
    """Name and version of a client or server implementation."""

    name: str
    version: str


class RootsCapability(RpcModel):
    listChanged: bool | None = None


class ClientCapabilities(RpcModel):
    """Capabilities supported by the client."""

    experimental: dict[str, Any] | None = None
    sampling: dict[str, Any] | None = None
    roots: RootsCapability | None = None


class PromptsCapability(RpcModel):
    listChanged: bool | None = None


class ResourcesCapability(RpcModel):
    subscribe: bool | None = None
    listChanged: bool | None = None


class ToolsCapability(RpcModel):
    listChanged: bool | None = None


class LoggingCapability(RpcModel):
    pass


class ServerCapabilities(RpcModel):
    """Capabilities supported by the server."""

    experimental: dict[str, Any] | None = None
    logging: LoggingCapability | None = None
    prompts: PromptsCapability | None = None
    resources: ResourcesCapability | None = None
    tools: ToolsCapability | None = None


# =============================================================================
# Initialize
# =============================================================================


class InitializeRequestParams(RpcModel):
    """Request parameters for the initialize method."""

    protocolVersion: str
    capabilities: ClientCapabilities = Field(default_factory=ClientCapabilities)
    clientInfo: Implementation


class InitializeResult(RpcModel):
    """Response to the initialize method."""

    protocolVersion: str
    capabilities: ServerCapabilities = Field(default_factory=ServerCapabilities)
    serverInfo: Implementation


class EmptyResult(RpcModel):
    """Result with no fields (ping, logging/setLevel)."""


class PaginatedRequestParams(RpcModel):
    cursor: str | None = None


# =============================================================================
# Content Types
# =============================================================================


class TextContent(RpcModel):
    """Text content block."""

    type: Literal["text"] = "text"
    text: str


class ImageContent(RpcModel):
    """Image content block."""

    type: Literal["image"] = "image"
    data: str  # Base64 encoded
    mimeType: str


class TextResourceContents(RpcModel):
    uri: str
    mimeType: str | None = None
    text: str


class BlobResourceContents(RpcModel):
    uri: str
    mimeType: str | None = None
    blob: str  # Base64 encoded


ResourceContents = Union[TextResourceContents, BlobResourceContents]


class EmbeddedResource(RpcModel):
    """Resource embedded in a tool result or prompt message."""

    type: Literal["resource"] = "resource"
    resource: ResourceContents


ContentBlock = Annotated[
    Union[TextContent, ImageContent, EmbeddedResource], Field(discriminator="type")
]


# =============================================================================
# Tools
# =============================================================================


class Tool(RpcModel):
    """Tool definition advertised by a server."""

    name: str
    description: str | None = None
    inputSchema: dict[str, Any] = Field(default_factory=lambda: {"type": "object"})


class ListToolsResult(RpcModel):
    tools: list[Tool]
    nextCursor: str | None = None


class CallToolRequestParams(RpcModel):
    name: str
    arguments: dict[str, Any] | None = None


class CallToolResult(RpcModel):
    content: list[ContentBlock]
    isError: bool = False


# =============================================================================
# Resources
# =============================================================================


class Resource(RpcModel):
    """Resource advertised by a server."""

    uri: str
    name: str
    description: str | None = None
    mimeType: str | None = None


class ListResourcesResult(RpcModel):
    resources: list[Resource]
    nextCursor: str | None = None


class ReadResourceRequestParams(RpcModel):
    uri: str


class ReadResourceResult(RpcModel):
    contents: list[ResourceContents]


# =============================================================================
# Prompts
# =============================================================================


class PromptArgument(RpcModel):
    name: str
    description: str | None = None
    required: bool | None = None


class Prompt(RpcModel):
    """Prompt template advertised by a server."""

    name: str
    description: str | None = None
    arguments: list[PromptArgument] | None = None


class ListPromptsResult(RpcModel):
    prompts: list[Prompt]
    nextCursor: str | None = None


class GetPromptRequestParams(RpcModel):
    name: str
    arguments: dict[str, str] | None = None


class PromptMessage(RpcModel):
    role: Literal["user", "assistant"]
    content: ContentBlock


class GetPromptResult(RpcModel):
    description: str | None = None
    messages: list[PromptMessage]


# =============================================================================
# Logging
# =============================================================================


LoggingLevel = Literal[
    "debug", "info", "notice", "warning", "error", "critical", "alert", "emergency"
]


class SetLevelRequestParams(RpcModel):
    level: LoggingLevel


class LoggingMessageNotificationParams(RpcModel):
    level: LoggingLevel
    logger: str | None = None
    data: Any
