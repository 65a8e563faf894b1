"""Client role.

Initiates the handshake and issues typed domain requests:

    client = Client(Implementation(name="inspector", version="0.1.0"))
    await client.connect(StdioClientTransport(params))
    await client.initialize()
    tools = await client.list_tools()
"""

from __future__ import annotations

import logging
from typing import Any

from .config import ProtocolOptions
from .errors import CapabilityNotSupportedError, ProtocolError
from .protocol import Protocol
from .server import HandshakeState
from .types import (
    PROTOCOL_VERSION,
    CallToolRequestParams,
    CallToolResult,
    ClientCapabilities,
    EmptyResult,
    GetPromptRequestParams,
    GetPromptResult,
    Implementation,
    InitializeRequestParams,
    InitializeResult,
    ListPromptsResult,
    ListResourcesResult,
    ListToolsResult,
    LoggingLevel,
    Method,
    PaginatedRequestParams,
    ReadResourceRequestParams,
    ReadResourceResult,
    ServerCapabilities,
    SetLevelRequestParams,
)

logger = logging.getLogger(__name__)

# Server capability each domain method depends on
_METHOD_CAPABILITIES = {
    Method.TOOLS_LIST: "tools",
    Method.TOOLS_CALL: "tools",
    Method.RESOURCES_LIST: "resources",
    Method.RESOURCES_READ: "resources",
    Method.PROMPTS_LIST: "prompts",
    Method.PROMPTS_GET: "prompts",
    Method.LOGGING_SET_LEVEL: "logging",
}


class Client(Protocol):
    """Protocol engine that initiates the handshake and calls server methods."""

    def __init__(
        self,
        client_info: Implementation,
        capabilities: ClientCapabilities | None = None,
        *,
        options: ProtocolOptions | None = None,
    ) -> None:
        super().__init__(options)
        self.client_info = client_info
        self.capabilities = capabilities or ClientCapabilities()

        self._state = HandshakeState.UNINITIALIZED
        self._server_capabilities: ServerCapabilities | None = None
        self._server_info: Implementation | None = None

    @property
    def state(self) -> HandshakeState:
        return self._state

    @property
    def server_capabilities(self) -> ServerCapabilities | None:
        """Capabilities the server advertised; None before the handshake."""
        return self._server_capabilities

    @property
    def server_info(self) -> Implementation | None:
        """Name and version the server advertised; None before the handshake."""
        return self._server_info

    async def initialize(
        self,
        protocol_version: str = PROTOCOL_VERSION,
        *,
        timeout: float | None = None,
    ) -> InitializeResult:
        """Run the initialize/initialized handshake.

        Raises:
            JsonRpcProtocolError: The server refused the handshake.
            ProtocolError: Already initialized, or the server answered with
                a protocol version we do not speak.
        """
        if self._state is not HandshakeState.UNINITIALIZED:
            raise ProtocolError("Client is already initialized")

        params = InitializeRequestParams(
            protocolVersion=protocol_version,
            capabilities=self.capabilities,
            clientInfo=self.client_info,
        )
        result: InitializeResult = await self.request(
            Method.INITIALIZE, params, InitializeResult, timeout=timeout
        )

        if result.protocolVersion != protocol_version:
            raise ProtocolError(
                f"Server's protocol version is not supported: {result.protocolVersion}"
            )

        self._state = HandshakeState.AWAITING_INITIALIZED
        try:
            await self.notify(Method.INITIALIZED)
        except BaseException:
            self._state = HandshakeState.UNINITIALIZED
            raise

        self._server_capabilities = result.capabilities
        self._server_info = result.serverInfo
        self._state = HandshakeState.READY
        logger.info(
            f"Connected to {result.serverInfo.name} {result.serverInfo.version} "
            f"(protocol {result.protocolVersion})"
        )
        return result

    # =========================================================================
    # Domain requests
    # =========================================================================

    async def list_tools(self, cursor: str | None = None) -> ListToolsResult:
        return await self.request(
            Method.TOOLS_LIST, PaginatedRequestParams(cursor=cursor), ListToolsResult
        )

    async def call_tool(
        self,
        name: str,
        arguments: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> CallToolResult:
        return await self.request(
            Method.TOOLS_CALL,
            CallToolRequestParams(name=name, arguments=arguments),
            CallToolResult,
            timeout=timeout,
        )

    async def list_resources(self, cursor: str | None = None) -> ListResourcesResult:
        return await self.request(
            Method.RESOURCES_LIST, PaginatedRequestParams(cursor=cursor), ListResourcesResult
        )

    async def read_resource(self, uri: str) -> ReadResourceResult:
        return await self.request(
            Method.RESOURCES_READ, ReadResourceRequestParams(uri=uri), ReadResourceResult
        )

    async def list_prompts(self, cursor: str | None = None) -> ListPromptsResult:
        return await self.request(
            Method.PROMPTS_LIST, PaginatedRequestParams(cursor=cursor), ListPromptsResult
        )

    async def get_prompt(
        self, name: str, arguments: dict[str, str] | None = None
    ) -> GetPromptResult:
        return await self.request(
            Method.PROMPTS_GET,
            GetPromptRequestParams(name=name, arguments=arguments),
            GetPromptResult,
        )

    async def set_logging_level(self, level: LoggingLevel) -> EmptyResult:
        return await self.request(
            Method.LOGGING_SET_LEVEL, SetLevelRequestParams(level=level), EmptyResult
        )

    def _assert_capability_for_method(self, method: str) -> None:
        if not self.options.enforce_strict_capabilities:
            return

        capability = _METHOD_CAPABILITIES.get(method)
        if capability is None:
            return

        capabilities = self._server_capabilities
        if capabilities is None or getattr(capabilities, capability) is None:
            raise CapabilityNotSupportedError(capability, method)
