"""Tests for the client role and its typed requests."""

from __future__ import annotations

import asyncio

import pytest

from inspector_rpc import (
    CapabilityNotSupportedError,
    Client,
    ConnectionClosedError,
    HandshakeState,
    Implementation,
    JsonRpcErrorCode,
    JsonRpcProtocolError,
    MemoryTransport,
    Method,
    Protocol,
    ProtocolError,
    ProtocolOptions,
    RequestTimeoutError,
    Server,
    ServerCapabilities,
)
from inspector_rpc.example_server import GREETING_URI, RESOURCE_NOT_FOUND, build_example_server
from inspector_rpc.types import TextContent, ToolsCapability


async def connect_pair(client: Client, peer: Protocol) -> None:
    client_transport, peer_transport = MemoryTransport.create_linked_pair()
    await peer.connect(peer_transport)
    await client.connect(client_transport)


async def ready_client(client_info: Implementation, options: ProtocolOptions | None = None) -> Client:
    client = Client(client_info, options=options)
    await connect_pair(client, build_example_server())
    await client.initialize()
    return client


# =============================================================================
# Handshake
# =============================================================================


class TestInitialize:
    """Tests for Client.initialize."""

    @pytest.mark.anyio
    async def test_records_server_details(
        self, client_info: Implementation, server_info: Implementation
    ) -> None:
        client = Client(client_info)
        capabilities = ServerCapabilities(tools=ToolsCapability(listChanged=True))
        await connect_pair(client, Server(server_info, capabilities))

        assert client.server_info is None
        assert client.state is HandshakeState.UNINITIALIZED

        result = await client.initialize()

        assert result.serverInfo == server_info
        assert client.server_info == server_info
        assert client.server_capabilities.tools.listChanged is True
        assert client.server_capabilities.resources is None
        assert client.state is HandshakeState.READY

    @pytest.mark.anyio
    async def test_initialize_twice(self, client_info: Implementation) -> None:
        client = await ready_client(client_info)

        with pytest.raises(ProtocolError, match="already initialized"):
            await client.initialize()

    @pytest.mark.anyio
    async def test_refused_version_can_be_retried(
        self, client_info: Implementation, server_info: Implementation
    ) -> None:
        """A server refusal leaves the client uninitialized so it can try again."""
        client = Client(client_info)
        await connect_pair(client, Server(server_info))

        with pytest.raises(JsonRpcProtocolError) as exc_info:
            await client.initialize(protocol_version="1999-01-01")

        assert exc_info.value.code == JsonRpcErrorCode.INVALID_PARAMS
        assert client.state is HandshakeState.UNINITIALIZED
        assert client.server_info is None

        await client.initialize()
        assert client.state is HandshakeState.READY

    @pytest.mark.anyio
    async def test_server_answers_other_version(self, client_info: Implementation) -> None:
        """The client rejects a server that replies with a version it did not ask for."""
        peer = Protocol()
        notifications: list[object] = []
        peer.set_request_handler(
            Method.INITIALIZE,
            None,
            lambda _params: {
                "protocolVersion": "2099-01-01",
                "capabilities": {},
                "serverInfo": {"name": "future", "version": "9"},
            },
        )
        peer.set_notification_handler(Method.INITIALIZED, None, notifications.append)
        client = Client(client_info)
        await connect_pair(client, peer)

        with pytest.raises(ProtocolError, match="2099-01-01"):
            await client.initialize()

        assert client.state is HandshakeState.UNINITIALIZED
        assert notifications == []

    @pytest.mark.anyio
    async def test_initialize_timeout(self, client_info: Implementation) -> None:
        client = Client(client_info)
        client_transport, silent_transport = MemoryTransport.create_linked_pair()
        await silent_transport.start()
        await client.connect(client_transport)

        with pytest.raises(RequestTimeoutError):
            await client.initialize(timeout=0.05)

        assert client.state is HandshakeState.UNINITIALIZED

    @pytest.mark.anyio
    async def test_initialize_when_not_connected(self, client_info: Implementation) -> None:
        client = Client(client_info)

        with pytest.raises(ConnectionClosedError):
            await client.initialize()


# =============================================================================
# Capabilities
# =============================================================================


class TestCapabilityEnforcement:
    """Tests for enforce_strict_capabilities."""

    @pytest.mark.anyio
    async def test_strict_refuses_unadvertised_method(
        self, client_info: Implementation, server_info: Implementation
    ) -> None:
        """Strict clients fail locally for methods the server did not advertise."""
        client = Client(client_info, options=ProtocolOptions(enforce_strict_capabilities=True))
        await connect_pair(client, Server(server_info, ServerCapabilities()))
        await client.initialize()

        with pytest.raises(CapabilityNotSupportedError) as exc_info:
            await client.list_tools()

        assert exc_info.value.capability == "tools"
        assert client.pending_count == 0

    @pytest.mark.anyio
    async def test_strict_refuses_before_initialize(self, client_info: Implementation) -> None:
        client = Client(client_info, options=ProtocolOptions(enforce_strict_capabilities=True))
        await connect_pair(client, build_example_server())

        with pytest.raises(CapabilityNotSupportedError):
            await client.list_prompts()

    @pytest.mark.anyio
    async def test_lenient_sends_anyway(
        self, client_info: Implementation, server_info: Implementation
    ) -> None:
        client = Client(client_info)
        await connect_pair(client, Server(server_info, ServerCapabilities()))
        await client.initialize()

        with pytest.raises(JsonRpcProtocolError) as exc_info:
            await client.list_tools()

        assert exc_info.value.code == JsonRpcErrorCode.METHOD_NOT_FOUND

    @pytest.mark.anyio
    async def test_strict_allows_advertised_method(self, client_info: Implementation) -> None:
        client = await ready_client(
            client_info, ProtocolOptions(enforce_strict_capabilities=True)
        )

        result = await client.list_tools()

        assert [tool.name for tool in result.tools] == ["echo", "add"]


# =============================================================================
# Domain Requests
# =============================================================================


class TestDomainRequests:
    """Typed client methods against the example server."""

    @pytest.mark.anyio
    async def test_call_tool(self, client_info: Implementation) -> None:
        client = await ready_client(client_info)

        echo = await client.call_tool("echo", {"message": "hi"})
        add = await client.call_tool("add", {"a": 1, "b": 2})

        assert echo.content == [TextContent(text="Echo: hi")]
        assert echo.isError is False
        assert add.content[0].text == "3.0"

    @pytest.mark.anyio
    async def test_call_tool_bad_arguments_is_tool_error(self, client_info: Implementation) -> None:
        client = await ready_client(client_info)

        result = await client.call_tool("add", {"a": "one"})

        assert result.isError is True
        assert "Invalid arguments" in result.content[0].text

    @pytest.mark.anyio
    async def test_call_unknown_tool(self, client_info: Implementation) -> None:
        client = await ready_client(client_info)

        with pytest.raises(JsonRpcProtocolError) as exc_info:
            await client.call_tool("missing")

        assert exc_info.value.code == RESOURCE_NOT_FOUND

    @pytest.mark.anyio
    async def test_resources(self, client_info: Implementation) -> None:
        client = await ready_client(client_info)

        listing = await client.list_resources()
        contents = await client.read_resource(GREETING_URI)

        assert [resource.uri for resource in listing.resources] == [GREETING_URI]
        assert contents.contents[0].text == "Hello!"

        with pytest.raises(JsonRpcProtocolError):
            await client.read_resource("example://nothing")

    @pytest.mark.anyio
    async def test_prompts(self, client_info: Implementation) -> None:
        client = await ready_client(client_info)

        listing = await client.list_prompts()
        prompt = await client.get_prompt("greet", {"name": "Ada"})
        default = await client.get_prompt("greet")

        assert [p.name for p in listing.prompts] == ["greet"]
        assert prompt.messages[0].content.text == "Please greet Ada."
        assert default.messages[0].content.text == "Please greet world."

    @pytest.mark.anyio
    async def test_set_logging_level(self, client_info: Implementation) -> None:
        client = await ready_client(client_info)
        messages: list[dict[str, object]] = []
        client.set_notification_handler(Method.LOG_MESSAGE, None, messages.append)

        await client.set_logging_level("debug")
        for _ in range(100):
            if messages:
                break
            await asyncio.sleep(0.001)

        assert messages[0]["level"] == "info"
        assert "debug" in messages[0]["data"]

    @pytest.mark.anyio
    async def test_ping_server(self, client_info: Implementation) -> None:
        client = await ready_client(client_info)

        await client.ping()

        assert client.pending_count == 0
        assert client.state is HandshakeState.READY
