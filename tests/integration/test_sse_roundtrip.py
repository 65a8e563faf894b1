"""Integration tests over HTTP with Server-Sent Events.

Serves the example server with uvicorn on a free local port and connects
the client through SseClientTransport.

Run with: pytest tests/integration/test_sse_roundtrip.py -v
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

import pytest
import uvicorn

from inspector_rpc import (
    Client,
    HandshakeState,
    Implementation,
    SseClientTransport,
    SseServerTransport,
)
from inspector_rpc.example_server import GREETING_URI, SERVER_NAME, build_example_server
from inspector_rpc.transport.sse import SseEndpoint, create_sse_app

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
async def sse_server() -> AsyncIterator[tuple[str, SseEndpoint]]:
    """Run the example server over SSE; yields its stream URL and endpoint."""

    async def on_session(transport: SseServerTransport) -> None:
        await build_example_server().connect(transport)

    app = create_sse_app(on_session, ping_interval=0.5)
    config = uvicorn.Config(
        app,
        host="127.0.0.1",
        port=0,
        lifespan="off",
        log_level="warning",
        timeout_graceful_shutdown=1,
    )
    server = uvicorn.Server(config)
    task = asyncio.create_task(server.serve())

    for _ in range(500):
        if server.started:
            break
        await asyncio.sleep(0.01)
    assert server.started, "uvicorn did not start"

    port = server.servers[0].sockets[0].getsockname()[1]
    yield f"http://127.0.0.1:{port}/sse", app.state.sse_endpoint

    server.should_exit = True
    await asyncio.wait_for(task, timeout=5)


# =============================================================================
# Tests
# =============================================================================


class TestSseRoundTrip:
    """Client against the example server over SSE."""

    @pytest.mark.anyio
    async def test_handshake_and_requests(self, sse_server: tuple[str, SseEndpoint]) -> None:
        url, endpoint = sse_server
        client = Client(Implementation(name="sse-test", version="1.0.0"))
        transport = SseClientTransport(url, timeout=5.0)

        await client.connect(transport)
        try:
            await asyncio.wait_for(client.initialize(), timeout=5)
            tools = await asyncio.wait_for(client.list_tools(), timeout=5)
            echo = await asyncio.wait_for(client.call_tool("echo", {"message": "sse"}), timeout=5)
            resource = await asyncio.wait_for(client.read_resource(GREETING_URI), timeout=5)

            assert client.state is HandshakeState.READY
            assert client.server_info.name == SERVER_NAME
            assert transport.endpoint is not None
            assert len(endpoint.sessions) == 1
        finally:
            await client.close()

        assert [tool.name for tool in tools.tools] == ["echo", "add"]
        assert echo.content[0].text == "Echo: sse"
        assert resource.contents[0].text == "Hello!"

    @pytest.mark.anyio
    async def test_sessions_are_independent(self, sse_server: tuple[str, SseEndpoint]) -> None:
        """Two clients get separate sessions and separate id spaces."""
        url, endpoint = sse_server
        clients = [Client(Implementation(name=f"c{n}", version="1")) for n in range(2)]

        for client in clients:
            await client.connect(SseClientTransport(url, timeout=5.0))
        try:
            await asyncio.gather(*(asyncio.wait_for(c.initialize(), timeout=5) for c in clients))
            results = await asyncio.gather(
                *(
                    asyncio.wait_for(c.call_tool("echo", {"message": str(n)}), timeout=5)
                    for n, c in enumerate(clients)
                )
            )
            assert len(endpoint.sessions) == 2
        finally:
            for client in clients:
                await client.close()

        assert [r.content[0].text for r in results] == ["Echo: 0", "Echo: 1"]
