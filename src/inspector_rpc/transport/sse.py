"""Server-Sent Events (SSE) transport implementation.

Server to client messages travel over a long-lived SSE stream, client to
server messages are individual HTTP POSTs:

- GET  /sse                        - opens a session; first event is ``endpoint``
- POST /messages?session_id=<id>   - delivers one JSON-RPC message (202 Accepted)

Each event on the stream is either:
    event: endpoint
    data: /messages?session_id=...

    event: message
    data: {"jsonrpc": "2.0", ...}
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass

import httpx
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response, StreamingResponse
from starlette.routing import Route

from ..errors import ConnectionClosedError, MessageParseError, ProtocolError
from ..types import JsonRpcMessage, encode_message, parse_message
from .base import Transport

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}


def format_sse(event: str, data: str) -> str:
    """Format one SSE event."""
    lines = "".join(f"data: {line}\n" for line in data.split("\n"))
    return f"event: {event}\n{lines}\n"


# =============================================================================
# Server side
# =============================================================================


class SseServerTransport(Transport):
    """Server end of one SSE session.

    ``send`` queues messages for the event stream; POSTed messages arrive
    through ``handle_post_body``.
    """

    def __init__(self, session_id: str, endpoint: str) -> None:
        super().__init__()
        self.session_id = session_id
        self.endpoint = endpoint
        self._queue: asyncio.Queue[JsonRpcMessage | None] = asyncio.Queue()
        self._closed = False

    async def start(self) -> None:
        if self._closed:
            raise ConnectionClosedError("Transport is closed")

    async def send(self, message: JsonRpcMessage) -> None:
        if self._closed:
            raise ConnectionClosedError("SSE session is closed")
        await self._queue.put(message)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)  # Signal end of stream
        self._notify_closed()

    def handle_post_body(self, body: bytes) -> None:
        """Deliver one POSTed message.

        Raises:
            MessageParseError: If the body is not a valid JSON-RPC message.
        """
        try:
            message = parse_message(body)
        except MessageParseError as e:
            self._report_error(e)
            raise
        self._deliver_message(message)

    async def event_stream(self, ping_interval: float | None = None) -> AsyncIterator[str]:
        """Yield SSE-formatted events until the session closes."""
        yield format_sse("endpoint", self.endpoint)

        while True:
            try:
                message = await asyncio.wait_for(self._queue.get(), timeout=ping_interval)
            except TimeoutError:
                # Comment line keeps proxies from dropping an idle stream
                yield ": ping\n\n"
                continue

            if message is None:
                break
            yield format_sse("message", encode_message(message))


SessionHandler = Callable[[SseServerTransport], Awaitable[None]]


class SseEndpoint:
    """Registry of SSE sessions plus the Starlette routes that serve them.

    ``on_session`` is awaited for every new stream, typically to connect a
    fresh Server to the session's transport:

        async def on_session(transport):
            await build_server().connect(transport)

        app = Starlette(routes=SseEndpoint(on_session).routes)
    """

    def __init__(
        self,
        on_session: SessionHandler,
        *,
        sse_path: str = "/sse",
        message_path: str = "/messages",
        ping_interval: float | None = 15.0,
    ) -> None:
        self._on_session = on_session
        self.sse_path = sse_path
        self.message_path = message_path
        self.ping_interval = ping_interval
        self._sessions: dict[str, SseServerTransport] = {}

    @property
    def sessions(self) -> dict[str, SseServerTransport]:
        return self._sessions

    @property
    def routes(self) -> list[Route]:
        return [
            Route(self.sse_path, self.handle_sse, methods=["GET"]),
            Route(self.message_path, self.handle_post_message, methods=["POST"]),
        ]

    async def open_session(self, root_path: str = "") -> SseServerTransport:
        """Create and register a session, then hand it to ``on_session``."""
        session_id = uuid.uuid4().hex
        endpoint = f"{root_path}{self.message_path}?session_id={session_id}"
        transport = SseServerTransport(session_id, endpoint)
        self._sessions[session_id] = transport
        transport.on_close(lambda: self._sessions.pop(session_id, None))

        try:
            await self._on_session(transport)
        except Exception:
            await transport.close()
            raise

        logger.info(f"SSE session opened: {session_id}")
        return transport

    async def handle_sse(self, request: Request) -> Response:
        """GET endpoint: open a session and stream its messages."""
        transport = await self.open_session(request.scope.get("root_path", ""))

        async def stream() -> AsyncIterator[str]:
            try:
                async for chunk in transport.event_stream(self.ping_interval):
                    yield chunk
            finally:
                # Client went away or the session ended
                await transport.close()
                logger.info(f"SSE session closed: {transport.session_id}")

        return StreamingResponse(stream(), media_type="text/event-stream", headers=SSE_HEADERS)

    async def handle_post_message(self, request: Request) -> Response:
        """POST endpoint: route one message to its session."""
        raw_id = request.query_params.get("session_id")
        if not raw_id:
            return PlainTextResponse("session_id is required", status_code=400)

        try:
            session_id = uuid.UUID(hex=raw_id).hex
        except ValueError:
            return PlainTextResponse("Invalid session ID", status_code=400)

        transport = self._sessions.get(session_id)
        if transport is None:
            return PlainTextResponse("Could not find session", status_code=404)

        body = await request.body()
        try:
            transport.handle_post_body(body)
        except MessageParseError as e:
            return PlainTextResponse(f"Invalid message: {e}", status_code=400)

        return PlainTextResponse("Accepted", status_code=202)


def create_sse_app(
    on_session: SessionHandler,
    *,
    sse_path: str = "/sse",
    message_path: str = "/messages",
    ping_interval: float | None = 15.0,
) -> Starlette:
    """Create a Starlette application serving SSE sessions."""
    endpoint = SseEndpoint(
        on_session,
        sse_path=sse_path,
        message_path=message_path,
        ping_interval=ping_interval,
    )
    app = Starlette(routes=endpoint.routes)
    app.state.sse_endpoint = endpoint
    return app


# =============================================================================
# Client side
# =============================================================================


@dataclass
class ServerSentEvent:
    event: str = "message"
    data: str = ""
    id: str | None = None


async def iter_sse_events(lines: AsyncIterator[str]) -> AsyncIterator[ServerSentEvent]:
    """Parse an SSE line stream into events.

    Handles multi-line data fields, comments and the optional space after
    the field colon.
    """
    event = "message"
    data: list[str] = []
    event_id: str | None = None

    async for line in lines:
        line = line.rstrip("\r\n")

        if not line:
            if data:
                yield ServerSentEvent(event=event, data="\n".join(data), id=event_id)
            event, data, event_id = "message", [], None
            continue

        if line.startswith(":"):
            continue

        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if name == "event":
            event = value
        elif name == "data":
            data.append(value)
        elif name == "id":
            event_id = value

    if data:
        yield ServerSentEvent(event=event, data="\n".join(data), id=event_id)


class SseClientTransport(Transport):
    """Client end of an SSE session.

    ``start()`` opens the event stream and waits for the server to announce
    its POST endpoint.
    """

    def __init__(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        timeout: float = 30.0,
    ) -> None:
        super().__init__()
        self.url = url
        self.headers = headers or {}
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None
        self._endpoint: str | None = None
        self._endpoint_ready: asyncio.Future[str] | None = None
        self._read_task: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def endpoint(self) -> str | None:
        """POST URL announced by the server."""
        return self._endpoint

    async def start(self) -> None:
        if self._client is not None:
            raise ProtocolError("SseClientTransport already started")

        self._client = httpx.AsyncClient(
            headers=self.headers,
            timeout=httpx.Timeout(self.timeout, read=None),  # No read timeout for SSE
        )
        self._endpoint_ready = asyncio.get_running_loop().create_future()
        self._read_task = asyncio.create_task(self._read_stream())

        try:
            self._endpoint = await asyncio.wait_for(self._endpoint_ready, timeout=self.timeout)
        except BaseException:
            await self.close()
            raise

        logger.info(f"SSE connected: {self.url} (endpoint {self._endpoint})")

    async def _read_stream(self) -> None:
        assert self._client is not None and self._endpoint_ready is not None

        try:
            async with self._client.stream(
                "GET", self.url, headers={"Accept": "text/event-stream"}
            ) as response:
                response.raise_for_status()

                async for sse in iter_sse_events(response.aiter_lines()):
                    if sse.event == "endpoint":
                        endpoint = str(httpx.URL(self.url).join(sse.data))
                        if not self._endpoint_ready.done():
                            self._endpoint_ready.set_result(endpoint)
                    elif sse.event == "message":
                        try:
                            message = parse_message(sse.data)
                        except MessageParseError as e:
                            logger.warning(f"Skipping invalid SSE message: {e}")
                            self._report_error(e)
                            continue
                        self._deliver_message(message)
                    else:
                        logger.debug(f"Ignoring SSE event: {sse.event}")

        except httpx.HTTPError as e:
            logger.warning(f"SSE stream error: {e}")
            if not self._endpoint_ready.done():
                self._endpoint_ready.set_exception(
                    ConnectionClosedError(f"SSE connection failed: {e}")
                )
            self._report_error(e)

        if not self._endpoint_ready.done():
            self._endpoint_ready.set_exception(
                ConnectionClosedError("SSE stream ended before the endpoint event")
            )
        await self.close()

    async def send(self, message: JsonRpcMessage) -> None:
        if self._closed or self._client is None or self._endpoint is None:
            raise ConnectionClosedError("Transport is closed")

        try:
            response = await self._client.post(
                self._endpoint,
                content=encode_message(message),
                headers={"Content-Type": "application/json"},
            )
        except httpx.RequestError as e:
            raise ConnectionClosedError(f"POST failed: {e}") from e

        if response.status_code == 404:
            raise ConnectionClosedError("Server no longer knows this session")
        if response.status_code >= 400:
            raise ProtocolError(f"Server rejected message ({response.status_code}): {response.text}")

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        task = self._read_task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        if self._client is not None:
            await self._client.aclose()

        self._notify_closed()
