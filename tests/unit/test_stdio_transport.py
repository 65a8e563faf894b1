"""Tests for newline-delimited stream transports."""

from __future__ import annotations

import asyncio
import json

import pytest

from inspector_rpc import (
    ConnectionClosedError,
    JsonRpcNotification,
    JsonRpcRequest,
    MessageParseError,
    ProtocolError,
    StdioServerParameters,
    StreamTransport,
)
from inspector_rpc.transport.stdio import StdioClientTransport
from inspector_rpc.types import JsonRpcMessage


class FakeWriter:
    """Collects written bytes in place of an asyncio.StreamWriter."""

    def __init__(self, fail_with: Exception | None = None) -> None:
        self.buffer = bytearray()
        self.closed = False
        self.fail_with = fail_with

    def write(self, data: bytes) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.buffer.extend(data)

    async def drain(self) -> None:
        pass

    def close(self) -> None:
        self.closed = True

    async def wait_closed(self) -> None:
        pass

    def lines(self) -> list[dict]:
        return [json.loads(line) for line in self.buffer.decode("utf-8").splitlines()]


async def started_transport(
    reader: asyncio.StreamReader, writer: FakeWriter | None = None
) -> tuple[StreamTransport, list[JsonRpcMessage], list[Exception], list[bool]]:
    transport = StreamTransport(reader, writer or FakeWriter())  # type: ignore[arg-type]
    messages: list[JsonRpcMessage] = []
    errors: list[Exception] = []
    closes: list[bool] = []
    transport.on_message(messages.append)
    transport.on_error(errors.append)
    transport.on_close(lambda: closes.append(True))
    await transport.start()
    return transport, messages, errors, closes


async def wait_closed(transport: StreamTransport) -> None:
    for _ in range(200):
        if transport.is_closed:
            return
        await asyncio.sleep(0.005)
    raise AssertionError("Transport did not close")


# =============================================================================
# Reading
# =============================================================================


class TestStreamReading:
    """Tests for the read loop."""

    @pytest.mark.anyio
    async def test_delivers_messages_in_order(self) -> None:
        reader = asyncio.StreamReader()
        reader.feed_data(b'{"jsonrpc": "2.0", "id": 1, "method": "a"}\n')
        reader.feed_data(b'{"jsonrpc": "2.0", "method": "b"}\n')
        reader.feed_eof()

        transport, messages, errors, closes = await started_transport(reader)
        await wait_closed(transport)

        assert messages == [
            JsonRpcRequest(id=1, method="a"),
            JsonRpcNotification(method="b"),
        ]
        assert errors == []
        assert closes == [True]

    @pytest.mark.anyio
    async def test_skips_blank_lines_and_bom(self) -> None:
        """A UTF-8 BOM and empty lines are tolerated."""
        reader = asyncio.StreamReader()
        reader.feed_data(b"\n   \n")
        reader.feed_data(b'\xef\xbb\xbf{"jsonrpc": "2.0", "method": "hello"}\r\n')
        reader.feed_eof()

        transport, messages, errors, _ = await started_transport(reader)
        await wait_closed(transport)

        assert messages == [JsonRpcNotification(method="hello")]
        assert errors == []

    @pytest.mark.anyio
    async def test_invalid_line_is_reported_and_skipped(self) -> None:
        """Garbage is reported through on_error without closing the stream."""
        reader = asyncio.StreamReader()
        reader.feed_data(b"this is not json\n")
        reader.feed_data(b'{"jsonrpc": "1.0", "method": "old"}\n')
        reader.feed_data(b'{"jsonrpc": "2.0", "method": "ok"}\n')
        reader.feed_eof()

        transport, messages, errors, _ = await started_transport(reader)
        await wait_closed(transport)

        assert messages == [JsonRpcNotification(method="ok")]
        assert len(errors) == 2
        assert all(isinstance(e, MessageParseError) for e in errors)

    @pytest.mark.anyio
    async def test_eof_closes_transport(self) -> None:
        reader = asyncio.StreamReader()
        writer = FakeWriter()
        transport, _, _, closes = await started_transport(reader, writer)

        assert not transport.is_closed
        reader.feed_eof()
        await wait_closed(transport)

        assert closes == [True]
        assert writer.closed

    @pytest.mark.anyio
    async def test_oversized_line_is_fatal(self) -> None:
        reader = asyncio.StreamReader(limit=64)
        reader.feed_data(b'{"jsonrpc": "2.0", "method": "' + b"x" * 200 + b'"}\n')

        transport, messages, errors, closes = await started_transport(reader)
        await wait_closed(transport)

        assert messages == []
        assert len(errors) == 1
        assert closes == [True]


# =============================================================================
# Writing and Lifecycle
# =============================================================================


class TestStreamWriting:
    """Tests for send and close."""

    @pytest.mark.anyio
    async def test_send_writes_one_line_per_message(self) -> None:
        writer = FakeWriter()
        transport, *_ = await started_transport(asyncio.StreamReader(), writer)

        await transport.send(JsonRpcRequest(id=1, method="ping"))
        await transport.send(JsonRpcNotification(method="note", params={"text": "a\nb"}))

        assert writer.lines() == [
            {"jsonrpc": "2.0", "id": 1, "method": "ping"},
            {"jsonrpc": "2.0", "method": "note", "params": {"text": "a\nb"}},
        ]
        await transport.close()

    @pytest.mark.anyio
    async def test_send_after_close(self) -> None:
        transport, *_ = await started_transport(asyncio.StreamReader())
        await transport.close()

        with pytest.raises(ConnectionClosedError):
            await transport.send(JsonRpcNotification(method="late"))

    @pytest.mark.anyio
    async def test_broken_pipe_is_connection_closed(self) -> None:
        writer = FakeWriter(fail_with=BrokenPipeError("gone"))
        transport, *_ = await started_transport(asyncio.StreamReader(), writer)

        with pytest.raises(ConnectionClosedError):
            await transport.send(JsonRpcNotification(method="x"))
        await transport.close()

    @pytest.mark.anyio
    async def test_close_is_idempotent(self) -> None:
        transport, _, _, closes = await started_transport(asyncio.StreamReader())

        await transport.close()
        await transport.close()

        assert closes == [True]

    @pytest.mark.anyio
    async def test_start_twice(self) -> None:
        transport, *_ = await started_transport(asyncio.StreamReader())

        with pytest.raises(ProtocolError):
            await transport.start()
        await transport.close()

    @pytest.mark.anyio
    async def test_start_without_streams(self) -> None:
        with pytest.raises(RuntimeError):
            await StreamTransport().start()


class TestStdioClientTransport:
    """Tests for launching server subprocesses."""

    @pytest.mark.anyio
    async def test_missing_command_fails_to_start(self) -> None:
        transport = StdioClientTransport(
            StdioServerParameters(command="/nonexistent/inspector-rpc-server")
        )

        with pytest.raises(OSError):
            await transport.start()
        assert transport.pid is None
