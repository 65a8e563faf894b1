"""stdio Transport Implementation.

Newline-delimited JSON over asyncio streams:
- StreamTransport: any StreamReader/StreamWriter pair
- StdioServerTransport: this process's stdin/stdout (server launched as a subprocess)
- StdioClientTransport: spawns a server subprocess and talks over its pipes

Protocol:
- One JSON-RPC message per line, UTF-8 encoded
- stdout carries protocol frames only; logs belong on stderr
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import sys
from dataclasses import dataclass, field
from typing import BinaryIO

from ..errors import ConnectionClosedError, MessageParseError, ProtocolError
from ..types import JsonRpcMessage, encode_message, parse_message
from .base import Transport

logger = logging.getLogger(__name__)

# Upper bound for one framed message
MAX_MESSAGE_SIZE = 10 * 1024 * 1024

_UTF8_BOM = b"\xef\xbb\xbf"


class StreamTransport(Transport):
    """Transport over an asyncio reader/writer pair.

    Lines that are not valid JSON-RPC are reported through ``on_error`` and
    skipped. End of input closes the transport.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader | None = None,
        writer: asyncio.StreamWriter | None = None,
    ) -> None:
        super().__init__()
        self._reader = reader
        self._writer = writer
        self._read_task: asyncio.Task[None] | None = None
        self._write_lock = asyncio.Lock()
        self._started = False
        self._closed = False

    async def start(self) -> None:
        if self._started:
            raise ProtocolError(f"{type(self).__name__} already started")
        if self._closed:
            raise ConnectionClosedError("Transport is closed")
        self._started = True

        await self._open()
        self._read_task = asyncio.create_task(self._read_loop())

    async def _open(self) -> None:
        """Prepare the reader and writer. Subclasses override to create them."""
        if self._reader is None or self._writer is None:
            raise RuntimeError("StreamTransport needs a reader and a writer")

    async def send(self, message: JsonRpcMessage) -> None:
        """Write one message as a JSON line."""
        if self._closed or self._writer is None:
            raise ConnectionClosedError("Transport is closed")

        data = (encode_message(message) + "\n").encode("utf-8")
        async with self._write_lock:
            try:
                self._writer.write(data)
                await self._writer.drain()
            except (ConnectionError, OSError) as e:
                raise ConnectionClosedError(f"Write failed: {e}") from e

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        task = self._read_task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        try:
            await self._close_streams()
        finally:
            self._notify_closed()

    async def _close_streams(self) -> None:
        if self._writer is not None:
            self._writer.close()
            with contextlib.suppress(Exception):
                await self._writer.wait_closed()

    async def _read_loop(self) -> None:
        assert self._reader is not None

        try:
            while True:
                line = await self._reader.readline()
                if not line:
                    # EOF
                    break

                data = line.strip()
                if data.startswith(_UTF8_BOM):
                    data = data[len(_UTF8_BOM) :]
                if not data:
                    continue

                try:
                    message = parse_message(data)
                except MessageParseError as e:
                    logger.warning(f"Skipping invalid message: {e}")
                    self._report_error(e)
                    continue

                self._deliver_message(message)

        except (ConnectionError, OSError, ValueError) as e:
            # ValueError: a line exceeded the reader's limit
            logger.error(f"Error reading stream: {e}")
            self._report_error(e)

        await self.close()


class StdioServerTransport(StreamTransport):
    """Server side of a stdio pipe: reads stdin, writes stdout.

    Example:
        server = build_server()
        await server.connect(StdioServerTransport())
    """

    def __init__(
        self,
        stdin: BinaryIO | None = None,
        stdout: BinaryIO | None = None,
    ) -> None:
        super().__init__()
        self._stdin = stdin or sys.stdin
        self._stdout = stdout or sys.stdout

    async def _open(self) -> None:
        loop = asyncio.get_running_loop()

        self._reader = asyncio.StreamReader(limit=MAX_MESSAGE_SIZE)
        protocol = asyncio.StreamReaderProtocol(self._reader)
        await loop.connect_read_pipe(lambda: protocol, self._stdin)

        transport, proto = await loop.connect_write_pipe(
            asyncio.streams.FlowControlMixin,
            self._stdout,
        )
        self._writer = asyncio.StreamWriter(transport, proto, None, loop)
        logger.info("stdio transport connected")


@dataclass
class StdioServerParameters:
    """How to launch a server subprocess."""

    command: str
    args: list[str] = field(default_factory=list)
    env: dict[str, str] | None = None  # Merged over the current environment
    cwd: str | None = None
    terminate_timeout: float = 5.0


class StdioClientTransport(StreamTransport):
    """Client side of a stdio pipe: spawns the server and owns its lifetime.

    The subprocess's stderr is forwarded to the log. Closing the transport
    closes the server's stdin, then terminates it, killing it if it does not
    exit within ``terminate_timeout``.
    """

    def __init__(self, params: StdioServerParameters) -> None:
        super().__init__()
        self.params = params
        self._process: asyncio.subprocess.Process | None = None
        self._stderr_task: asyncio.Task[None] | None = None

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    async def _open(self) -> None:
        env = None
        if self.params.env:
            env = {**os.environ, **self.params.env}

        self._process = await asyncio.create_subprocess_exec(
            self.params.command,
            *self.params.args,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=self.params.cwd,
            env=env,
            limit=MAX_MESSAGE_SIZE,
        )
        self._reader = self._process.stdout
        self._writer = self._process.stdin
        self._stderr_task = asyncio.create_task(self._read_stderr())

        cmd = " ".join([self.params.command, *self.params.args])
        logger.info(f"Launched subprocess: {cmd} (pid={self._process.pid})")

    async def _close_streams(self) -> None:
        await super()._close_streams()

        if self._stderr_task:
            self._stderr_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._stderr_task

        process = self._process
        if process is None or process.returncode is not None:
            return

        with contextlib.suppress(ProcessLookupError):
            process.terminate()
        try:
            await asyncio.wait_for(process.wait(), timeout=self.params.terminate_timeout)
        except TimeoutError:
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()
        logger.info(f"Subprocess terminated (pid={process.pid})")

    async def _read_stderr(self) -> None:
        """Read and log stderr output."""
        if not self._process or not self._process.stderr:
            return

        while True:
            line = await self._process.stderr.readline()
            if not line:
                break
            logger.debug(f"[server stderr] {line.decode('utf-8', errors='replace').rstrip()}")
