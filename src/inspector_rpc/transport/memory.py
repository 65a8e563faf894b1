"""In-process transport pair.

Two linked ends in the same event loop; whatever one end sends, the other
receives. Used to run a client and a server side by side (tests, embedding).
"""

from __future__ import annotations

import asyncio
import logging

from ..errors import ConnectionClosedError
from ..types import JsonRpcMessage
from .base import Transport

logger = logging.getLogger(__name__)


class MemoryTransport(Transport):
    """One end of an in-memory linked pair.

    Messages are delivered to the peer on a later loop iteration, in send
    order, so a sender never re-enters the receiver's dispatch. Messages sent
    before the peer is started are buffered until ``start()``.
    """

    def __init__(self) -> None:
        super().__init__()
        self._peer: MemoryTransport | None = None
        self._started = False
        self._closed = False
        self._backlog: list[JsonRpcMessage] = []

    @classmethod
    def create_linked_pair(cls) -> tuple[MemoryTransport, MemoryTransport]:
        """Create two transports wired to each other."""
        first = cls()
        second = cls()
        first._peer = second
        second._peer = first
        return first, second

    async def start(self) -> None:
        if self._closed:
            raise ConnectionClosedError("Transport is closed")
        self._started = True
        backlog, self._backlog = self._backlog, []
        for message in backlog:
            self._deliver_message(message)

    async def send(self, message: JsonRpcMessage) -> None:
        if self._closed or self._peer is None:
            raise ConnectionClosedError("Transport is closed")
        asyncio.get_running_loop().call_soon(self._peer._receive, message)

    def _receive(self, message: JsonRpcMessage) -> None:
        if self._closed:
            logger.debug(f"Dropping message on closed transport: {message!r}")
            return
        if not self._started:
            self._backlog.append(message)
            return
        self._deliver_message(message)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._backlog.clear()
        peer, self._peer = self._peer, None
        self._notify_closed()
        if peer is not None:
            await peer.close()
