"""Transport abstraction base classes.

Defines the channel contract the protocol engine is written against, so
the same client or server can run over an in-process pair, a stdio pipe or
an SSE stream without code changes.

A transport moves whole JSON-RPC messages and knows nothing about requests
or responses. Interested parties subscribe to its events:

    unsubscribe = transport.on_message(handle)
    ...
    unsubscribe()

Contract for implementations:
- message observers run once per received message, in arrival order
- error observers run for non-fatal conditions; they do not imply closure
- close observers run exactly once, whether the close was local or remote
- all observers run on the event loop that owns the transport
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any, Generic, TypeVar

from ..types import JsonRpcMessage

logger = logging.getLogger(__name__)

T = TypeVar("T")

Unsubscribe = Callable[[], None]
MessageObserver = Callable[[JsonRpcMessage], None]
ErrorObserver = Callable[[Exception], None]
CloseObserver = Callable[[], None]


class Observers(Generic[T]):
    """Ordered set of callbacks with subscribe/unsubscribe handles.

    A failing callback is logged and does not stop delivery to the rest.
    """

    def __init__(self, name: str) -> None:
        self._name = name
        self._callbacks: list[T] = []

    def subscribe(self, callback: T) -> Unsubscribe:
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def emit(self, *args: Any) -> None:
        # Copy so callbacks may unsubscribe while we iterate
        for callback in list(self._callbacks):
            try:
                callback(*args)  # type: ignore[operator]
            except Exception:
                logger.exception(f"Error in {self._name} observer")

    def clear(self) -> None:
        self._callbacks.clear()

    def __len__(self) -> int:
        return len(self._callbacks)


class Transport(ABC):
    """Abstract duplex message channel.

    Subclasses implement start/send/close and call the protected
    ``_deliver_message``, ``_report_error`` and ``_notify_closed`` helpers.
    """

    def __init__(self) -> None:
        self._message_observers: Observers[MessageObserver] = Observers("message")
        self._error_observers: Observers[ErrorObserver] = Observers("error")
        self._close_observers: Observers[CloseObserver] = Observers("close")
        self._close_notified = False

    @abstractmethod
    async def start(self) -> None:
        """Begin receiving messages."""
        ...

    @abstractmethod
    async def send(self, message: JsonRpcMessage) -> None:
        """Send one message.

        Raises:
            ConnectionClosedError: If the transport is closed.
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the channel. Safe to call more than once."""
        ...

    @property
    def is_closed(self) -> bool:
        return self._close_notified

    # -------------------------------------------------------------------------
    # Observer subscription
    # -------------------------------------------------------------------------

    def on_message(self, callback: MessageObserver) -> Unsubscribe:
        """Subscribe to received messages."""
        return self._message_observers.subscribe(callback)

    def on_error(self, callback: ErrorObserver) -> Unsubscribe:
        """Subscribe to non-fatal errors."""
        return self._error_observers.subscribe(callback)

    def on_close(self, callback: CloseObserver) -> Unsubscribe:
        """Subscribe to channel termination."""
        return self._close_observers.subscribe(callback)

    # -------------------------------------------------------------------------
    # Helpers for implementations
    # -------------------------------------------------------------------------

    def _deliver_message(self, message: JsonRpcMessage) -> None:
        self._message_observers.emit(message)

    def _report_error(self, error: Exception) -> None:
        logger.debug(f"{type(self).__name__} error: {error}")
        self._error_observers.emit(error)

    def _notify_closed(self) -> None:
        if self._close_notified:
            return
        self._close_notified = True
        self._close_observers.emit()

    async def __aenter__(self) -> Transport:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()
