"""JSON-RPC session engine.

Shared by the client and server roles. The engine owns one bound transport
and provides:
- request(): send a request and wait for the correlated response
- notify(): fire-and-forget notifications
- handler tables for inbound requests and notifications
- validation of inbound params and outbound results with pydantic

Concurrency model: all bookkeeping happens in synchronous code on the event
loop that owns the transport. Response delivery, timeout eviction, local
cancellation and close each pop the pending entry before touching its
future, so whichever path runs first wins and the others become no-ops.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass
from typing import Any, Union

from pydantic import BaseModel, TypeAdapter, ValidationError

from .config import ProtocolOptions
from .errors import (
    ConnectionClosedError,
    JsonRpcProtocolError,
    ProtocolError,
    RequestTimeoutError,
    ResultValidationError,
)
from .transport.base import CloseObserver, ErrorObserver, Observers, Transport, Unsubscribe
from .types import (
    EmptyResult,
    JsonRpcError,
    JsonRpcErrorCode,
    JsonRpcErrorResponse,
    JsonRpcMessage,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    Method,
    RequestId,
)

logger = logging.getLogger(__name__)

# A pydantic model class, a TypeAdapter, or None to pass raw payloads through
Validator = Union[type[BaseModel], TypeAdapter[Any], None]

RequestHandler = Callable[[Any], Union[Awaitable[Any], Any]]
NotificationHandler = Callable[[Any], Union[Awaitable[None], None]]


@dataclass
class _HandlerEntry:
    params_validator: Validator
    handler: Callable[[Any], Any]


@dataclass
class _PendingRequest:
    id: RequestId
    method: str
    result_validator: Validator
    future: asyncio.Future[Any]
    issued_at: float
    deadline: float | None = None
    timer: asyncio.TimerHandle | None = None


def validate_payload(validator: Validator, payload: Any) -> Any:
    """Validate a payload against a model class or TypeAdapter."""
    if validator is None:
        return payload
    if isinstance(validator, TypeAdapter):
        return validator.validate_python(payload)
    return validator.model_validate(payload)


def dump_payload(value: Any) -> Any:
    """Convert models to wire dicts; other values pass through."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True, exclude_none=True)
    return value


def validation_error_details(error: ValidationError) -> list[dict[str, Any]]:
    """JSON-safe summary of a pydantic ValidationError."""
    return [
        {"loc": [str(part) for part in err["loc"]], "msg": err["msg"], "type": err["type"]}
        for err in error.errors()
    ]


def create_error_response(
    request_id: RequestId | None,
    code: int,
    message: str,
    data: Any | None = None,
) -> JsonRpcErrorResponse:
    """Create a JSON-RPC error response."""
    return JsonRpcErrorResponse(
        id=request_id,
        error=JsonRpcError(code=code, message=message, data=data),
    )


class Protocol:
    """Request/notification dispatcher and correlation table over one transport.

    Usage:
        engine = Protocol()
        engine.set_request_handler("echo", EchoParams, handle_echo)
        await engine.connect(transport)
        result = await engine.request("echo", {"text": "hi"}, EchoResult, timeout=5)
        await engine.close()
    """

    def __init__(self, options: ProtocolOptions | None = None) -> None:
        self.options = options or ProtocolOptions()
        self._transport: Transport | None = None
        self._unsubscribers: list[Unsubscribe] = []

        # Instance-scoped so independent sessions in one process never collide
        self._request_id = 0
        self._pending: dict[RequestId, _PendingRequest] = {}

        self._request_handlers: dict[str, _HandlerEntry] = {}
        self._notification_handlers: dict[str, _HandlerEntry] = {}
        self._tasks: set[asyncio.Task[None]] = set()

        self._close_observers: Observers[CloseObserver] = Observers("close")
        self._error_observers: Observers[ErrorObserver] = Observers("error")

        self.set_request_handler(Method.PING, None, lambda _params: EmptyResult())

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def transport(self) -> Transport | None:
        """The bound transport, or None when not connected."""
        return self._transport

    @property
    def is_connected(self) -> bool:
        return self._transport is not None

    @property
    def pending_count(self) -> int:
        """Number of requests still awaiting a reply."""
        return len(self._pending)

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    async def connect(self, transport: Transport) -> None:
        """Bind a transport and start receiving from it.

        Raises:
            ProtocolError: If a transport is already bound.
        """
        if self._transport is not None:
            raise ProtocolError("Already connected; call close() before binding a new transport")

        self._transport = transport
        self._unsubscribers = [
            transport.on_message(self._on_message),
            transport.on_error(self._on_transport_error),
            transport.on_close(self._on_transport_close),
        ]

        try:
            await transport.start()
        except Exception:
            self._handle_close()
            raise

        logger.debug(f"{type(self).__name__} connected to {type(transport).__name__}")

    async def close(self) -> None:
        """Close the transport and reject every pending request.

        Handler registrations survive, so the instance can be reconnected.
        """
        transport = self._transport
        if transport is None:
            return

        try:
            await transport.close()
        finally:
            # Transports normally report the close themselves; make sure anyway
            self._handle_close()

    def on_close(self, callback: CloseObserver) -> Unsubscribe:
        """Subscribe to the end of the current connection."""
        return self._close_observers.subscribe(callback)

    def on_error(self, callback: ErrorObserver) -> Unsubscribe:
        """Subscribe to transport errors and swallowed handler failures."""
        return self._error_observers.subscribe(callback)

    def _on_transport_close(self) -> None:
        self._handle_close()

    def _on_transport_error(self, error: Exception) -> None:
        self._error_observers.emit(error)

    def _handle_close(self) -> None:
        if self._transport is None:
            return

        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        self._transport = None

        # In-flight inbound handlers have nowhere to reply any more
        current = asyncio.current_task()
        for task in list(self._tasks):
            if task is not current:
                task.cancel()

        pending, self._pending = self._pending, {}
        for entry in pending.values():
            self._cancel_timer(entry)
            if not entry.future.done():
                entry.future.set_exception(
                    ConnectionClosedError(f"Connection closed while {entry.method!r} was pending")
                )

        if pending:
            logger.info(f"Connection closed with {len(pending)} pending request(s)")
        else:
            logger.debug("Connection closed")

        self._close_observers.emit()

    # =========================================================================
    # Outbound
    # =========================================================================

    async def request(
        self,
        method: str,
        params: BaseModel | dict[str, Any] | None = None,
        result_validator: Validator = None,
        *,
        timeout: float | None = None,
    ) -> Any:
        """Send a request and wait for its response.

        Args:
            method: Method name.
            params: Request params, as a model or a plain dict.
            result_validator: Model class or TypeAdapter the result must satisfy.
            timeout: Seconds to wait; defaults to ``options.request_timeout``.

        Returns:
            The validated result.

        Raises:
            JsonRpcProtocolError: The peer answered with an error.
            ResultValidationError: The result did not satisfy ``result_validator``.
            RequestTimeoutError: No answer before the deadline.
            ConnectionClosedError: Not connected, or the connection closed while waiting.
        """
        transport = self._transport
        if transport is None:
            raise ConnectionClosedError("Not connected")

        self._assert_capability_for_method(method)

        if timeout is None:
            timeout = self.options.request_timeout

        loop = asyncio.get_running_loop()
        request_id = self._next_request_id()
        # Built before registering so a bad payload leaves nothing pending
        message = JsonRpcRequest(id=request_id, method=method, params=dump_payload(params))
        entry = _PendingRequest(
            id=request_id,
            method=method,
            result_validator=result_validator,
            future=loop.create_future(),
            issued_at=loop.time(),
        )
        if timeout is not None:
            entry.deadline = entry.issued_at + timeout
            entry.timer = loop.call_later(timeout, self._on_timeout, request_id, timeout)
        self._pending[request_id] = entry

        try:
            await transport.send(message)
            return await entry.future
        finally:
            # Covers send failures and local cancellation; no-op once resolved
            self._evict(entry)

    async def notify(
        self,
        method: str,
        params: BaseModel | dict[str, Any] | None = None,
    ) -> None:
        """Send a notification.

        Raises:
            ConnectionClosedError: If not connected.
        """
        transport = self._transport
        if transport is None:
            raise ConnectionClosedError("Not connected")

        await transport.send(JsonRpcNotification(method=method, params=dump_payload(params)))

    async def ping(self) -> None:
        """Round-trip a ping request."""
        await self.request(Method.PING, None, EmptyResult)

    def _next_request_id(self) -> int:
        request_id = self._request_id
        self._request_id += 1
        return request_id

    def _on_timeout(self, request_id: RequestId, timeout: float) -> None:
        entry = self._pending.pop(request_id, None)
        if entry is None:
            return
        entry.timer = None
        logger.debug(f"Request {request_id} ({entry.method}) timed out after {timeout}s")
        if not entry.future.done():
            entry.future.set_exception(RequestTimeoutError(entry.method, timeout))

    def _evict(self, entry: _PendingRequest) -> None:
        if self._pending.get(entry.id) is entry:
            del self._pending[entry.id]
        self._cancel_timer(entry)

    @staticmethod
    def _cancel_timer(entry: _PendingRequest) -> None:
        if entry.timer is not None:
            entry.timer.cancel()
            entry.timer = None

    # =========================================================================
    # Handler registration
    # =========================================================================

    def set_request_handler(
        self,
        method: str,
        params_validator: Validator,
        handler: RequestHandler,
    ) -> None:
        """Register the handler for a request method, replacing any previous one.

        The handler receives the validated params and may be sync or async.
        Raise JsonRpcProtocolError from it to answer with a specific error.
        """
        self._request_handlers[method] = _HandlerEntry(params_validator, handler)

    def remove_request_handler(self, method: str) -> None:
        self._request_handlers.pop(method, None)

    def set_notification_handler(
        self,
        method: str,
        params_validator: Validator,
        handler: NotificationHandler,
    ) -> None:
        """Register the handler for a notification method, replacing any previous one."""
        self._notification_handlers[method] = _HandlerEntry(params_validator, handler)

    def remove_notification_handler(self, method: str) -> None:
        self._notification_handlers.pop(method, None)

    # =========================================================================
    # Hooks for roles
    # =========================================================================

    def _assert_capability_for_method(self, method: str) -> None:
        """Raise before sending ``method`` if the peer cannot serve it."""

    def _assert_request_allowed(self, method: str) -> None:
        """Raise JsonRpcProtocolError to refuse an inbound request."""

    # =========================================================================
    # Inbound dispatch
    # =========================================================================

    def _on_message(self, message: JsonRpcMessage) -> None:
        if isinstance(message, JsonRpcRequest):
            self._spawn(self._handle_request(message))
        elif isinstance(message, JsonRpcNotification):
            self._spawn(self._handle_notification(message))
        else:
            self._handle_response(message)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        # Handlers run as tasks so the transport keeps dispatching meanwhile
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _handle_request(self, request: JsonRpcRequest) -> None:
        # Reply on the transport the request arrived on
        transport = self._transport
        response = await self._process_request(request)
        if transport is None:
            return

        try:
            await transport.send(response)
        except ConnectionClosedError:
            logger.debug(f"Dropping response to {request.method!r}; transport closed")
        except Exception as e:
            logger.warning(f"Failed to send response to {request.method!r}: {e}")
            self._error_observers.emit(e)

    async def _process_request(
        self, request: JsonRpcRequest
    ) -> JsonRpcResponse | JsonRpcErrorResponse:
        entry = self._request_handlers.get(request.method)
        if entry is None:
            return create_error_response(
                request.id,
                JsonRpcErrorCode.METHOD_NOT_FOUND,
                f"Method not found: {request.method}",
            )

        try:
            self._assert_request_allowed(request.method)

            try:
                params = validate_payload(entry.params_validator, request.params or {})
            except ValidationError as e:
                return create_error_response(
                    request.id,
                    JsonRpcErrorCode.INVALID_PARAMS,
                    f"Invalid params for {request.method}",
                    validation_error_details(e),
                )

            result = entry.handler(params)
            if inspect.isawaitable(result):
                result = await result

            result = dump_payload(result)
            if result is None:
                result = {}
            if not isinstance(result, dict):
                raise TypeError(
                    f"Handler for {request.method} returned {type(result).__name__}, not an object"
                )
            return JsonRpcResponse(id=request.id, result=result)

        except JsonRpcProtocolError as e:
            return create_error_response(request.id, e.code, e.message, e.data)
        except Exception:
            # Details stay in the local log, not on the wire
            logger.exception(f"Error handling request {request.method}")
            return create_error_response(
                request.id,
                JsonRpcErrorCode.INTERNAL_ERROR,
                "Internal error",
            )

    def _handle_response(self, message: JsonRpcResponse | JsonRpcErrorResponse) -> None:
        entry = self._pending.pop(message.id, None) if message.id is not None else None
        if entry is None:
            logger.warning(f"Dropping response for unknown request id: {message.id!r}")
            return

        self._cancel_timer(entry)
        if entry.future.done():
            return

        if isinstance(message, JsonRpcErrorResponse):
            entry.future.set_exception(
                JsonRpcProtocolError(
                    code=message.error.code,
                    message=message.error.message,
                    data=message.error.data,
                )
            )
            return

        try:
            result = validate_payload(entry.result_validator, message.result)
        except ValidationError as e:
            entry.future.set_exception(ResultValidationError(entry.method, e))
            return

        entry.future.set_result(result)

    async def _handle_notification(self, notification: JsonRpcNotification) -> None:
        entry = self._notification_handlers.get(notification.method)
        if entry is None:
            logger.debug(f"No handler for notification {notification.method!r}")
            return

        # Notifications have no reply channel, so failures stop here
        try:
            params = validate_payload(entry.params_validator, notification.params or {})
            result = entry.handler(params)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.exception(f"Error handling notification {notification.method}")
            self._error_observers.emit(e)
