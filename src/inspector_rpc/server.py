"""Server role.

Answers the initialize handshake on top of the protocol engine:
- initialize: check the protocol version, record the client, advertise ourselves
- initialized: mark the session ready and fire the completion callbacks

Domain methods (tools, resources, prompts, ...) are registered by the
embedding application with ``set_request_handler``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import Enum
from typing import Any

from .config import ProtocolOptions
from .errors import JsonRpcProtocolError
from .protocol import Protocol
from .transport.base import Observers, Unsubscribe
from .types import (
    PROTOCOL_VERSION,
    ClientCapabilities,
    Implementation,
    InitializeRequestParams,
    InitializeResult,
    JsonRpcErrorCode,
    LoggingLevel,
    LoggingMessageNotificationParams,
    Method,
    ServerCapabilities,
)

logger = logging.getLogger(__name__)

# Requests a strict server accepts before the handshake completes
_HANDSHAKE_METHODS = frozenset({Method.INITIALIZE, Method.PING})


class HandshakeState(str, Enum):
    """Progress of the initialize/initialized exchange."""

    UNINITIALIZED = "uninitialized"
    AWAITING_INITIALIZED = "awaiting_initialized"
    READY = "ready"


class Server(Protocol):
    """Protocol engine that serves the initialize handshake.

    Example:
        server = Server(Implementation(name="demo", version="1.0.0"))
        server.set_request_handler(Method.TOOLS_LIST, None, list_tools)
        server.on_initialized(lambda: print("ready"))
        await server.connect(StdioServerTransport())
    """

    def __init__(
        self,
        server_info: Implementation,
        capabilities: ServerCapabilities | None = None,
        *,
        options: ProtocolOptions | None = None,
    ) -> None:
        super().__init__(options)
        self.server_info = server_info
        self.capabilities = capabilities or ServerCapabilities()
        self.protocol_version = PROTOCOL_VERSION

        self._state = HandshakeState.UNINITIALIZED
        self._client_capabilities: ClientCapabilities | None = None
        self._client_info: Implementation | None = None
        self._initialized_callbacks: Observers[Callable[[], None]] = Observers("initialized")

        self.set_request_handler(
            Method.INITIALIZE, InitializeRequestParams, self._handle_initialize
        )
        self.set_notification_handler(Method.INITIALIZED, None, self._handle_initialized)

    @property
    def state(self) -> HandshakeState:
        return self._state

    @property
    def client_capabilities(self) -> ClientCapabilities | None:
        """Capabilities the client declared; None until the handshake completes."""
        if self._state is not HandshakeState.READY:
            return None
        return self._client_capabilities

    @property
    def client_info(self) -> Implementation | None:
        """Name and version the client declared; None until the handshake completes."""
        if self._state is not HandshakeState.READY:
            return None
        return self._client_info

    def on_initialized(self, callback: Callable[[], None]) -> Unsubscribe:
        """Register a callback fired once when the client sends ``initialized``."""
        return self._initialized_callbacks.subscribe(callback)

    async def send_log_message(
        self,
        level: LoggingLevel,
        data: Any,
        logger_name: str | None = None,
    ) -> None:
        """Send a log message notification to the client."""
        await self.notify(
            Method.LOG_MESSAGE,
            LoggingMessageNotificationParams(level=level, data=data, logger=logger_name),
        )

    # =========================================================================
    # Handshake handlers
    # =========================================================================

    def _handle_initialize(self, params: InitializeRequestParams) -> InitializeResult:
        if self._state is not HandshakeState.UNINITIALIZED:
            raise JsonRpcProtocolError(
                code=JsonRpcErrorCode.INVALID_REQUEST,
                message="Session is already initialized",
            )

        # A mismatch is a request-level error; the client may retry on this session
        if params.protocolVersion != self.protocol_version:
            raise JsonRpcProtocolError(
                code=JsonRpcErrorCode.INVALID_PARAMS,
                message=f"Client's protocol version is not supported: {params.protocolVersion}",
                data={"supported": [self.protocol_version], "requested": params.protocolVersion},
            )

        self._client_capabilities = params.capabilities
        self._client_info = params.clientInfo
        self._state = HandshakeState.AWAITING_INITIALIZED
        logger.info(
            f"Initialize from {params.clientInfo.name} {params.clientInfo.version} "
            f"(protocol {params.protocolVersion})"
        )

        return InitializeResult(
            protocolVersion=self.protocol_version,
            capabilities=self.capabilities,
            serverInfo=self.server_info,
        )

    def _handle_initialized(self, _params: Any) -> None:
        if self._state is HandshakeState.READY:
            logger.debug("Ignoring duplicate initialized notification")
            return
        if self._state is HandshakeState.UNINITIALIZED:
            logger.warning("Ignoring initialized notification before initialize")
            return

        self._state = HandshakeState.READY
        logger.info("Session ready")

        callbacks = self._initialized_callbacks
        self._initialized_callbacks = Observers("initialized")
        callbacks.emit()

    def _assert_request_allowed(self, method: str) -> None:
        if not self.options.strict_handshake:
            return
        if self._state is not HandshakeState.READY and method not in _HANDSHAKE_METHODS:
            raise JsonRpcProtocolError(
                code=JsonRpcErrorCode.INVALID_REQUEST,
                message="Not initialized. Call 'initialize' first.",
            )
