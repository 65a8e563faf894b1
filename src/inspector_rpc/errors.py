"""Exception hierarchy for the protocol engine.

Callers can tell failures apart by type:
- JsonRpcProtocolError: the peer answered with an error object
- RequestTimeoutError: no answer arrived before the local deadline
- ConnectionClosedError: the session went away while a request was pending
- ResultValidationError: the peer answered, but with a malformed result
"""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError


class ProtocolError(Exception):
    """Base class for every error raised by the protocol engine."""


class JsonRpcProtocolError(ProtocolError):
    """Error reported over the wire as a JSON-RPC error object.

    Raise it from a request handler to answer with a specific code.
    It is also what ``request()`` raises when the peer answers with an error.
    """

    def __init__(
        self,
        code: int,
        message: str,
        data: Any | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    def __repr__(self) -> str:
        return f"JsonRpcProtocolError(code={self.code}, message={self.message!r})"


class RequestTimeoutError(ProtocolError, TimeoutError):
    """A request got no reply before its deadline."""

    def __init__(self, method: str, timeout: float) -> None:
        super().__init__(f"Request {method!r} timed out after {timeout}s")
        self.method = method
        self.timeout = timeout


class ConnectionClosedError(ProtocolError, ConnectionError):
    """The engine or its transport is closed."""

    def __init__(self, message: str = "Connection closed") -> None:
        super().__init__(message)


class ResultValidationError(ProtocolError):
    """A response result did not match the expected shape."""

    def __init__(self, method: str, error: ValidationError) -> None:
        super().__init__(f"Invalid result for {method!r}: {error.error_count()} validation error(s)")
        self.method = method
        self.validation_error = error


class MessageParseError(ProtocolError):
    """Raw input could not be decoded into a JSON-RPC message."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code


class CapabilityNotSupportedError(ProtocolError):
    """The peer did not advertise the capability a method needs."""

    def __init__(self, capability: str, method: str) -> None:
        super().__init__(f"Server does not support {capability} (required for {method})")
        self.capability = capability
        self.method = method
