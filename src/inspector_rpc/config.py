"""Engine configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass

TIMEOUT_ENV = "INSPECTOR_RPC_REQUEST_TIMEOUT"
STRICT_CAPABILITIES_ENV = "INSPECTOR_RPC_STRICT_CAPABILITIES"
STRICT_HANDSHAKE_ENV = "INSPECTOR_RPC_STRICT_HANDSHAKE"


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in ("1", "true", "yes")


@dataclass
class ProtocolOptions:
    """Options shared by the client and server roles."""

    # Default deadline for request(), in seconds. None waits forever.
    request_timeout: float | None = None

    # Client refuses to send methods the server did not advertise
    enforce_strict_capabilities: bool = False

    # Server rejects requests other than initialize/ping until the handshake completes
    strict_handshake: bool = False

    @classmethod
    def from_env(cls) -> ProtocolOptions:
        """Build options from INSPECTOR_RPC_* environment variables."""
        raw_timeout = os.environ.get(TIMEOUT_ENV, "").strip()
        timeout: float | None = None
        if raw_timeout:
            try:
                timeout = float(raw_timeout)
            except ValueError as e:
                raise ValueError(f"Invalid {TIMEOUT_ENV}: {raw_timeout!r}") from e
            if timeout <= 0:
                raise ValueError(f"Invalid {TIMEOUT_ENV}: {raw_timeout!r}")

        return cls(
            request_timeout=timeout,
            enforce_strict_capabilities=_env_flag(STRICT_CAPABILITIES_ENV),
            strict_handshake=_env_flag(STRICT_HANDSHAKE_ENV),
        )
