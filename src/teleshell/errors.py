"""Application-level exception types for teleshell."""

from __future__ import annotations

from typing import Any


class TeleshellError(Exception):
    """Base exception for teleshell."""


class ConfigurationError(TeleshellError):
    """Raised when configuration cannot be loaded or validated."""


class StartupError(TeleshellError):
    """Raised when the agent cannot reach a running state."""


class ClientUnavailableError(TeleshellError):
    """Raised when the tool server failed and no restart is allowed."""


class DeliveryError(TeleshellError):
    """Raised when an outbound message cannot be delivered."""


class TransportError(TeleshellError):
    """Base exception for child process transport failures.

    Transport errors are terminal for the protocol session that observed them.
    """


class SpawnError(TransportError):
    """Raised when the child process cannot be started."""


class TransportWriteError(TransportError):
    """Raised when a frame cannot be written to the child's stdin."""


class TransportReadError(TransportError):
    """Raised when a frame cannot be read from the child's stdout."""


class TransportEOF(TransportReadError):
    """Raised once when the child closes its stdout."""


class TransportTimeout(TeleshellError):
    """Raised when no frame arrives before the read deadline."""


class ClientFailedError(TransportError):
    """Raised by a protocol client whose session has failed."""


class ProtocolError(TeleshellError):
    """Base exception for protocol-level failures of one round trip."""


class SessionNotReadyError(ProtocolError):
    """Raised when a request is issued outside the ready state."""


class HandshakeError(ProtocolError):
    """Raised when the initialize exchange does not complete."""


class ProtocolTimeoutError(ProtocolError):
    """Raised when a request receives no response before its deadline."""


class MalformedResponseError(ProtocolError):
    """Raised when a response frame does not follow JSON-RPC 2.0."""

    def __init__(self, message: str, *, request_id: int | None = None) -> None:
        super().__init__(message)
        self.request_id = request_id


class MalformedResultError(ProtocolError):
    """Raised when a tool result does not contain a command list."""


class ToolExecutionError(ProtocolError):
    """Raised when the tool reports an error result."""


class RemoteError(ProtocolError):
    """Raised for an explicit JSON-RPC error response."""

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        super().__init__(f"[{code}] {message}")
        self.code = code
        self.message = message
        self.data = data
