"""
core/errors.py — Exception taxonomy for obs-link.

Three families callers can tell apart with isinstance():
  OBSConnectionError  → the connection is unusable (connect, send, handshake, disconnected)
  SerializationError  → the caller's input could not be encoded
  APIError            → obs-websocket rejected the request
DeserializationError / ResponseShapeError cover inbound data that doesn't fit.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional, Union

if TYPE_CHECKING:
    from .protocol import StatusCode


class OBSError(Exception):
    """Base class for everything raised by obs-link."""


# ── Connection ────────────────────────────────────────────────────────

class OBSConnectionError(OBSError):
    pass


class ConnectError(OBSConnectionError):
    """The transport to obs-websocket could not be opened."""


class SendError(OBSConnectionError):
    """A frame could not be written to the transport."""


class DisconnectedError(OBSConnectionError):
    """The session is not active, or terminated while a call was waiting."""

    def __init__(self, reason: Optional[str] = None):
        self.reason = reason
        msg = "Not connected to obs-websocket"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)


# ── Handshake ─────────────────────────────────────────────────────────

class HandshakeError(OBSConnectionError):
    """The Hello → Identify → Identified exchange did not complete."""


class HandshakeTimeoutError(HandshakeError):
    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"No Hello message received within {timeout}s of connecting")


class HandshakeClosedError(HandshakeError):
    def __init__(self, code: Optional[int] = None, reason: Optional[str] = None):
        self.code = code
        self.reason = reason
        details = reason or "no details provided"
        if code is not None:
            details = f"{details} (code {code})"
        super().__init__(f"Connection to obs-websocket was closed during handshake: {details}")


class UnexpectedMessageError(HandshakeError):
    def __init__(self, expected: str, op: int):
        self.expected = expected
        self.op = op
        super().__init__(f"Expected {expected} message, got op {op}")


class PasswordRequiredError(HandshakeError):
    def __init__(self) -> None:
        super().__init__("obs-websocket requires authentication but no password was given")


class RpcVersionMismatchError(HandshakeError):
    def __init__(self, requested: int, negotiated: int):
        self.requested = requested
        self.negotiated = negotiated
        super().__init__(
            f"RPC version {requested} requested, but server negotiated version {negotiated}"
        )


class UnsupportedVersionError(HandshakeError):
    """GetVersion reported a release outside the supported range."""

    component = "obs"

    def __init__(self, found: Optional[str], required: str):
        self.found = found
        self.required = required
        super().__init__(f"Unsupported {self.component} version {found or 'unknown'} (need {required})")


class OBSStudioVersionError(UnsupportedVersionError):
    component = "OBS Studio"


class OBSWebSocketVersionError(UnsupportedVersionError):
    component = "obs-websocket"


# ── Data ──────────────────────────────────────────────────────────────

class SerializationError(OBSError):
    """Outbound data could not be encoded as JSON."""


class DeserializationError(OBSError):
    """An inbound frame or payload was not valid."""


class ResponseShapeError(DeserializationError):
    """responseData did not validate against the type the caller asked for."""

    def __init__(self, request_type: str, detail: str):
        self.request_type = request_type
        super().__init__(f"Response to {request_type} did not match the expected shape: {detail}")


# ── Peer ──────────────────────────────────────────────────────────────

class APIError(OBSError):
    """obs-websocket answered the request with a failure status."""

    def __init__(self, request_type: str, code: Union[int, StatusCode], comment: Optional[str] = None):
        self.request_type = request_type
        self.code = code
        self.comment = comment
        name = getattr(code, "name", str(code))
        msg = f"{request_type} failed with {name} ({int(code)})"
        if comment:
            msg = f"{msg}: {comment}"
        super().__init__(msg)

