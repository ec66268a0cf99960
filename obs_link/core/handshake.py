"""
core/handshake.py — Hello → Identify → Identified, then the version check.

Runs on a freshly opened transport before anything else touches it. Any
failure here aborts session construction; nothing is retried. check_versions()
validates the GetVersion reply the session requests once it is active.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Optional, Union

from .auth import create_auth_response
from .errors import (
    HandshakeClosedError,
    HandshakeTimeoutError,
    OBSStudioVersionError,
    OBSWebSocketVersionError,
    PasswordRequiredError,
    RpcVersionMismatchError,
    SendError,
    UnexpectedMessageError,
)
from .protocol import (
    RPC_VERSION,
    EventSubscription,
    Hello,
    Identified,
    Identify,
    OpCode,
    WebSocketCloseCode,
    decode,
    encode,
    parse_payload,
)
from .transport import Transport

log = logging.getLogger(__name__)

HELLO_TIMEOUT = 5.0


async def _read_message(transport: Transport, expected: OpCode) -> Union[Hello, Identified]:
    text = await transport.recv()
    if text is None:
        raise HandshakeClosedError(transport.close_code, transport.close_reason)
    envelope = decode(text)
    if envelope.op != expected:
        raise UnexpectedMessageError(expected.name.title(), envelope.op)
    return parse_payload(envelope)


async def perform_handshake(
    transport: Transport,
    password: Optional[str] = None,
    event_subscriptions: Optional[Union[EventSubscription, int]] = None,
    rpc_version: int = RPC_VERSION,
    timeout: float = HELLO_TIMEOUT,
) -> Identified:
    """
    Identify against obs-websocket.

    Raises a HandshakeError subclass (timeout, closed, unexpected message,
    password required, RPC version mismatch), DeserializationError for an
    unreadable frame, or SerializationError for an unencodable Identify.
    A failed write of Identify surfaces as SendError.
    """
    try:
        hello = await asyncio.wait_for(_read_message(transport, OpCode.HELLO), timeout)
    except asyncio.TimeoutError:
        raise HandshakeTimeoutError(timeout) from None
    log.debug(
        f"Hello from obs-websocket {hello.obs_web_socket_version or '?'} "
        f"(rpc {hello.rpc_version}, auth {'required' if hello.authentication else 'not required'})"
    )

    authentication = None
    if hello.authentication is not None:
        if not password:
            raise PasswordRequiredError()
        authentication = create_auth_response(
            hello.authentication.challenge, hello.authentication.salt, password
        )

    identify = Identify(
        rpc_version=rpc_version,
        authentication=authentication,
        event_subscriptions=int(event_subscriptions) if event_subscriptions is not None else None,
    )
    payload = encode(OpCode.IDENTIFY, identify)
    try:
        await transport.send(payload)
    except Exception as e:
        raise SendError(f"Failed to send Identify: {e}") from e

    try:
        identified = await _read_message(transport, OpCode.IDENTIFIED)
    except HandshakeClosedError as e:
        if e.code == WebSocketCloseCode.AUTHENTICATION_FAILED:
            log.warning("obs-websocket rejected the password")
        raise

    if identified.negotiated_rpc_version != rpc_version:
        raise RpcVersionMismatchError(rpc_version, identified.negotiated_rpc_version)

    log.debug(f"Identified against obs-websocket (rpc {identified.negotiated_rpc_version})")
    return identified


# ── Version check ─────────────────────────────────────────────────────────

MIN_OBS_STUDIO_VERSION = (27, 0, 0)
OBS_WEBSOCKET_VERSION_RANGE = ((5, 0, 0), (6, 0, 0))

_VERSION_RE = re.compile(r"^\s*(\d+)(?:\.(\d+))?(?:\.(\d+))?")


def parse_version(text: Optional[str]) -> Optional[tuple[int, int, int]]:
    """'30.1.2' → (30, 1, 2); missing parts count as 0. None if unparseable."""
    match = _VERSION_RE.match(text or "")
    if match is None:
        return None
    return tuple(int(part or 0) for part in match.groups())


def _format(version: tuple[int, ...]) -> str:
    return ".".join(str(part) for part in version)


def check_versions(obs_version: Optional[str], websocket_version: Optional[str]) -> None:
    """
    Raise OBSStudioVersionError / OBSWebSocketVersionError unless the peer runs
    OBS Studio >= 27 with an obs-websocket 5.x server.
    """
    studio = parse_version(obs_version)
    if studio is None or studio < MIN_OBS_STUDIO_VERSION:
        raise OBSStudioVersionError(obs_version, f">={_format(MIN_OBS_STUDIO_VERSION)}")

    low, high = OBS_WEBSOCKET_VERSION_RANGE
    websocket = parse_version(websocket_version)
    if websocket is None or not low <= websocket < high:
        raise OBSWebSocketVersionError(websocket_version, f">={_format(low)}, <{_format(high)}")
