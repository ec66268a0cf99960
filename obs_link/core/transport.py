"""
core/transport.py — Frame transport the session runs on.

The session layer only needs "send one text frame", "receive the next frame
or learn that the connection closed", and "close". WebSocketTransport provides
that on top of the `websockets` asyncio client; tests plug in an in-memory
implementation of the same Protocol.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Protocol, Union

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from .errors import ConnectError

log = logging.getLogger(__name__)


class Transport(Protocol):
    close_code: Optional[int]
    close_reason: Optional[str]

    async def send(self, text: str) -> None:
        ...

    async def recv(self) -> Optional[Union[str, bytes]]:
        """Next frame, or None once the connection is closed."""
        ...

    async def close(self) -> None:
        ...


def build_url(host: str, port: int, tls: bool = False) -> str:
    scheme = "wss" if tls else "ws"
    return f"{scheme}://{host}:{port}"


class WebSocketTransport:
    def __init__(self, ws: ClientConnection):
        self._ws = ws
        self.close_code: Optional[int] = None
        self.close_reason: Optional[str] = None

    @classmethod
    async def open(cls, url: str, connect_timeout: Optional[float] = 10.0) -> "WebSocketTransport":
        log.debug(f"Opening WebSocket to {url}")
        try:
            ws = await connect(url, open_timeout=connect_timeout, max_size=None)
        except asyncio.TimeoutError as e:
            raise ConnectError(f"Timed out connecting to {url} after {connect_timeout}s") from e
        except (OSError, InvalidHandshake, InvalidURI) as e:
            raise ConnectError(f"Failed to connect to {url}: {e}") from e
        return cls(ws)

    async def send(self, text: str) -> None:
        await self._ws.send(text)

    async def recv(self) -> Optional[Union[str, bytes]]:
        # binary frames are passed through; the codec rejects invalid UTF-8
        try:
            return await self._ws.recv()
        except ConnectionClosed as e:
            self._record_close(e)
            return None

    async def close(self) -> None:
        await self._ws.close()
        if self.close_code is None:
            self.close_code = self._ws.close_code
            self.close_reason = self._ws.close_reason

    def _record_close(self, exc: ConnectionClosed) -> None:
        if exc.rcvd is not None:
            self.close_code = exc.rcvd.code
            self.close_reason = exc.rcvd.reason
        else:
            self.close_code = self._ws.close_code
            self.close_reason = self._ws.close_reason
        log.debug(f"WebSocket closed: code={self.close_code} reason={self.close_reason!r}")
