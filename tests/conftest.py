"""
tests/conftest.py — In-memory transport standing in for obs-websocket.
"""

import asyncio
import json
from typing import Optional, Union

import pytest

from obs_link.core import OpCode, Session


class FakeTransport:
    """Tests push inbound frames with the helpers below and inspect `sent`."""

    def __init__(self):
        self.inbound: asyncio.Queue = asyncio.Queue()
        self.sent: list[dict] = []
        self.fail_send = False
        self.send_gate: Optional[asyncio.Event] = None
        self.closed = False
        self.close_code: Optional[int] = None
        self.close_reason: Optional[str] = None

    # Transport protocol

    async def send(self, text: str) -> None:
        if self.send_gate is not None:
            await self.send_gate.wait()
        if self.fail_send:
            raise ConnectionResetError("connection reset by peer")
        self.sent.append(json.loads(text))

    async def recv(self) -> Optional[Union[str, bytes]]:
        return await self.inbound.get()

    async def close(self) -> None:
        self.closed = True
        self.inbound.put_nowait(None)

    # Server side

    def push(self, op: int, d: dict) -> None:
        self.inbound.put_nowait(json.dumps({"op": op, "d": d}))

    def push_raw(self, text: Union[str, bytes]) -> None:
        self.inbound.put_nowait(text)

    def hang_up(self, code: Optional[int] = None, reason: Optional[str] = None) -> None:
        self.close_code = code
        self.close_reason = reason
        self.inbound.put_nowait(None)

    def hello(self, rpc_version: int = 1, authentication: Optional[dict] = None) -> None:
        d = {"obsWebSocketVersion": "5.4.2", "rpcVersion": rpc_version}
        if authentication:
            d["authentication"] = authentication
        self.push(OpCode.HELLO, d)

    def identified(self, rpc_version: int = 1) -> None:
        self.push(OpCode.IDENTIFIED, {"negotiatedRpcVersion": rpc_version})

    def event(self, event_type: str, data: Optional[dict] = None) -> None:
        self.push(OpCode.EVENT, {"eventType": event_type, "eventIntent": 1, "eventData": data or {}})

    def respond(
        self,
        request: dict,
        data: Optional[dict] = None,
        result: bool = True,
        code: int = 100,
        comment: Optional[str] = None,
    ) -> None:
        status = {"result": result, "code": code}
        if comment:
            status["comment"] = comment
        d = {"requestType": request["requestType"], "requestId": request["requestId"], "requestStatus": status}
        if data is not None:
            d["responseData"] = data
        self.push(OpCode.REQUEST_RESPONSE, d)

    def sent_with_op(self, op: int) -> list[dict]:
        return [m["d"] for m in self.sent if m["op"] == op]

    async def wait_sent(self, count: int, op: int) -> list[dict]:
        async def _wait():
            while len(self.sent_with_op(op)) < count:
                await asyncio.sleep(0)
        await asyncio.wait_for(_wait(), 1.0)
        return self.sent_with_op(op)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def connect(transport):
    """
    Open a Session over the fake transport with a canned successful handshake.
    The GetVersion check is off unless a test asks for it.
    """
    async def _connect(**kwargs) -> Session:
        kwargs.setdefault("verify_versions", False)
        transport.hello()
        transport.identified()
        return await Session.from_transport(transport, **kwargs)
    return _connect
