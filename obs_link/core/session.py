"""
core/session.py — One identified connection to obs-websocket.

A Session is created by a successful handshake, runs one InboundRouter task
for its whole life, and ends (for good) when the transport closes or
disconnect() is called. At that point every pending request and reidentify
call fails with DisconnectedError and every event stream ends.

    async with await Session.connect("localhost", 4455, password="secret") as obs:
        version = await obs.send_request("GetVersion")
        async for event in obs.events():
            ...
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from typing import Any, Callable, Optional, Sequence, Type, Union

from pydantic import TypeAdapter, ValidationError

from .broadcaster import DEFAULT_CAPACITY, EventBroadcaster, EventStream
from .correlation import CorrelationTable
from .errors import (
    APIError,
    DeserializationError,
    DisconnectedError,
    ResponseShapeError,
    SendError,
    SerializationError,
)
from .handshake import HELLO_TIMEOUT, check_versions, perform_handshake
from .protocol import (
    RPC_VERSION,
    BatchItem,
    BatchItemResponse,
    EventSubscription,
    ExecutionType,
    Identified,
    Message,
    OpCode,
    Reidentify,
    Request,
    RequestBatch,
    RequestBatchResponse,
    RequestResponse,
    RequestStatus,
    StatusCode,
    encode,
)
from .reidentify import ReidentifyQueue
from .router import InboundRouter
from .transport import Transport, WebSocketTransport, build_url

log = logging.getLogger(__name__)

BatchRequest = Union[BatchItem, tuple, str]


class SessionState(Enum):
    HANDSHAKING = "handshaking"
    ACTIVE = "active"
    TERMINATED = "terminated"


@dataclass
class BatchResult:
    """Outcome of one sub-request of a batch. status is None if it never ran."""

    request_type: str
    status: Optional[RequestStatus] = None
    data: dict = field(default_factory=dict)

    @property
    def executed(self) -> bool:
        return self.status is not None

    @property
    def ok(self) -> bool:
        return self.status is not None and self.status.result

    @property
    def error(self) -> Optional[APIError]:
        if self.status is None:
            return APIError(self.request_type, StatusCode.UNKNOWN, "not executed, batch halted earlier")
        if not self.status.result:
            return APIError(self.request_type, self.status.status_code, self.status.comment)
        return None

    def unwrap(self, response_type: Any = None) -> Any:
        error = self.error
        if error is not None:
            raise error
        return _convert(self.request_type, self.data, response_type)


@lru_cache(maxsize=256)
def _adapter(response_type: Any) -> TypeAdapter:
    return TypeAdapter(response_type)


def _convert(request_type: str, data: dict, response_type: Any) -> Any:
    if response_type is None:
        return data
    try:
        return _adapter(response_type).validate_python(data)
    except ValidationError as e:
        raise ResponseShapeError(request_type, str(e)) from e


class Session:
    def __init__(self, transport: Transport, broadcast_capacity: int = DEFAULT_CAPACITY):
        self._transport = transport
        self._state = SessionState.HANDSHAKING
        self._rpc_version: Optional[int] = None
        self._requests = CorrelationTable()
        self._reidentify = ReidentifyQueue()
        self._events = EventBroadcaster(broadcast_capacity)
        self._send_lock = asyncio.Lock()
        self._router: Optional[InboundRouter] = None
        self._close_reason: Optional[str] = None

    # ── Construction ──────────────────────────────────────────────────

    @classmethod
    async def connect(
        cls,
        host: str = "localhost",
        port: int = 4455,
        password: Optional[str] = None,
        *,
        tls: bool = False,
        event_subscriptions: Optional[Union[EventSubscription, int]] = EventSubscription.ALL,
        rpc_version: int = RPC_VERSION,
        handshake_timeout: float = HELLO_TIMEOUT,
        connect_timeout: Optional[float] = 10.0,
        broadcast_capacity: int = DEFAULT_CAPACITY,
        verify_versions: bool = True,
    ) -> "Session":
        """Open a WebSocket to obs-websocket and identify on it."""
        transport = await WebSocketTransport.open(build_url(host, port, tls), connect_timeout)
        session = await cls.from_transport(
            transport,
            password,
            event_subscriptions=event_subscriptions,
            rpc_version=rpc_version,
            handshake_timeout=handshake_timeout,
            broadcast_capacity=broadcast_capacity,
            verify_versions=verify_versions,
        )
        log.info(f"Connected to OBS at {host}:{port} (rpc {session.rpc_version})")
        return session

    @classmethod
    async def from_transport(
        cls,
        transport: Transport,
        password: Optional[str] = None,
        *,
        event_subscriptions: Optional[Union[EventSubscription, int]] = EventSubscription.ALL,
        rpc_version: int = RPC_VERSION,
        handshake_timeout: float = HELLO_TIMEOUT,
        broadcast_capacity: int = DEFAULT_CAPACITY,
        verify_versions: bool = True,
    ) -> "Session":
        """
        Run the handshake on an already open transport. On failure the
        transport is closed and the error re-raised; no Session is returned.

        With verify_versions the session sends GetVersion once identified and
        rejects peers older than OBS Studio 27 or outside obs-websocket 5.x
        (OBSStudioVersionError / OBSWebSocketVersionError).
        """
        session = cls(transport, broadcast_capacity)
        try:
            identified = await perform_handshake(
                transport,
                password=password,
                event_subscriptions=event_subscriptions,
                rpc_version=rpc_version,
                timeout=handshake_timeout,
            )
        except BaseException as e:
            session._state = SessionState.TERMINATED
            session._close_reason = f"handshake failed: {e}"
            session._events.close()
            await session._close_transport()
            raise
        session._activate(identified.negotiated_rpc_version)
        if verify_versions:
            try:
                await session.verify_versions()
            except BaseException:
                await session.disconnect()
                raise
        return session

    def _activate(self, rpc_version: int) -> None:
        self._rpc_version = rpc_version
        self._router = InboundRouter(
            self._transport,
            self._requests,
            self._reidentify,
            self._events,
            on_stop=self._on_router_stop,
        )
        self._state = SessionState.ACTIVE
        self._router.start()

    def _on_router_stop(self, reason: Optional[str]) -> None:
        self._state = SessionState.TERMINATED
        self._close_reason = reason

    async def _close_transport(self) -> None:
        try:
            await self._transport.close()
        except Exception as e:
            log.debug(f"Error while closing transport: {e}")

    # ── State ─────────────────────────────────────────────────────────

    @property
    def state(self) -> SessionState:
        return self._state

    def is_active(self) -> bool:
        return self._state is SessionState.ACTIVE

    @property
    def rpc_version(self) -> Optional[int]:
        return self._rpc_version

    @property
    def close_code(self) -> Optional[int]:
        return self._transport.close_code

    @property
    def close_reason(self) -> Optional[str]:
        return self._close_reason

    def pending_requests(self) -> int:
        return len(self._requests)

    def _ensure_active(self) -> None:
        if self._state is not SessionState.ACTIVE:
            raise DisconnectedError(self._close_reason)

    # ── Sending ───────────────────────────────────────────────────────

    async def _send(self, frame: str, label: str) -> None:
        log.debug(f"send: {frame}")
        async with self._send_lock:
            try:
                await self._transport.send(frame)
            except Exception as e:
                raise SendError(f"Failed to send {label}: {e}") from e

    async def _roundtrip(
        self,
        op: OpCode,
        build: Callable[[str], Message],
        label: str,
        expected: Type[Message],
    ) -> Any:
        """
        Register a correlation id, send the message built for it, and wait for
        the matching response. The entry is removed on every exit path.
        A reply of the wrong kind for the id raises DeserializationError.
        """
        self._ensure_active()
        request_id, slot = self._requests.register()
        try:
            try:
                message = build(str(request_id))
            except ValidationError as e:
                raise SerializationError(f"Invalid {label} message: {e}") from e
            await self._send(encode(op, message), label)
            response = await slot
        finally:
            self._requests.abandon(request_id)
        if not isinstance(response, expected):
            raise DeserializationError(
                f"Expected {expected.__name__} for {label} (id {request_id}), "
                f"got {type(response).__name__}"
            )
        return response

    async def send_request(
        self,
        request_type: str,
        request_data: Any = None,
        response_type: Any = None,
    ) -> Any:
        """
        Send one request and wait for its response.

        request_data may be a dict, any JSON-serializable value or a pydantic
        model. Without response_type the raw responseData dict is returned
        (empty if the server sent none); otherwise it is validated into
        response_type with pydantic.

        Raises DisconnectedError, SendError, SerializationError, APIError
        (server rejected the request), ResponseShapeError, or
        DeserializationError when the id is answered with a batch response.
        """
        response = await self._roundtrip(
            OpCode.REQUEST,
            lambda request_id: Request(
                request_type=request_type,
                request_id=request_id,
                request_data=request_data,
            ),
            request_type,
            RequestResponse,
        )
        status = response.request_status
        if not status.result:
            raise APIError(request_type, status.status_code, status.comment)
        return _convert(request_type, response.response_data or {}, response_type)

    async def send_batch(
        self,
        requests: Sequence[BatchRequest],
        halt_on_failure: Optional[bool] = None,
        execution_type: Optional[ExecutionType] = None,
    ) -> list[BatchResult]:
        """
        Send several requests in one RequestBatch.

        Each entry is a BatchItem, a (request_type, request_data) tuple or a
        bare request type string. The result list lines up with `requests`;
        per-item failures are reported in the BatchResult, not raised.
        Sub-request ids are replaced by their position in the batch.
        """
        self._ensure_active()
        items = [_batch_item(request, index) for index, request in enumerate(requests)]
        if not items:
            return []
        response = await self._roundtrip(
            OpCode.REQUEST_BATCH,
            lambda request_id: RequestBatch(
                request_id=request_id,
                halt_on_failure=halt_on_failure,
                execution_type=int(execution_type) if execution_type is not None else None,
                requests=items,
            ),
            "RequestBatch",
            RequestBatchResponse,
        )
        return _map_batch_results(items, response.results)

    async def reidentify(self, event_subscriptions: Union[EventSubscription, int]) -> Identified:
        """
        Change the event subscriptions without reconnecting.

        Confirmations carry no id, so concurrent calls complete in the order
        their Reidentify frames were sent.
        """
        self._ensure_active()
        frame = encode(OpCode.REIDENTIFY, Reidentify(event_subscriptions=int(event_subscriptions)))
        log.debug(f"send: {frame}")
        async with self._send_lock:
            waiter = self._reidentify.enqueue()
            try:
                await self._transport.send(frame)
            except Exception as e:
                self._reidentify.abandon(waiter)
                raise SendError(f"Failed to send Reidentify: {e}") from e
            except BaseException:
                # cancelled mid-write: the frame is not known to have been sent
                self._reidentify.abandon(waiter)
                raise
        return await waiter

    async def verify_versions(self) -> dict:
        """Ask for GetVersion and check the peer's OBS Studio and obs-websocket releases."""
        version = await self.send_request("GetVersion")
        check_versions(version.get("obsVersion"), version.get("obsWebSocketVersion"))
        log.debug(
            f"OBS Studio {version.get('obsVersion')}, "
            f"obs-websocket {version.get('obsWebSocketVersion')}"
        )
        return version

    # ── Events ────────────────────────────────────────────────────────

    def events(self) -> EventStream:
        """
        New independent stream of events received from now on. Ends when the
        session terminates; a stream created afterwards is empty.
        """
        return self._events.subscribe()

    # ── Shutdown ──────────────────────────────────────────────────────

    async def disconnect(self) -> None:
        if self._router is not None:
            await self._router.stop()
        self._state = SessionState.TERMINATED
        await self._close_transport()

    async def wait_closed(self) -> None:
        if self._router is not None:
            await self._router.wait_stopped()

    async def __aenter__(self) -> "Session":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.disconnect()


def _batch_item(request: BatchRequest, index: int) -> BatchItem:
    if isinstance(request, BatchItem):
        return request.model_copy(update={"request_id": str(index)})
    if isinstance(request, str):
        return BatchItem(request_type=request, request_id=str(index))
    try:
        if len(request) == 1:
            return BatchItem(request_type=request[0], request_id=str(index))
        request_type, request_data = request
        return BatchItem(request_type=request_type, request_data=request_data, request_id=str(index))
    except (TypeError, ValueError, ValidationError) as e:
        raise SerializationError(f"Invalid batch entry at position {index}: {request!r}") from e


def _map_batch_results(items: list[BatchItem], results: list[BatchItemResponse]) -> list[BatchResult]:
    by_id = {r.request_id: r for r in results if r.request_id is not None}
    mapped = []
    for index, item in enumerate(items):
        if by_id:
            response = by_id.get(item.request_id)
        else:
            response = results[index] if index < len(results) else None
        if response is None:
            mapped.append(BatchResult(request_type=item.request_type))
        else:
            mapped.append(BatchResult(
                request_type=item.request_type,
                status=response.request_status,
                data=response.response_data or {},
            ))
    return mapped
