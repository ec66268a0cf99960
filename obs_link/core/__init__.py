"""core — obs-websocket session layer."""
from .auth import create_auth_response
from .broadcaster import EventBroadcaster, EventStream
from .connection_manager import close_session, get_session, open_session
from .correlation import CorrelationTable
from .errors import (
    APIError,
    ConnectError,
    DeserializationError,
    DisconnectedError,
    HandshakeClosedError,
    HandshakeError,
    HandshakeTimeoutError,
    OBSConnectionError,
    OBSError,
    OBSStudioVersionError,
    OBSWebSocketVersionError,
    PasswordRequiredError,
    ResponseShapeError,
    RpcVersionMismatchError,
    SendError,
    SerializationError,
    UnexpectedMessageError,
    UnsupportedVersionError,
)
from .handshake import check_versions, perform_handshake
from .listeners import EventDispatcher
from .protocol import (
    RPC_VERSION,
    BatchItem,
    Event,
    EventSubscription,
    ExecutionType,
    Identified,
    OpCode,
    RequestStatus,
    StatusCode,
    WebSocketCloseCode,
)
from .reidentify import ReidentifyQueue
from .router import InboundRouter
from .session import BatchResult, Session, SessionState
from .transport import Transport, WebSocketTransport, build_url

__all__ = [
    "APIError",
    "BatchItem",
    "BatchResult",
    "ConnectError",
    "CorrelationTable",
    "DeserializationError",
    "DisconnectedError",
    "Event",
    "EventBroadcaster",
    "EventDispatcher",
    "EventStream",
    "EventSubscription",
    "ExecutionType",
    "HandshakeClosedError",
    "HandshakeError",
    "HandshakeTimeoutError",
    "Identified",
    "InboundRouter",
    "OBSConnectionError",
    "OBSError",
    "OBSStudioVersionError",
    "OBSWebSocketVersionError",
    "OpCode",
    "PasswordRequiredError",
    "RPC_VERSION",
    "ReidentifyQueue",
    "RequestStatus",
    "ResponseShapeError",
    "RpcVersionMismatchError",
    "SendError",
    "SerializationError",
    "Session",
    "SessionState",
    "StatusCode",
    "Transport",
    "UnexpectedMessageError",
    "UnsupportedVersionError",
    "WebSocketCloseCode",
    "WebSocketTransport",
    "build_url",
    "check_versions",
    "close_session",
    "create_auth_response",
    "get_session",
    "open_session",
    "perform_handshake",
]
