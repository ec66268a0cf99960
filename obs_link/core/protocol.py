"""
core/protocol.py — obs-websocket v5 envelope codec.

Every frame is one JSON document shaped {"op": <int>, "d": <object>}.
This module owns the op codes, the protocol enums, the pydantic models for
the payloads the session layer understands, and encode()/decode().

Per-feature request and event payloads are NOT modelled here: requestData,
responseData and eventData stay opaque dicts.
"""

from __future__ import annotations

import json
import logging
from enum import IntEnum, IntFlag
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from .errors import DeserializationError, SerializationError

log = logging.getLogger(__name__)

RPC_VERSION = 1


class OpCode(IntEnum):
    HELLO = 0
    IDENTIFY = 1
    IDENTIFIED = 2
    REIDENTIFY = 3
    EVENT = 5
    REQUEST = 6
    REQUEST_RESPONSE = 7
    REQUEST_BATCH = 8
    REQUEST_BATCH_RESPONSE = 9


class EventSubscription(IntFlag):
    """Bitmask sent in Identify/Reidentify to pick which event categories arrive."""

    NONE = 0
    GENERAL = 1 << 0
    CONFIG = 1 << 1
    SCENES = 1 << 2
    INPUTS = 1 << 3
    TRANSITIONS = 1 << 4
    FILTERS = 1 << 5
    OUTPUTS = 1 << 6
    SCENE_ITEMS = 1 << 7
    MEDIA_INPUTS = 1 << 8
    VENDORS = 1 << 9
    UI = 1 << 10
    # All non-high-volume categories
    ALL = (
        GENERAL | CONFIG | SCENES | INPUTS | TRANSITIONS | FILTERS
        | OUTPUTS | SCENE_ITEMS | MEDIA_INPUTS | VENDORS | UI
    )
    # High-volume events, must be requested explicitly
    INPUT_VOLUME_METERS = 1 << 16
    INPUT_ACTIVE_STATE_CHANGED = 1 << 17
    INPUT_SHOW_STATE_CHANGED = 1 << 18
    SCENE_ITEM_TRANSFORM_CHANGED = 1 << 19

    @classmethod
    def parse(cls, value: Union[str, int, "EventSubscription"]) -> "EventSubscription":
        """
        Accept an int mask or a comma/pipe separated list of names
        (case-insensitive, e.g. "scenes,inputs" or "ALL|INPUT_VOLUME_METERS").
        """
        if isinstance(value, int):
            return cls(value)
        mask = cls.NONE
        for part in value.replace("|", ",").split(","):
            name = part.strip().upper().replace("-", "_")
            if not name:
                continue
            if name.isdigit():
                mask |= cls(int(name))
                continue
            try:
                mask |= cls[name]
            except KeyError:
                raise ValueError(f"Unknown event subscription '{part.strip()}'") from None
        return mask


class StatusCode(IntEnum):
    """requestStatus.code values defined by obs-websocket."""

    UNKNOWN = 0
    NO_ERROR = 10
    SUCCESS = 100
    MISSING_REQUEST_TYPE = 203
    UNKNOWN_REQUEST_TYPE = 204
    GENERIC_ERROR = 205
    UNSUPPORTED_REQUEST_BATCH_EXECUTION_TYPE = 206
    NOT_READY = 207
    MISSING_REQUEST_FIELD = 300
    MISSING_REQUEST_DATA = 301
    INVALID_REQUEST_FIELD = 400
    INVALID_REQUEST_FIELD_TYPE = 401
    REQUEST_FIELD_OUT_OF_RANGE = 402
    REQUEST_FIELD_EMPTY = 403
    TOO_MANY_REQUEST_FIELDS = 404
    OUTPUT_RUNNING = 500
    OUTPUT_NOT_RUNNING = 501
    OUTPUT_PAUSED = 502
    OUTPUT_NOT_PAUSED = 503
    OUTPUT_DISABLED = 504
    STUDIO_MODE_ACTIVE = 505
    STUDIO_MODE_NOT_ACTIVE = 506
    RESOURCE_NOT_FOUND = 600
    RESOURCE_ALREADY_EXISTS = 601
    INVALID_RESOURCE_TYPE = 602
    NOT_ENOUGH_RESOURCES = 603
    INVALID_RESOURCE_STATE = 604
    INVALID_INPUT_KIND = 605
    RESOURCE_NOT_CONFIGURABLE = 606
    INVALID_FILTER_KIND = 607
    RESOURCE_CREATION_FAILED = 700
    RESOURCE_ACTION_FAILED = 701
    REQUEST_PROCESSING_FAILED = 702
    CANNOT_ACT = 703

    @classmethod
    def lookup(cls, code: int) -> Union["StatusCode", int]:
        """Known codes become members, unknown ones stay plain ints."""
        try:
            return cls(code)
        except ValueError:
            return code


class WebSocketCloseCode(IntEnum):
    """Close codes obs-websocket uses on top of the standard WebSocket ones."""

    UNKNOWN_REASON = 4000
    MESSAGE_DECODE_ERROR = 4002
    MISSING_DATA_FIELD = 4003
    INVALID_DATA_FIELD_TYPE = 4004
    INVALID_DATA_FIELD_VALUE = 4005
    UNKNOWN_OP_CODE = 4006
    NOT_IDENTIFIED = 4007
    ALREADY_IDENTIFIED = 4008
    AUTHENTICATION_FAILED = 4009
    UNSUPPORTED_RPC_VERSION = 4010
    SESSION_INVALIDATED = 4011
    UNSUPPORTED_FEATURE = 4012

    @classmethod
    def describe(cls, code: Optional[int]) -> str:
        if code is None:
            return "no close code"
        try:
            return f"{cls(code).name} ({code})"
        except ValueError:
            return str(code)


class ExecutionType(IntEnum):
    """How the server runs the requests of a RequestBatch."""

    NONE = -1
    SERIAL_REALTIME = 0
    SERIAL_FRAME = 1
    PARALLEL = 2


# ── Payload models ────────────────────────────────────────────────────

class Message(BaseModel):
    """Base for wire payloads: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Authentication(Message):
    challenge: str
    salt: str


class Hello(Message):
    obs_web_socket_version: Optional[str] = None
    rpc_version: int
    authentication: Optional[Authentication] = None


class Identify(Message):
    rpc_version: int
    authentication: Optional[str] = None
    event_subscriptions: Optional[int] = None


class Identified(Message):
    negotiated_rpc_version: int


class Reidentify(Message):
    event_subscriptions: Optional[int] = None


class Request(Message):
    request_type: str
    request_id: str
    request_data: Optional[Any] = None


class RequestStatus(Message):
    result: bool
    code: int
    comment: Optional[str] = None

    @property
    def status_code(self) -> Union[StatusCode, int]:
        return StatusCode.lookup(self.code)


class RequestResponse(Message):
    request_type: str = ""
    request_id: str
    request_status: RequestStatus
    response_data: Optional[dict[str, Any]] = None


class BatchItem(Message):
    """One sub-request of a RequestBatch."""

    request_type: str
    request_data: Optional[Any] = None
    request_id: Optional[str] = None


class RequestBatch(Message):
    request_id: str
    halt_on_failure: Optional[bool] = None
    execution_type: Optional[int] = None
    requests: list[BatchItem] = Field(default_factory=list)


class BatchItemResponse(Message):
    request_type: str = ""
    request_id: Optional[str] = None
    request_status: RequestStatus
    response_data: Optional[dict[str, Any]] = None


class RequestBatchResponse(Message):
    request_id: str
    results: list[BatchItemResponse] = Field(default_factory=list)


class Event(Message):
    event_type: str
    event_intent: Optional[int] = None
    event_data: dict[str, Any] = Field(default_factory=dict)


class Envelope(BaseModel):
    op: int
    d: dict[str, Any] = Field(default_factory=dict)


INBOUND_MODELS: dict[int, type[Message]] = {
    OpCode.HELLO: Hello,
    OpCode.IDENTIFIED: Identified,
    OpCode.EVENT: Event,
    OpCode.REQUEST_RESPONSE: RequestResponse,
    OpCode.REQUEST_BATCH_RESPONSE: RequestBatchResponse,
}


# ── Codec ─────────────────────────────────────────────────────────────

def to_json_value(data: Any) -> Any:
    """Pydantic models are dumped by alias; everything else is passed through."""
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json", by_alias=True, exclude_none=True)
    return data


def encode(op: OpCode, payload: Message) -> str:
    try:
        d = payload.model_dump(by_alias=True, exclude_none=True)
        # requestData is the caller's payload: keep its None values, dump models by alias
        if isinstance(payload, Request) and payload.request_data is not None:
            d["requestData"] = to_json_value(payload.request_data)
        elif isinstance(payload, RequestBatch):
            for item, raw in zip(d["requests"], payload.requests):
                if raw.request_data is not None:
                    item["requestData"] = to_json_value(raw.request_data)
        return json.dumps({"op": int(op), "d": d})
    except (TypeError, ValueError) as e:
        raise SerializationError(f"Failed to serialize {OpCode(op).name} message: {e}") from e


def decode(text: Union[str, bytes]) -> Envelope:
    try:
        raw = json.loads(text)
    except (TypeError, ValueError) as e:
        raise DeserializationError(f"Frame is not valid JSON: {e}") from e
    try:
        return Envelope.model_validate(raw)
    except ValidationError as e:
        raise DeserializationError(f"Frame is not a valid envelope: {e}") from e


def parse_payload(envelope: Envelope) -> Optional[Message]:
    """Typed payload for inbound op codes we understand, None for the rest."""
    model = INBOUND_MODELS.get(envelope.op)
    if model is None:
        return None
    try:
        return model.model_validate(envelope.d)
    except ValidationError as e:
        raise DeserializationError(f"Invalid payload for op {envelope.op}: {e}") from e
