"""
core/router.py — The single task that reads the transport for a session.

Each frame is classified by op code:
  RequestResponse / RequestBatchResponse → CorrelationTable.resolve()
                                           (the caller checks the kind)
  Event                                  → EventBroadcaster.publish()
  Identified                             → ReidentifyQueue.satisfy_next()
  anything else                          → ignored
A frame that can't be decoded is logged and skipped. When the transport
closes (or stop() is called) the router drains the table and the queue and
closes the broadcaster. Running → Stopped happens once.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional, Union

from .broadcaster import EventBroadcaster
from .correlation import CorrelationTable
from .errors import DeserializationError
from .protocol import (
    Event,
    Identified,
    OpCode,
    RequestBatchResponse,
    RequestResponse,
    WebSocketCloseCode,
    decode,
    parse_payload,
)
from .reidentify import ReidentifyQueue
from .transport import Transport

log = logging.getLogger(__name__)


class InboundRouter:
    def __init__(
        self,
        transport: Transport,
        requests: CorrelationTable,
        reidentify: ReidentifyQueue,
        events: EventBroadcaster,
        on_stop: Optional[Callable[[Optional[str]], None]] = None,
    ):
        self._transport = transport
        self._requests = requests
        self._reidentify = reidentify
        self._events = events
        self._on_stop = on_stop
        self._task: Optional[asyncio.Task] = None
        self._stopped = asyncio.Event()
        self.frames_skipped = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._stopped.is_set()

    def start(self) -> asyncio.Task:
        if self._task is not None:
            raise RuntimeError("Inbound router already started")
        self._task = asyncio.get_running_loop().create_task(self._run(), name="obs-link-router")
        return self._task

    async def stop(self) -> None:
        """Stop reading and wait until shutdown has completed."""
        if self._task is None:
            self._shutdown("stopped before start")
            return
        if not self._task.done():
            self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass

    async def wait_stopped(self) -> None:
        await self._stopped.wait()

    # ── Loop ──────────────────────────────────────────────────────────

    async def _run(self) -> None:
        reason: Optional[str] = None
        try:
            while True:
                text = await self._transport.recv()
                if text is None:
                    reason = "connection closed by obs-websocket"
                    code = self._transport.close_code
                    if code is not None:
                        reason = f"{reason} ({WebSocketCloseCode.describe(code)})"
                    log.info(f"OBS {reason}")
                    break
                self.handle_frame(text)
        except asyncio.CancelledError:
            reason = "disconnected by client"
            raise
        except Exception as e:
            reason = f"receive failed: {e}"
            log.exception("Inbound router crashed")
        finally:
            self._shutdown(reason)

    def _shutdown(self, reason: Optional[str]) -> None:
        if self._stopped.is_set():
            return
        self._stopped.set()
        failed = self._requests.drain(reason)
        self._reidentify.drain(reason)
        self._events.close()
        log.debug(f"Inbound router stopped ({reason}); {failed} request(s) failed")
        if self._on_stop is not None:
            self._on_stop(reason)

    # ── Dispatch ──────────────────────────────────────────────────────

    def handle_frame(self, text: Union[str, bytes]) -> None:
        log.debug(f"recv: {text}")
        try:
            envelope = decode(text)
            message = parse_payload(envelope)
        except DeserializationError as e:
            self.frames_skipped += 1
            log.warning(f"Skipping malformed frame: {e}")
            return

        if isinstance(message, (RequestResponse, RequestBatchResponse)):
            self._resolve(message.request_id, message)
        elif isinstance(message, Event):
            self._events.publish(message)
        elif isinstance(message, Identified):
            self._reidentify.satisfy_next(message)
        elif envelope.op == OpCode.HELLO:
            log.debug("Ignoring Hello on an identified session")
        else:
            log.debug(f"Ignoring frame with unhandled op {envelope.op}")

    def _resolve(self, raw_id: str, response: Union[RequestResponse, RequestBatchResponse]) -> None:
        try:
            request_id = int(raw_id)
        except (TypeError, ValueError):
            log.warning(f"Response carries a request id that was not issued here: {raw_id!r}")
            return
        self._requests.resolve(request_id, response)
