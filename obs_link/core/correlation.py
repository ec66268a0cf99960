"""
core/correlation.py — Pending-request table keyed by requestId.

Every method is synchronous and never awaits, so each call runs to completion
on the event loop before any other task touches the table.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any, Optional

from .errors import DisconnectedError

log = logging.getLogger(__name__)


class CorrelationTable:
    def __init__(self) -> None:
        self._counter = itertools.count(1)
        self._pending: dict[int, asyncio.Future] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, request_id: int) -> bool:
        return request_id in self._pending

    def register(self) -> tuple[int, asyncio.Future]:
        """Allocate the next id and a future that receives the response message."""
        request_id = next(self._counter)
        slot = asyncio.get_running_loop().create_future()
        self._pending[request_id] = slot
        return request_id, slot

    def resolve(self, request_id: int, response: Any) -> bool:
        """Deliver a response. Unknown or already-resolved ids are ignored."""
        slot = self._pending.pop(request_id, None)
        if slot is None:
            log.debug(f"Dropping response for unknown request id {request_id}")
            return False
        if not slot.done():
            slot.set_result(response)
        return True

    def abandon(self, request_id: int) -> None:
        slot = self._pending.pop(request_id, None)
        if slot is not None and not slot.done():
            slot.cancel()

    def drain(self, reason: Optional[str] = None) -> int:
        """Fail every pending request with DisconnectedError."""
        pending, self._pending = self._pending, {}
        for slot in pending.values():
            if not slot.done():
                slot.set_exception(DisconnectedError(reason))
        if pending:
            log.debug(f"Failed {len(pending)} pending request(s) on disconnect")
        return len(pending)
