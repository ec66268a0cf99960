"""
core/reidentify.py — FIFO wait-list for Reidentify confirmations.

obs-websocket answers Reidentify with a plain Identified message that carries
no id, so the only available matching rule is arrival order: the oldest
waiter gets the next confirmation. Concurrent reidentify() calls on one
session therefore complete in the order their Reidentify frames were written.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Optional

from .errors import DisconnectedError
from .protocol import Identified

log = logging.getLogger(__name__)


class ReidentifyQueue:
    def __init__(self) -> None:
        self._waiters: deque[asyncio.Future] = deque()

    def __len__(self) -> int:
        return len(self._waiters)

    def enqueue(self) -> asyncio.Future:
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        return waiter

    def satisfy_next(self, confirmation: Identified) -> bool:
        """
        Hand the confirmation to the oldest waiter. A waiter whose caller was
        cancelled still consumes its confirmation, so later waiters stay aligned.
        """
        if not self._waiters:
            log.debug("Identified received with no reidentify waiter, ignoring")
            return False
        waiter = self._waiters.popleft()
        if not waiter.done():
            waiter.set_result(confirmation)
        return True

    def abandon(self, waiter: asyncio.Future) -> None:
        """Withdraw a waiter whose Reidentify frame never reached the wire."""
        try:
            self._waiters.remove(waiter)
        except ValueError:
            pass
        if not waiter.done():
            waiter.cancel()

    def drain(self, reason: Optional[str] = None) -> int:
        waiters, self._waiters = self._waiters, deque()
        for waiter in waiters:
            if not waiter.done():
                waiter.set_exception(DisconnectedError(reason))
        return len(waiters)
