"""
core/broadcaster.py — Fan-out of obs-websocket events to independent streams.

One producer (the inbound router) and any number of EventStream consumers.
Each stream has its own bounded ring buffer. publish() never waits: when a
stream falls `capacity` events behind, its oldest buffered event is dropped
and counted in `EventStream.missed`. Delivery is lossy under load: a slow
consumer loses old events instead of stalling request/response traffic.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Optional

from .protocol import Event

log = logging.getLogger(__name__)

DEFAULT_CAPACITY = 100


class EventStream:
    """
    Async iterator over events published after it was created.

    Usage:
        async with session.events() as events:
            async for event in events:
                print(event.event_type, event.event_data)

    Iteration ends when the session terminates (after the events already
    buffered have been delivered) or when close() is called.
    """

    def __init__(self, broadcaster: Optional["EventBroadcaster"], capacity: int):
        self._broadcaster = broadcaster
        self._buffer: deque[Event] = deque(maxlen=capacity)
        self._wakeup = asyncio.Event()
        self._closed = broadcaster is None
        self.missed = 0
        self._reported_missed = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def _push(self, event: Event) -> None:
        if len(self._buffer) == self._buffer.maxlen:
            self.missed += 1
        self._buffer.append(event)
        self._wakeup.set()

    def _end(self) -> None:
        self._closed = True
        self._broadcaster = None
        self._wakeup.set()

    def close(self) -> None:
        """Unsubscribe. Events already buffered are discarded."""
        if self._broadcaster is not None:
            self._broadcaster._unsubscribe(self)
        self._buffer.clear()
        self._end()

    def __aiter__(self) -> "EventStream":
        return self

    async def __anext__(self) -> Event:
        while not self._buffer:
            if self._closed:
                raise StopAsyncIteration
            self._wakeup.clear()
            await self._wakeup.wait()
        if self.missed != self._reported_missed:
            log.warning(f"Event stream lagged, skipped {self.missed - self._reported_missed} event(s)")
            self._reported_missed = self.missed
        return self._buffer.popleft()

    async def __aenter__(self) -> "EventStream":
        return self

    async def __aexit__(self, *exc) -> None:
        self.close()


class EventBroadcaster:
    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError("Broadcast capacity must be at least 1")
        self.capacity = capacity
        self._streams: set[EventStream] = set()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def subscriber_count(self) -> int:
        return len(self._streams)

    def subscribe(self) -> EventStream:
        if self._closed:
            # already terminated: a stream that ends immediately
            return EventStream(None, self.capacity)
        stream = EventStream(self, self.capacity)
        self._streams.add(stream)
        return stream

    def publish(self, event: Event) -> int:
        """Hand the event to every current stream. Returns how many received it."""
        if self._closed:
            return 0
        for stream in self._streams:
            stream._push(event)
        return len(self._streams)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        streams, self._streams = self._streams, set()
        for stream in streams:
            stream._end()
        log.debug(f"Event broadcaster closed ({len(streams)} stream(s) ended)")

    def _unsubscribe(self, stream: EventStream) -> None:
        self._streams.discard(stream)
