"""
core/listeners.py — Callback-style event handling on top of Session.events().

    dispatcher = EventDispatcher(session)

    async def handle(event):
        log.info(f"Scene → {event.event_data['sceneName']}")

    dispatcher.on("CurrentProgramSceneChanged", handle)
    dispatcher.start()
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import TYPE_CHECKING, Any, Callable, Coroutine, Optional

from .broadcaster import EventStream
from .protocol import Event

if TYPE_CHECKING:
    from .session import Session

log = logging.getLogger(__name__)

EventCallback = Callable[[Event], Coroutine[Any, Any, None]]


class EventDispatcher:
    def __init__(self, session: "Session"):
        self._session = session
        self._listeners: dict[str, list[EventCallback]] = defaultdict(list)
        self._any_listeners: list[EventCallback] = []
        self._stream: Optional[EventStream] = None
        self._task: Optional[asyncio.Task] = None

    def on(self, event_type: str, callback: EventCallback) -> None:
        self._listeners[event_type].append(callback)

    def on_any(self, callback: EventCallback) -> None:
        self._any_listeners.append(callback)

    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running():
            return
        self._stream = self._session.events()
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        if self._stream is not None:
            self._stream.close()
        if self._task is not None:
            await self._task
        self._task = None

    async def _run(self) -> None:
        async for event in self._stream:
            for cb in [*self._listeners.get(event.event_type, ()), *self._any_listeners]:
                try:
                    await cb(event)
                except Exception as e:
                    log.error(f"Listener error for {event.event_type}: {e}")
        log.debug("Event dispatcher finished")
