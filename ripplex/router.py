"""A FIFO queue that processes events one at a time."""

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
import logging
from typing import Any

from .task import TaskService

_LOGGER = logging.getLogger(__name__)

__all__ = [
    "QueuedEvent",
    "Router",
]

EventHandlerFn = Callable[[str, Any], Awaitable[None]]


@dataclass
class QueuedEvent:
    """An event waiting to be handled."""

    event_key: str
    payload: Any
    future: "asyncio.Future[None]"


class Router:
    """Serializes event processing.

    Events are handled in dispatch order. An event and all of its effects
    finish before the next event starts, so events dispatched from effects
    queue behind the event that produced them.
    """

    def __init__(self, handle_event: EventHandlerFn, task_service: TaskService) -> None:
        self._handle_event = handle_event
        self._task_service = task_service
        self._queue: deque[QueuedEvent] = deque()
        self._drain_task: asyncio.Task[None] | None = None

    @property
    def pending(self) -> int:
        """Number of events waiting to be handled."""
        return len(self._queue)

    def dispatch(self, event_key: str, payload: Any = None) -> "asyncio.Future[None]":
        """Queue an event, returning a future resolved once it has been handled.

        Must be called while an event loop is running.
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[None] = loop.create_future()
        self._queue.append(QueuedEvent(event_key, payload, future))
        _LOGGER.debug("Queued event %s (%d pending)", event_key, len(self._queue))
        self._start_draining()
        return future

    def _start_draining(self) -> None:
        if self._drain_task is not None:
            return
        self._drain_task = self._task_service.create_task(
            self._drain(), name="ripplex-router"
        )

    async def _drain(self) -> None:
        current: QueuedEvent | None = None
        try:
            while self._queue:
                current = self._queue.popleft()
                try:
                    await self._handle_event(current.event_key, current.payload)
                except Exception as err:
                    if not current.future.done():
                        current.future.set_exception(err)
                else:
                    if not current.future.done():
                        current.future.set_result(None)
                current = None
        except asyncio.CancelledError:
            if current is not None:
                current.future.cancel()
            raise
        finally:
            self._drain_task = None

    async def flush(self) -> None:
        """Wait until every queued event, including ones queued meanwhile, is handled."""
        while True:
            if self._drain_task is not None:
                await asyncio.shield(self._drain_task)
            elif self._queue:
                self._start_draining()
            else:
                return
