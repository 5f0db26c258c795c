"""Schedulers used to batch state change notifications."""

from abc import ABC, abstractmethod
import asyncio
from collections.abc import Callable
import logging

_LOGGER = logging.getLogger(__name__)

__all__ = [
    "Scheduler",
    "FrameScheduler",
    "ManualScheduler",
]

FRAME_DELAY = 1 / 60


class Scheduler(ABC):
    """Defers a callback until the next notification tick."""

    @abstractmethod
    def schedule(self, callback: Callable[[], None]) -> None:
        """Arrange for the callback to be invoked once at a later point."""


class FrameScheduler(Scheduler):
    """Runs callbacks roughly once per display frame on the running loop.

    When no event loop is running the callback is invoked immediately.
    """

    def __init__(self, delay: float = FRAME_DELAY) -> None:
        self._delay = delay

    def schedule(self, callback: Callable[[], None]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            callback()
            return
        loop.call_later(self._delay, callback)


class ManualScheduler(Scheduler):
    """Holds callbacks until `flush` is called."""

    def __init__(self) -> None:
        self._pending: list[Callable[[], None]] = []

    def schedule(self, callback: Callable[[], None]) -> None:
        self._pending.append(callback)

    @property
    def pending(self) -> int:
        """Number of callbacks waiting to run."""
        return len(self._pending)

    def flush(self) -> None:
        """Run all pending callbacks, including ones scheduled while flushing."""
        while self._pending:
            callbacks = self._pending
            self._pending = []
            for callback in callbacks:
                callback()

    def clear(self) -> None:
        """Drop all pending callbacks without running them."""
        self._pending.clear()
