"""Holds the single authoritative state tree."""

from collections.abc import Callable
import logging
from typing import Any

from .scheduler import FrameScheduler, Scheduler

_LOGGER = logging.getLogger(__name__)

__all__ = [
    "StateManager",
]

StateCallback = Callable[[Any], None]


class StateManager:
    """Owns the current state and batches change notifications.

    A new state is visible to `get_state` immediately. Listeners are told
    about it once per scheduler tick, however many times the state changed
    in between, and always receive the latest value.
    """

    def __init__(
        self,
        initial_state: Any = None,
        on_state_change: StateCallback | None = None,
        on_state_change_for_subscriptions: StateCallback | None = None,
        scheduler: Scheduler | None = None,
    ) -> None:
        self._state = initial_state
        self._on_state_change = on_state_change
        self._on_state_change_for_subscriptions = on_state_change_for_subscriptions
        self._scheduler = scheduler or FrameScheduler()
        self._scheduled = False
        self._dirty = False

    def get_state(self) -> Any:
        """Return the current state by reference."""
        return self._state

    def set_state(self, next_state: Any) -> None:
        """Replace the state and schedule a notification.

        Change detection is by identity, so setting the same object is a no-op.
        """
        if next_state is self._state:
            return
        self._state = next_state
        self._dirty = True
        self.schedule_notification()

    def set_subscription_callback(self, callback: StateCallback | None) -> None:
        self._on_state_change_for_subscriptions = callback

    @property
    def notification_pending(self) -> bool:
        return self._scheduled

    def schedule_notification(self) -> None:
        """Schedule a notification unless one is already pending."""
        if self._scheduled:
            return
        self._scheduled = True
        self._scheduler.schedule(self._notify)

    def _notify(self) -> None:
        self._scheduled = False
        if not self._dirty:
            return
        self._dirty = False
        state = self._state
        for callback in (self._on_state_change, self._on_state_change_for_subscriptions):
            if callback is None:
                continue
            try:
                callback(state)
            except Exception:
                _LOGGER.exception("Error in state change callback")
