"""Binds the subscription registry to the store state."""

from collections.abc import Mapping, Sequence
import logging
from typing import Any

from ..error_handler import ErrorHandler
from ..state import StateManager
from .registry import (
    Listener,
    Subscription,
    SubscriptionConfig,
    SubscriptionRegistry,
    Unsubscribe,
)

_LOGGER = logging.getLogger(__name__)

__all__ = [
    "SubscriptionManager",
]


class SubscriptionManager:
    """Runs subscriptions against the current state of a StateManager."""

    def __init__(
        self,
        state_manager: StateManager,
        error_handler: ErrorHandler | None = None,
        registry: SubscriptionRegistry | None = None,
    ) -> None:
        self._state_manager = state_manager
        self._registry = registry or SubscriptionRegistry(error_handler)

    @property
    def registry(self) -> SubscriptionRegistry:
        return self._registry

    def register_subscription(
        self, key: str, config: SubscriptionConfig | Mapping[str, Any]
    ) -> None:
        self._registry.register(key, config)

    def subscribe(
        self, key: str, params: Sequence[Any], callback: Listener
    ) -> Unsubscribe:
        return self._registry.subscribe(
            self._state_manager.get_state(), key, params, callback
        )

    def query(self, key: str, params: Sequence[Any] = ()) -> Any:
        return self._registry.query(self._state_manager.get_state(), key, params)

    def get_subscription(self, key: str, params: Sequence[Any] = ()) -> Subscription:
        return self._registry.get_subscription(key, params)

    def notify_listeners(self, new_state: Any) -> None:
        """Notify subscriptions of a new state.

        The state passed in is used rather than the StateManager state.
        """
        _LOGGER.debug("Notifying subscription listeners")
        self._registry.notify_listeners(new_state)
