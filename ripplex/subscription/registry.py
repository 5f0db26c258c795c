"""Memoized subscriptions over the state tree.

A subscription is either a leaf, computed from the state and its params, or
derived, combining the results of other subscriptions. Results are cached
per state object while the subscription is live, so repeated queries
against the same state are free. Params are matched by value equality.
"""

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
import logging
from typing import Any

from ..error_handler import ErrorContext, ErrorHandler, ErrorPhase
from ..exceptions import CircularDependencyError

_LOGGER = logging.getLogger(__name__)

__all__ = [
    "Subscription",
    "SubscriptionConfig",
    "SubscriptionRegistry",
]

Listener = Callable[[Any], None]
Unsubscribe = Callable[[], None]
QueryErrorFn = Callable[[Exception, str, tuple[Any, ...]], None]

_UNSET = object()


@dataclass(frozen=True)
class SubscriptionConfig:
    """How a subscription computes its result.

    Either `compute(state, *params)` for a leaf subscription, or `deps` with
    `combine(dep_results, *params)` for a derived one.
    """

    compute: Callable[..., Any] | None = None
    deps: Sequence[str] | None = None
    combine: Callable[..., Any] | None = None

    @classmethod
    def parse(cls, config: "SubscriptionConfig | Mapping[str, Any]") -> "SubscriptionConfig":
        if isinstance(config, SubscriptionConfig):
            return config
        return cls(
            compute=config.get("compute"),
            deps=config.get("deps"),
            combine=config.get("combine"),
        )

    @property
    def is_leaf(self) -> bool:
        return callable(self.compute)

    @property
    def is_derived(self) -> bool:
        return self.deps is not None and callable(self.combine)


@dataclass(eq=False)
class Subscription:
    """A subscription instance for one key and set of params."""

    key: str
    params: tuple[Any, ...]
    last_state: Any = _UNSET
    last_result: Any = None
    has_result: bool = False
    last_delivered: Any = _UNSET
    listeners: list[Listener] = field(default_factory=list)
    ref_count: int = 0


class SubscriptionRegistry:
    """Holds subscription configs and the live subscription instances.

    Instances are created by `get_subscription` and `subscribe`. A plain
    `query` uses a live instance when one exists and otherwise computes
    without retaining anything.
    """

    def __init__(self, error_handler: ErrorHandler | None = None) -> None:
        self._error_handler = error_handler
        self._configs: dict[str, SubscriptionConfig] = {}
        self._subscriptions: dict[str, list[Subscription]] = {}

    def register(self, key: str, config: SubscriptionConfig | Mapping[str, Any]) -> None:
        """Register or replace the config for a subscription key.

        Raises CircularDependencyError if the config depends on `key`,
        directly or through other registered subscriptions.
        """
        parsed = SubscriptionConfig.parse(config)
        if parsed.deps:
            self._check_cycle(key, parsed)
        self._configs[key] = parsed
        # Existing instances must recompute with the new config
        for subscription in self._subscriptions.get(key, ()):
            subscription.last_state = _UNSET

    def _check_cycle(self, key: str, config: SubscriptionConfig) -> None:
        def visit(current: str, path: list[str], visited: set[str]) -> None:
            deps = self._configs[current].deps if current != key else config.deps
            for dep in deps or ():
                if dep == key:
                    raise CircularDependencyError(key, [*path, dep])
                if dep in visited or dep not in self._configs:
                    continue
                visited.add(dep)
                visit(dep, [*path, dep], visited)

        visit(key, [key], set())

    def get_config(self, key: str) -> SubscriptionConfig | None:
        return self._configs.get(key)

    def _find(self, key: str, params: tuple[Any, ...]) -> Subscription | None:
        for subscription in self._subscriptions.get(key, ()):
            if subscription.params == params:
                return subscription
        return None

    def get_subscription(self, key: str, params: Sequence[Any] = ()) -> Subscription:
        """Return the shared Subscription for key and params, creating it if needed."""
        params = tuple(params)
        subscription = self._find(key, params)
        if subscription is None:
            subscription = Subscription(key=key, params=params)
            self._subscriptions.setdefault(key, []).append(subscription)
        return subscription

    def _discard(self, subscription: Subscription) -> None:
        entries = self._subscriptions.get(subscription.key, [])
        for i, entry in enumerate(entries):
            if entry is subscription:
                del entries[i]
                break
        if not entries:
            self._subscriptions.pop(subscription.key, None)

    def query(
        self,
        state: Any,
        key: str,
        params: Sequence[Any] = (),
        on_error: QueryErrorFn | None = None,
    ) -> Any:
        """Return the result of a subscription against the given state."""
        params = tuple(params)
        subscription = self._find(key, params) or Subscription(key=key, params=params)
        return self._compute(state, subscription, on_error)

    def _compute(
        self,
        state: Any,
        subscription: Subscription,
        on_error: QueryErrorFn | None = None,
    ) -> Any:
        key = subscription.key
        config = self._configs.get(key)
        if config is None:
            _LOGGER.error('Subscription "%s" not registered', key)
            return None
        if subscription.has_result and subscription.last_state is state:
            return subscription.last_result

        compute, combine = config.compute, config.combine
        try:
            if config.is_leaf and compute is not None:
                result = compute(state, *subscription.params)
            elif config.is_derived and combine is not None:
                dep_results = [
                    self.query(state, dep, (), on_error) for dep in config.deps or ()
                ]
                result = combine(dep_results, *subscription.params)
            else:
                _LOGGER.error('Invalid subscription config for "%s"', key)
                return None
        except Exception as err:
            self._report(err, key, subscription.params, on_error)
            return subscription.last_result if subscription.has_result else None

        subscription.last_state = state
        subscription.last_result = result
        subscription.has_result = True
        return result

    def _report(
        self,
        error: Exception,
        key: str,
        params: tuple[Any, ...],
        on_error: QueryErrorFn | None,
    ) -> None:
        if on_error is not None:
            on_error(error, key, params)
            return
        if self._error_handler is not None:
            self._error_handler.handle_sync(
                error,
                ErrorContext(
                    event_key=key, payload=params, phase=ErrorPhase.SUBSCRIPTION
                ),
            )
            return
        _LOGGER.error('Error computing subscription "%s": %s', key, error)

    def subscribe(
        self,
        state: Any,
        key: str,
        params: Sequence[Any],
        callback: Listener,
        on_error: QueryErrorFn | None = None,
    ) -> Unsubscribe:
        """Add a listener, call it with the current result and return an unsubscribe."""
        subscription = self.get_subscription(key, params)
        subscription.listeners.append(callback)
        subscription.ref_count += 1

        result = self._compute(state, subscription, on_error)
        subscription.last_delivered = result
        callback(result)

        unsubscribed = False

        def unsubscribe() -> None:
            nonlocal unsubscribed
            if unsubscribed:
                return
            unsubscribed = True
            if callback in subscription.listeners:
                subscription.listeners.remove(callback)
            subscription.ref_count = max(subscription.ref_count - 1, 0)
            if subscription.ref_count == 0 and not subscription.listeners:
                self._discard(subscription)

        return unsubscribe

    def notify_listeners(self, new_state: Any) -> None:
        """Recompute subscriptions with listeners and notify those whose result changed."""
        for entries in list(self._subscriptions.values()):
            for subscription in list(entries):
                if not subscription.listeners:
                    continue
                result = self._compute(new_state, subscription)
                if (
                    subscription.last_delivered is not _UNSET
                    and result == subscription.last_delivered
                ):
                    continue
                subscription.last_delivered = result
                for listener in list(subscription.listeners):
                    try:
                        listener(result)
                    except Exception:
                        _LOGGER.exception(
                            'Error in listener for subscription "%s"', subscription.key
                        )

    def __len__(self) -> int:
        return sum(len(entries) for entries in self._subscriptions.values())
