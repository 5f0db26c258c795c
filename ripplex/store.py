"""The public store API.

A store wires the state manager, registrar, router, event manager, effect
executor, subscriptions and tracer together. Create one with `create_store`.
"""

import asyncio
from collections.abc import Callable, Mapping, Sequence
import logging
from typing import Any

from .config import ErrorHandlerConfig, StoreConfig, TracingConfig
from .effects import EffectExecutor, EffectHandler
from .error_handler import ErrorHandler, ErrorHandlerFn
from .events import DbHandler, EventManager, FxHandler
from .interceptor import Interceptor
from .registrar import HandlerKind, Registrar
from .router import Router
from .scheduler import Scheduler
from .state import StateManager
from .subscription import Subscription, SubscriptionConfig, SubscriptionManager
from .task import TaskService, TaskServiceImpl
from .tracing import TraceCallback, Tracer

_LOGGER = logging.getLogger(__name__)

__all__ = [
    "Store",
    "create_store",
]


class Store:
    """An event driven store holding a single state tree."""

    def __init__(
        self, config: StoreConfig, task_service: TaskService | None = None
    ) -> None:
        self._config = config
        self._task_service = task_service or TaskServiceImpl()
        self._registrar = Registrar()
        self._error_handler = ErrorHandler(
            config.error_handler, config.error_handler_config
        )
        self._tracer = Tracer(config.tracing)
        self._state_manager = StateManager(
            config.initial_state,
            on_state_change=config.on_state_change,
            scheduler=config.scheduler,
        )
        self._subscriptions = SubscriptionManager(
            self._state_manager, self._error_handler
        )
        self._state_manager.set_subscription_callback(
            self._subscriptions.notify_listeners
        )
        self._router = Router(self._handle_event, self._task_service)
        self._effect_executor = EffectExecutor(
            registrar=self._registrar,
            state_manager=self._state_manager,
            error_handler=self._error_handler,
            dispatch=self.dispatch,
            deregister_event=self.deregister_event,
            register_effect=self.register_effect,
            task_service=self._task_service,
        )
        self._event_manager = EventManager(
            registrar=self._registrar,
            state_manager=self._state_manager,
            effect_executor=self._effect_executor,
            error_handler=self._error_handler,
            tracer=self._tracer,
            coeffect_providers=config.coeffects,
        )
        for effect, handler in self._effect_executor.builtin_effects().items():
            self.register_effect(effect.value, handler)
        _LOGGER.debug(
            "Created store (tracing=%s, rethrow=%s, coeffects=%s)",
            config.tracing.enabled,
            config.error_handler_config.rethrow,
            sorted(config.coeffects),
        )

    @property
    def task_service(self) -> TaskService:
        return self._task_service

    async def _handle_event(self, event_key: str, payload: Any) -> None:
        await self._event_manager.handle_event(event_key, payload)

    def get_state(self) -> Any:
        """Return the current state."""
        return self._state_manager.get_state()

    def dispatch(self, event_key: str, payload: Any = None) -> "asyncio.Future[None]":
        """Queue an event, returning a future resolved once it has been handled."""
        return self._router.dispatch(event_key, payload)

    async def flush(self) -> None:
        """Wait for all queued events to be handled."""
        await self._router.flush()

    def register_event_db(
        self,
        event_key: str,
        handler: DbHandler,
        interceptors: Sequence[Interceptor] | None = None,
    ) -> None:
        self._event_manager.register_event_db(event_key, handler, interceptors)

    def register_event(
        self,
        event_key: str,
        handler: FxHandler,
        interceptors: Sequence[Interceptor] | None = None,
    ) -> None:
        self._event_manager.register_event(event_key, handler, interceptors)

    def deregister_event(self, event_key: str) -> None:
        self._event_manager.deregister_event(event_key)

    def register_effect(self, effect_type: str, handler: EffectHandler) -> None:
        self._registrar.register(HandlerKind.EFFECT, effect_type, handler)

    def register_subscription(
        self, key: str, config: SubscriptionConfig | Mapping[str, Any]
    ) -> None:
        self._subscriptions.register_subscription(key, config)

    def subscribe(
        self, key: str, params: Sequence[Any], callback: Callable[[Any], None]
    ) -> Callable[[], None]:
        return self._subscriptions.subscribe(key, params, callback)

    def query(self, key: str, params: Sequence[Any] = ()) -> Any:
        return self._subscriptions.query(key, params)

    def get_subscription(self, key: str, params: Sequence[Any] = ()) -> Subscription:
        return self._subscriptions.get_subscription(key, params)

    def register_error_handler(
        self,
        handler: ErrorHandlerFn,
        config: ErrorHandlerConfig | Mapping[str, Any] | None = None,
    ) -> None:
        self._error_handler.register(handler, config)

    def get_interceptors(self, event_key: str) -> list[Interceptor] | None:
        return self._event_manager.get_interceptors(event_key)

    def register_trace_callback(self, key: str, callback: TraceCallback) -> None:
        self._tracer.register_trace_callback(key, callback)

    def remove_trace_callback(self, key: str) -> None:
        self._tracer.remove_trace_callback(key)


def create_store(
    initial_state: Any = None,
    *,
    coeffects: Mapping[str, Callable[[], Any]] | None = None,
    on_state_change: Callable[[Any], None] | None = None,
    error_handler: ErrorHandlerFn | None = None,
    rethrow: bool = False,
    tracing: TracingConfig | Mapping[str, Any] | None = None,
    scheduler: Scheduler | None = None,
) -> Store:
    """Create a new store."""
    return Store(
        StoreConfig(
            initial_state=initial_state,
            coeffects=dict(coeffects or {}),
            on_state_change=on_state_change,
            error_handler=error_handler,
            error_handler_config=ErrorHandlerConfig(rethrow=rethrow),
            tracing=tracing,  # type: ignore[arg-type]
            scheduler=scheduler,
        )
    )
