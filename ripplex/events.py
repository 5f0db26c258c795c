"""Event registration and the interceptor chain that handles events."""

from collections.abc import Callable, Mapping, Sequence
from dataclasses import replace
import logging
from typing import Any

from .effects import EffectExecutor, merge_effects
from .error_handler import ErrorContext, ErrorHandler, ErrorPhase, InterceptorRef
from .exceptions import HandlerResultError, InterceptorContractError
from .interceptor import Context, Interceptor
from .registrar import HandlerKind, Registrar
from .state import StateManager
from .tracing import EffectTrace, EventTrace, Tracer, trace_span

_LOGGER = logging.getLogger(__name__)

__all__ = [
    "EventManager",
    "DbHandler",
    "FxHandler",
]

DbHandler = Callable[[Mapping[str, Any], Any], Any]
FxHandler = Callable[[Mapping[str, Any], Any], Mapping[str, Any] | None]

DB_HANDLER_ID = "db-handler"
FX_HANDLER_ID = "fx-handler"
COEFFECTS_ID = "coeffects"


class _PhaseError(Exception):
    """Carries an error raised inside the chain with where it happened."""

    def __init__(self, error: Exception, interceptor_id: str | None, direction: str) -> None:
        super().__init__(str(error))
        self.error = error
        self.ref = InterceptorRef(interceptor_id, direction)


def _db_handler_interceptor(handler: DbHandler) -> Interceptor:
    def _before(context: Context) -> Context:
        new_state = handler(context.coeffects, context.coeffects.get("event"))
        return context.with_effect("db", new_state)

    return Interceptor(id=DB_HANDLER_ID, before=_before)


def _fx_handler_interceptor(event_key: str, handler: FxHandler) -> Interceptor:
    def _before(context: Context) -> Context:
        effects = handler(context.coeffects, context.coeffects.get("event"))
        if effects is None:
            effects = {}
        if not isinstance(effects, Mapping):
            raise HandlerResultError(event_key, effects)
        return replace(context, effects=merge_effects(context.effects, effects))

    return Interceptor(id=FX_HANDLER_ID, before=_before)


def _call(interceptor: Interceptor, direction: str, context: Context) -> Context:
    fn = interceptor.before if direction == "before" else interceptor.after
    if fn is None:
        return context
    try:
        result = fn(context)
        if not isinstance(result, Context):
            raise InterceptorContractError(interceptor.id or "unnamed", direction, result)
    except Exception as err:
        raise _PhaseError(err, interceptor.id, direction) from err
    return result


def run_chain(context: Context) -> Context:
    """Run the before phase of the queue then the after phase of the stack."""
    while context.queue:
        interceptor = context.queue[0]
        context = replace(
            context, queue=context.queue[1:], stack=(*context.stack, interceptor)
        )
        context = _call(interceptor, "before", context)
    while context.stack:
        interceptor = context.stack[-1]
        context = replace(context, stack=context.stack[:-1])
        context = _call(interceptor, "after", context)
    return context


class EventManager:
    """Registers event handlers and processes events through their chains."""

    def __init__(
        self,
        registrar: Registrar,
        state_manager: StateManager,
        effect_executor: EffectExecutor,
        error_handler: ErrorHandler,
        tracer: Tracer | None = None,
        coeffect_providers: Mapping[str, Callable[[], Any]] | None = None,
    ) -> None:
        self._registrar = registrar
        self._state_manager = state_manager
        self._effect_executor = effect_executor
        self._error_handler = error_handler
        self._tracer = tracer
        self._coeffect_providers = dict(coeffect_providers or {})

    def register_event_db(
        self,
        event_key: str,
        handler: DbHandler,
        interceptors: Sequence[Interceptor] | None = None,
    ) -> None:
        """Register a handler that returns the next state."""
        self._register(event_key, _db_handler_interceptor(handler), interceptors)

    def register_event(
        self,
        event_key: str,
        handler: FxHandler,
        interceptors: Sequence[Interceptor] | None = None,
    ) -> None:
        """Register a handler that returns an effect map."""
        self._register(
            event_key, _fx_handler_interceptor(event_key, handler), interceptors
        )

    def _register(
        self,
        event_key: str,
        handler: Interceptor,
        interceptors: Sequence[Interceptor] | None,
    ) -> None:
        chain = [*(interceptors or ()), handler]
        self._registrar.register(HandlerKind.EVENT, event_key, chain)

    def deregister_event(self, event_key: str) -> None:
        self._registrar.clear(HandlerKind.EVENT, event_key)

    def get_interceptors(self, event_key: str) -> list[Interceptor] | None:
        """Return the full chain for an event, including its handler."""
        chain = self._registrar.get(HandlerKind.EVENT, event_key)
        if chain is None:
            return None
        return list(chain)

    def _coeffects(self, payload: Any) -> dict[str, Any]:
        coeffects: dict[str, Any] = {}
        for key, provider in self._coeffect_providers.items():
            try:
                coeffects[key] = provider()
            except Exception as err:
                raise _PhaseError(err, COEFFECTS_ID, "before") from err
        return {**coeffects, "db": self._state_manager.get_state(), "event": payload}

    async def handle_event(self, event_key: str, payload: Any) -> None:
        """Process one event from coeffects through to executed effects."""
        chain = self._registrar.get(HandlerKind.EVENT, event_key)
        if chain is None:
            _LOGGER.warning('No handler registered for event "%s"', event_key)
            return

        state_before = self._state_manager.get_state()
        effects: Mapping[str, Any] = {}
        effects_executed: list[EffectTrace] = []
        failure: _PhaseError | None = None
        with trace_span(f"event {event_key}") as span:
            try:
                context = run_chain(
                    Context(coeffects=self._coeffects(payload), queue=tuple(chain))
                )
            except _PhaseError as err:
                failure = err
            else:
                effects = context.effects
                await self._effect_executor.execute(
                    effects, event_key, payload, effects_executed
                )

        if self._tracer is not None and self._tracer.enabled:
            self._tracer.emit(
                EventTrace(
                    event_key=event_key,
                    payload=payload,
                    state_before=state_before,
                    state_after=self._state_manager.get_state(),
                    effects=dict(effects),
                    effects_executed=effects_executed,
                    interceptors=[i.id or "unnamed" for i in chain],
                    duration=span.duration,
                    error=failure.error if failure else None,
                )
            )

        if failure is not None:
            await self._error_handler.handle(
                failure.error,
                ErrorContext(
                    event_key=event_key,
                    payload=payload,
                    phase=ErrorPhase.INTERCEPTOR,
                    interceptor=failure.ref,
                ),
            )
