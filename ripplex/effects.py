"""Effect execution, the built-in effects and effect map merging."""

import asyncio
from collections.abc import Awaitable, Callable, Mapping, Sequence
import contextvars
from dataclasses import dataclass
from enum import Enum
import inspect
import logging
from typing import Any

from .error_handler import ErrorContext, ErrorHandler, ErrorPhase, InterceptorRef
from .registrar import HandlerKind, Registrar
from .state import StateManager
from .task import TaskService
from .tracing import EffectTrace, trace_span

_LOGGER = logging.getLogger(__name__)

__all__ = [
    "Effect",
    "EffectDeps",
    "EffectExecutor",
    "EffectHandler",
    "merge_effects",
]


class Effect(str, Enum):
    """Keys of the built-in effects."""

    DB = "db"
    DISPATCH = "dispatch"
    DISPATCH_N = "dispatch-n"
    DISPATCH_LATER = "dispatch-later"
    FX = "fx"
    DEREGISTER_EVENT_HANDLER = "deregister-event-handler"


DispatchFn = Callable[[str, Any], "asyncio.Future[None]"]


@dataclass(frozen=True)
class EffectDeps:
    """Store internals made available to every effect handler."""

    registrar: Registrar
    state_manager: StateManager
    error_handler: ErrorHandler
    dispatch: DispatchFn
    deregister_event: Callable[[str], None]
    register_effect: Callable[[str, "EffectHandler"], None]
    task_service: TaskService


EffectHandler = Callable[[Any, EffectDeps], Awaitable[None] | None]


@dataclass(frozen=True)
class _Execution:
    event_key: str
    payload: Any
    effects_executed: list[EffectTrace] | None


_current: contextvars.ContextVar[_Execution] = contextvars.ContextVar("effect_execution")


_LIST_KEYS = (Effect.DISPATCH_N.value, Effect.DISPATCH_LATER.value, Effect.FX.value)


def merge_effects(*effect_maps: Mapping[str, Any] | None) -> dict[str, Any]:
    """Merge effect maps left to right into a new map.

    List valued effects (`dispatch-n`, `dispatch-later`, `fx`) are
    concatenated in order, `deregister-event-handler` values are flattened
    into a single list and every other key takes the last value seen.
    Malformed values are kept as given so the effect handler can reject them.
    """
    result: dict[str, Any] = {}
    for effects in effect_maps:
        if not effects:
            continue
        for key, value in effects.items():
            if key in _LIST_KEYS:
                result[key] = _concat(result.get(key), value)
            elif key == Effect.DEREGISTER_EVENT_HANDLER.value:
                if isinstance(value, str):
                    value = [value]
                result[key] = _concat(result.get(key), value)
            else:
                result[key] = value
    return result


def _concat(previous: Any, value: Any) -> Any:
    if value is None:
        return previous if isinstance(previous, list) else None
    if not isinstance(value, list):
        return value
    if isinstance(previous, list):
        return [*previous, *value]
    return list(value)


class EffectExecutor:
    """Runs the effect map produced by an event handler.

    The `db` effect runs first, then every other effect except `fx`
    concurrently, then the `fx` sequence. A failing effect is reported to
    the error handler and does not stop the others.
    """

    def __init__(
        self,
        registrar: Registrar,
        state_manager: StateManager,
        error_handler: ErrorHandler,
        dispatch: DispatchFn,
        deregister_event: Callable[[str], None],
        register_effect: Callable[[str, EffectHandler], None],
        task_service: TaskService,
    ) -> None:
        self._registrar = registrar
        self._error_handler = error_handler
        self._deps = EffectDeps(
            registrar=registrar,
            state_manager=state_manager,
            error_handler=error_handler,
            dispatch=dispatch,
            deregister_event=deregister_event,
            register_effect=register_effect,
            task_service=task_service,
        )

    @property
    def deps(self) -> EffectDeps:
        return self._deps

    def builtin_effects(self) -> dict[Effect, EffectHandler]:
        """Return the handlers for the built-in effects."""
        return {
            Effect.DB: _db_effect,
            Effect.DISPATCH: _dispatch_effect,
            Effect.DISPATCH_N: _dispatch_n_effect,
            Effect.DISPATCH_LATER: _dispatch_later_effect,
            Effect.FX: self._fx_effect,
            Effect.DEREGISTER_EVENT_HANDLER: _deregister_event_handler_effect,
        }

    async def execute(
        self,
        effects: Mapping[str, Any],
        event_key: str,
        payload: Any,
        effects_executed: list[EffectTrace] | None = None,
    ) -> None:
        """Execute an effect map on behalf of an event."""
        token = _current.set(_Execution(event_key, payload, effects_executed))
        try:
            if Effect.DB.value in effects:
                await self._run(Effect.DB.value, effects[Effect.DB.value])

            concurrent = [
                self._run(key, config)
                for key, config in effects.items()
                if key not in (Effect.DB.value, Effect.FX.value) and config is not None
            ]
            if concurrent:
                await asyncio.gather(*concurrent)

            if effects.get(Effect.FX.value) is not None:
                await self._run(Effect.FX.value, effects[Effect.FX.value])
        finally:
            _current.reset(token)

    async def _run(self, effect_type: str, config: Any) -> None:
        handler = self._registrar.get(HandlerKind.EFFECT, effect_type)
        if handler is None:
            _LOGGER.warning('No effect handler registered for "%s"', effect_type)
            return
        execution = _current.get()
        error: BaseException | None = None
        with trace_span(f"effect {effect_type}") as span:
            try:
                result = handler(config, self._deps)
                if inspect.isawaitable(result):
                    await result
            except Exception as err:
                error = err
        if execution.effects_executed is not None:
            execution.effects_executed.append(
                EffectTrace(effect_type, config, span.duration, error)
            )
        if error is not None:
            await self._error_handler.handle(
                error,
                ErrorContext(
                    event_key=execution.event_key,
                    payload=execution.payload,
                    phase=ErrorPhase.EFFECT,
                    interceptor=InterceptorRef(effect_type, "after"),
                ),
            )

    async def _fx_effect(self, config: Any, deps: EffectDeps) -> None:
        if not isinstance(config, Sequence) or isinstance(config, str):
            _LOGGER.warning(
                '":fx" effect expects an array of effect tuples, but was given %r',
                config,
            )
            return
        for entry in config:
            if entry is None:
                continue
            if (
                not isinstance(entry, Sequence)
                or isinstance(entry, str)
                or len(entry) != 2
                or not isinstance(entry[0], str)
            ):
                _LOGGER.warning('":fx" effect expects (effect, config) tuples, got %r', entry)
                continue
            effect_type, effect_config = entry
            if effect_type == Effect.DB.value:
                _LOGGER.warning(
                    '":fx" effect should not contain a :db effect. Use a top level :db effect instead'
                )
            if not self._registrar.has(HandlerKind.EFFECT, effect_type):
                _LOGGER.warning(
                    'in ":fx" effect found "%s" which has no associated handler. Ignoring.',
                    effect_type,
                )
                continue
            await self._run(effect_type, effect_config)


def _observe_dispatch(event_key: str, future: "asyncio.Future[None]") -> None:
    """Log the failure of an event dispatched by an effect."""

    def _done(fut: "asyncio.Future[None]") -> None:
        if fut.cancelled():
            return
        if (err := fut.exception()) is not None:
            _LOGGER.error('Event "%s" dispatched by an effect failed: %s', event_key, err)

    future.add_done_callback(_done)


def _dispatch_one(deps: EffectDeps, event_key: str, payload: Any) -> None:
    _observe_dispatch(event_key, deps.dispatch(event_key, payload))


def _is_dispatch(value: Any) -> bool:
    return isinstance(value, Mapping) and isinstance(value.get("event"), str)


def _db_effect(config: Any, deps: EffectDeps) -> None:
    deps.state_manager.set_state(config)


def _dispatch_effect(config: Any, deps: EffectDeps) -> None:
    if not _is_dispatch(config):
        _LOGGER.error(
            'ignoring bad :dispatch value. Expected {"event": str, "payload": any}, but got: %r',
            config,
        )
        return
    _dispatch_one(deps, config["event"], config.get("payload"))


def _dispatch_n_effect(config: Any, deps: EffectDeps) -> None:
    if not isinstance(config, list):
        _LOGGER.error(
            "ignoring bad :dispatch-n value. Expected a list, but got: %r", config
        )
        return
    for entry in config:
        if entry is None:
            continue
        if not _is_dispatch(entry):
            _LOGGER.error("ignoring bad :dispatch-n entry: %r", entry)
            continue
        _dispatch_one(deps, entry["event"], entry.get("payload"))


async def _dispatch_after(
    deps: EffectDeps, delay: float, event_key: str, payload: Any
) -> None:
    await asyncio.sleep(delay)
    _dispatch_one(deps, event_key, payload)


def _dispatch_later_effect(config: Any, deps: EffectDeps) -> None:
    if not isinstance(config, list):
        _LOGGER.error(
            "ignoring bad :dispatch-later value. Expected a list, but got: %r", config
        )
        return
    for entry in config:
        if entry is None:
            continue
        ms = entry.get("ms") if isinstance(entry, Mapping) else None
        if (
            not _is_dispatch(entry)
            or not isinstance(ms, (int, float))
            or isinstance(ms, bool)
        ):
            _LOGGER.error("ignoring bad :dispatch-later entry: %r", entry)
            continue
        deps.task_service.create_task(
            _dispatch_after(deps, max(ms, 0) / 1000, entry["event"], entry.get("payload")),
            name=f"dispatch-later-{entry['event']}",
        )


def _deregister_event_handler_effect(config: Any, deps: EffectDeps) -> None:
    if isinstance(config, str):
        deps.deregister_event(config)
        return
    if not isinstance(config, list):
        _LOGGER.error(
            "ignoring bad :deregister-event-handler value. Expected a string or list, but got: %r",
            config,
        )
        return
    for event_key in config:
        if isinstance(event_key, str):
            deps.deregister_event(event_key)
