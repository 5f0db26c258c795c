"""Interceptors, the context they operate on and the built-in interceptors.

An interceptor is a pair of optional functions. The `before` functions of an
event's chain run left to right with the event handler last, then the
`after` functions run right to left. Each function receives the current
`Context` and returns the next one.
"""

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field, replace
import logging
from typing import Any

_LOGGER = logging.getLogger(__name__)

__all__ = [
    "Context",
    "Interceptor",
    "path",
    "debug",
    "after",
    "inject_cofx",
    "validate",
]

_PATH_STACK = "_path_original_db"


@dataclass(frozen=True)
class Context:
    """The state threaded through an interceptor chain."""

    coeffects: Mapping[str, Any]
    """Inputs to the handler, always including `db` and `event`."""

    effects: Mapping[str, Any] = field(default_factory=dict)
    """The effect map accumulated so far."""

    queue: tuple["Interceptor", ...] = ()
    """Interceptors whose before phase has not run yet."""

    stack: tuple["Interceptor", ...] = ()
    """Interceptors whose before phase has run, most recent last."""

    @property
    def db(self) -> Any:
        return self.coeffects.get("db")

    def with_coeffect(self, key: str, value: Any) -> "Context":
        return replace(self, coeffects={**self.coeffects, key: value})

    def with_effect(self, key: str, value: Any) -> "Context":
        return replace(self, effects={**self.effects, key: value})

    def with_effects(self, effects: Mapping[str, Any]) -> "Context":
        return replace(self, effects={**self.effects, **effects})


InterceptorFn = Callable[[Context], Context]


@dataclass(frozen=True)
class Interceptor:
    """A named pair of before and after functions."""

    id: str | None = None
    before: InterceptorFn | None = None
    after: InterceptorFn | None = None


def _get_in(value: Any, keys: Sequence[Any]) -> Any:
    for key in keys:
        if isinstance(value, Mapping):
            value = value.get(key)
        elif isinstance(value, list) and isinstance(key, int) and -len(value) <= key < len(value):
            value = value[key]
        else:
            return None
    return value


def _assoc_in(value: Any, keys: Sequence[Any], new_value: Any) -> Any:
    """Return a copy of value with new_value at keys, sharing untouched branches."""
    if not keys:
        return new_value
    key, rest = keys[0], keys[1:]
    if isinstance(value, list) and isinstance(key, int):
        copy = list(value)
        copy[key] = _assoc_in(copy[key], rest, new_value)
        return copy
    copy_dict = dict(value) if isinstance(value, Mapping) else {}
    copy_dict[key] = _assoc_in(copy_dict.get(key), rest, new_value)
    return copy_dict


def path(keys: Sequence[Any]) -> Interceptor:
    """Focus the handler on a sub-tree of the state.

    The handler sees only the value at `keys` as its `db` coeffect and a
    returned `db` effect is grafted back into the full state.
    """
    keys = list(keys)

    def _before(context: Context) -> Context:
        original = context.coeffects.get("db")
        saved = [*context.coeffects.get(_PATH_STACK, ()), original]
        return replace(
            context,
            coeffects={
                **context.coeffects,
                _PATH_STACK: saved,
                "db": _get_in(original, keys),
            },
        )

    def _after(context: Context) -> Context:
        saved = list(context.coeffects.get(_PATH_STACK, ()))
        original = saved.pop() if saved else context.coeffects.get("db")
        coeffects = {**context.coeffects, _PATH_STACK: saved, "db": original}
        effects = context.effects
        if "db" in effects:
            effects = {**effects, "db": _assoc_in(original, keys, effects["db"])}
        return replace(context, coeffects=coeffects, effects=effects)

    return Interceptor(
        id=f"path-{'.'.join(str(k) for k in keys)}", before=_before, after=_after
    )


def debug(label: str = "Event") -> Interceptor:
    """Log the coeffects before the handler and the results after it."""

    def _before(context: Context) -> Context:
        _LOGGER.debug("%s > Coeffects: %s", label, dict(context.coeffects))
        return context

    def _after(context: Context) -> Context:
        _LOGGER.debug("%s < New State: %s", label, context.effects.get("db"))
        _LOGGER.debug("%s < Effects: %s", label, dict(context.effects))
        return context

    return Interceptor(id="debug", before=_before, after=_after)


def after(fn: Callable[[Any, Mapping[str, Any]], Any]) -> Interceptor:
    """Call `fn(db, effects)` once the handler has run, for side effects only.

    `db` is the pending state from the `db` effect, or the current state
    when the handler did not produce one.
    """

    def _after(context: Context) -> Context:
        db = context.effects["db"] if "db" in context.effects else context.db
        fn(db, context.effects)
        return context

    return Interceptor(id="after", after=_after)


def inject_cofx(key: str, value: Any) -> Interceptor:
    """Add a coeffect for the interceptors and handler that follow."""

    def _before(context: Context) -> Context:
        return context.with_coeffect(key, value)

    return Interceptor(id=f"inject-{key}", before=_before)


def validate(schema: Callable[[Any], Any]) -> Interceptor:
    """Check the resulting state, logging a failure without blocking the update.

    `schema` returns True for a valid state, anything else is treated as the
    failure description.
    """

    def _after(context: Context) -> Context:
        db = context.effects["db"] if "db" in context.effects else context.db
        result = schema(db)
        if result is not True:
            _LOGGER.error("State validation failed: %s", result)
        return context

    return Interceptor(id="validate", after=_after)
