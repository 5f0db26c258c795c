"""A table of handlers keyed by kind and id."""

from collections.abc import Callable
from enum import Enum
import logging
from typing import Any

_LOGGER = logging.getLogger(__name__)

__all__ = [
    "HandlerKind",
    "Registrar",
]


class HandlerKind(str, Enum):
    """The kinds of handlers held by the registrar."""

    EVENT = "event"
    EFFECT = "effect"


class Registrar:
    """Stores handlers for events and effects.

    Registering a handler under an existing id replaces it. The previous
    handler is dropped with a warning unless `warn_on_overwrite` is disabled.
    """

    def __init__(self, warn_on_overwrite: bool = True) -> None:
        self._warn_on_overwrite = warn_on_overwrite
        self._handlers: dict[str, dict[str, Any]] = {}

    def register(self, kind: str, id: str, handler: Callable[..., Any]) -> Any:
        """Register a handler and return it."""
        kind = _kind(kind)
        table = self._handlers.setdefault(kind, {})
        if self._warn_on_overwrite and id in table:
            _LOGGER.warning(
                '%s handler for "%s" is being overwritten', kind.capitalize(), id
            )
        table[id] = handler
        return handler

    def get(self, kind: str, id: str) -> Any:
        """Return the handler for the kind and id or None."""
        return self._handlers.get(_kind(kind), {}).get(id)

    def has(self, kind: str, id: str) -> bool:
        return id in self._handlers.get(_kind(kind), {})

    def clear(self, kind: str | None = None, id: str | None = None) -> None:
        """Remove all handlers, the handlers of one kind, or a single handler."""
        if kind is None:
            self._handlers.clear()
            return
        kind = _kind(kind)
        if id is None:
            if kind not in self._handlers:
                _LOGGER.warning('No handlers of kind "%s" to clear', kind)
                return
            del self._handlers[kind]
            return
        table = self._handlers.get(kind, {})
        if id not in table:
            _LOGGER.warning('Can\'t clear %s handler for "%s". Handler not found.', kind, id)
            return
        del table[id]


def _kind(kind: str) -> str:
    if isinstance(kind, HandlerKind):
        return kind.value
    return kind
