"""Central reporting for errors raised by user code.

Errors from interceptors, effect handlers and subscription computations are
funnelled through a single `ErrorHandler`. The configured handler is called
with the error, an `ErrorContext` describing where it happened and the
current `ErrorHandlerConfig`.
"""

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from enum import Enum
import inspect
import logging
from typing import Any

from .config import ErrorHandlerConfig

_LOGGER = logging.getLogger(__name__)

__all__ = [
    "ErrorPhase",
    "InterceptorRef",
    "ErrorContext",
    "ErrorHandler",
    "ErrorHandlerFn",
    "default_error_handler",
]


class ErrorPhase(str, Enum):
    """The stage of processing that raised an error."""

    INTERCEPTOR = "interceptor"
    EFFECT = "effect"
    SUBSCRIPTION = "subscription"


@dataclass(frozen=True)
class InterceptorRef:
    """Identifies the interceptor or effect that failed."""

    id: str | None
    direction: str
    """Either "before" or "after"."""


@dataclass(frozen=True)
class ErrorContext:
    """Describes where an error was raised."""

    event_key: str
    payload: Any
    phase: ErrorPhase
    interceptor: InterceptorRef | None = None


ErrorHandlerFn = Callable[
    [BaseException, ErrorContext, ErrorHandlerConfig], Awaitable[None] | None
]


def default_error_handler(
    error: BaseException, context: ErrorContext, config: ErrorHandlerConfig
) -> None:
    """Log the error with a message describing its origin."""
    exc_info = (type(error), error, error.__traceback__)
    if context.phase == ErrorPhase.INTERCEPTOR and context.interceptor is not None:
        _LOGGER.error(
            'Error in %s phase of interceptor "%s" while handling event "%s"',
            context.interceptor.direction,
            context.interceptor.id or "unnamed",
            context.event_key,
            exc_info=exc_info,
        )
    elif context.phase == ErrorPhase.EFFECT and context.interceptor is not None:
        _LOGGER.error(
            'Error executing effect "%s" for event "%s"',
            context.interceptor.id,
            context.event_key,
            exc_info=exc_info,
        )
    elif context.phase == ErrorPhase.SUBSCRIPTION:
        _LOGGER.error(
            'Error in subscription "%s"', context.event_key, exc_info=exc_info
        )
    else:
        _LOGGER.error(
            'Error handling event "%s"', context.event_key, exc_info=exc_info
        )


class ErrorHandler:
    """Holds the active error handler and its configuration."""

    def __init__(
        self,
        handler: ErrorHandlerFn | None = None,
        config: ErrorHandlerConfig | Mapping[str, Any] | None = None,
    ) -> None:
        self._handler: ErrorHandlerFn = handler or default_error_handler
        self._config = ErrorHandlerConfig()
        if config is not None:
            self._merge_config(config)

    @property
    def config(self) -> ErrorHandlerConfig:
        return self._config

    def register(
        self,
        handler: ErrorHandlerFn,
        config: ErrorHandlerConfig | Mapping[str, Any] | None = None,
    ) -> None:
        """Replace the handler, shallow merging any config over the current one."""
        self._handler = handler
        if config is not None:
            self._merge_config(config)

    def _merge_config(self, config: ErrorHandlerConfig | Mapping[str, Any]) -> None:
        if isinstance(config, ErrorHandlerConfig):
            updates = config.to_dict()
        else:
            updates = dict(config)
        self._config = ErrorHandlerConfig.from_dict(
            {**self._config.to_dict(), **updates}
        )

    async def handle(self, error: BaseException, context: ErrorContext) -> None:
        """Report an error, re-raising it afterwards when configured to."""
        try:
            result = self._handler(error, context, self._config)
            if inspect.isawaitable(result):
                await result
        except Exception as handler_error:
            _LOGGER.error("Error in error handler: %s", handler_error)
        if self._config.rethrow:
            raise error

    def handle_sync(self, error: BaseException, context: ErrorContext) -> None:
        """Report an error from synchronous code such as a subscription query."""
        try:
            result = self._handler(error, context, self._config)
            if inspect.isawaitable(result):
                _observe(result)
        except Exception as handler_error:
            _LOGGER.error("Error in error handler: %s", handler_error)
        if self._config.rethrow:
            raise error


def _observe(result: Awaitable[None]) -> None:
    """Run an awaitable returned by an error handler from synchronous code."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        if inspect.iscoroutine(result):
            result.close()
        _LOGGER.warning("Async error handler called without a running event loop")
        return
    future = asyncio.ensure_future(result, loop=loop)

    def _done(fut: asyncio.Future[None]) -> None:
        if not fut.cancelled() and (err := fut.exception()) is not None:
            _LOGGER.error("Error in error handler: %s", err)

    future.add_done_callback(_done)
