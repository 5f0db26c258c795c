"""Event tracing and timing utilities."""

import asyncio
from collections.abc import Callable, Generator, Mapping
import contextvars
from contextlib import contextmanager
from dataclasses import dataclass, field
import itertools
import logging
from time import perf_counter, time
from typing import Any

from .config import TracingConfig

_LOGGER = logging.getLogger(__name__)

__all__ = [
    "EffectTrace",
    "EventTrace",
    "Span",
    "Tracer",
    "TraceCallback",
    "trace_span",
]


_trace: contextvars.ContextVar[list[str]] = contextvars.ContextVar("trace")
_trace_ids = itertools.count(1)


@dataclass
class Span:
    """Timing for a block of work, filled in when the block exits."""

    label: str
    duration: float = 0.0


@contextmanager
def trace_span(name: str) -> Generator[Span, None, None]:
    """Time a block of work, nesting its label under any enclosing span."""
    stack = _trace.get([])
    token = _trace.set(stack + [name])
    span = Span(" > ".join(stack + [name]))
    t1 = perf_counter()
    _LOGGER.debug("[Trace] > %s", span.label)
    try:
        yield span
    finally:
        span.duration = perf_counter() - t1
        _trace.reset(token)
        _LOGGER.debug("[Trace] < %s (%0.3fs)", span.label, span.duration)


@dataclass
class EffectTrace:
    """A record of a single effect handler invocation."""

    effect_type: str
    config: Any
    duration: float
    error: BaseException | None = None


@dataclass
class EventTrace:
    """A record of a handled event."""

    event_key: str
    payload: Any
    state_before: Any
    state_after: Any
    effects: Mapping[str, Any]
    effects_executed: list[EffectTrace]
    interceptors: list[str]
    duration: float
    error: BaseException | None = None
    id: int = field(default_factory=lambda: next(_trace_ids))
    timestamp: float = field(default_factory=time)


TraceCallback = Callable[[list[EventTrace]], None]


class Tracer:
    """Buffers event traces and delivers them to callbacks in batches."""

    def __init__(self, config: TracingConfig | None = None) -> None:
        self._config = config or TracingConfig()
        self._callbacks: dict[str, TraceCallback] = {}
        self._buffer: list[EventTrace] = []
        self._timer: asyncio.TimerHandle | None = None

    @property
    def enabled(self) -> bool:
        return self._config.enabled

    def register_trace_callback(self, key: str, callback: TraceCallback) -> None:
        if not self._config.enabled:
            _LOGGER.warning(
                "Tracing is not enabled. Enable it with the tracing option when "
                "creating the store"
            )
        self._callbacks[key] = callback

    def remove_trace_callback(self, key: str) -> None:
        self._callbacks.pop(key, None)

    def emit(self, trace: EventTrace) -> None:
        """Buffer a trace, restarting the debounce timer."""
        if not self._config.enabled:
            return
        self._buffer.append(trace)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._deliver()
            return
        if self._timer is not None:
            self._timer.cancel()
        self._timer = loop.call_later(self._config.debounce_time, self._deliver)

    def _deliver(self) -> None:
        self._timer = None
        traces = self._buffer
        self._buffer = []
        if not traces:
            return
        for key, callback in list(self._callbacks.items()):
            try:
                callback(list(traces))
            except Exception:
                _LOGGER.exception('Error in trace callback "%s"', key)
