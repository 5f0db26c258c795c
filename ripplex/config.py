"""Configuration options for a ripplex store."""

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, TYPE_CHECKING

from mashumaro import DataClassDictMixin
from mashumaro.config import BaseConfig

if TYPE_CHECKING:
    from .scheduler import Scheduler


__all__ = [
    "ErrorHandlerConfig",
    "TracingConfig",
    "StoreConfig",
]


@dataclass
class ErrorHandlerConfig(DataClassDictMixin):
    """Options that control how reported errors are treated."""

    rethrow: bool = False
    """Re-raise the original error after the error handler has run."""

    class Config(BaseConfig):
        omit_none = True


@dataclass
class TracingConfig(DataClassDictMixin):
    """Options for event tracing."""

    enabled: bool = False
    """Record an EventTrace for every handled event."""

    debounce_time: float = 0.05
    """Seconds of quiet before buffered traces are delivered."""

    class Config(BaseConfig):
        omit_none = True


def _as_config(value: Any, cls: type[Any]) -> Any:
    if value is None:
        return cls()
    if isinstance(value, cls):
        return value
    if isinstance(value, Mapping):
        return cls.from_dict(dict(value))
    raise ValueError(f"Expected {cls.__name__} or mapping, got {type(value).__name__}")


@dataclass
class StoreConfig:
    """All of the options used when creating a store."""

    initial_state: Any = None
    """Initial state tree."""

    coeffects: Mapping[str, Callable[[], Any]] = field(default_factory=dict)
    """Providers called fresh on every event to build injected coeffects."""

    on_state_change: Callable[[Any], None] | None = None
    """Called with the latest state once per batched notification."""

    error_handler: Callable[..., Any] | None = None
    """Replaces the default logging error handler."""

    error_handler_config: ErrorHandlerConfig = field(
        default_factory=ErrorHandlerConfig
    )

    tracing: TracingConfig = field(default_factory=TracingConfig)

    scheduler: "Scheduler | None" = None
    """Notification scheduler, defaults to a FrameScheduler."""

    def __post_init__(self) -> None:
        self.error_handler_config = _as_config(
            self.error_handler_config, ErrorHandlerConfig
        )
        self.tracing = _as_config(self.tracing, TracingConfig)
