"""ripplex is an event driven state store.

Events are handled by a chain of interceptors ending in a handler that
returns either the next state or a map of effects. State changes are
published to memoized subscriptions.
"""

from .config import ErrorHandlerConfig, StoreConfig, TracingConfig
from .effects import Effect, EffectDeps, merge_effects
from .error_handler import ErrorContext, ErrorPhase, InterceptorRef
from .exceptions import (
    CircularDependencyError,
    HandlerResultError,
    InterceptorContractError,
    RipplexException,
)
from .interceptor import Context, Interceptor, after, debug, inject_cofx, path, validate
from .scheduler import FrameScheduler, ManualScheduler, Scheduler
from .store import Store, create_store
from .subscription import Subscription, SubscriptionConfig
from .tracing import EffectTrace, EventTrace

__all__ = [
    "CircularDependencyError",
    "Context",
    "Effect",
    "EffectDeps",
    "EffectTrace",
    "ErrorContext",
    "ErrorHandlerConfig",
    "ErrorPhase",
    "EventTrace",
    "FrameScheduler",
    "HandlerResultError",
    "Interceptor",
    "InterceptorContractError",
    "InterceptorRef",
    "ManualScheduler",
    "RipplexException",
    "Scheduler",
    "Store",
    "StoreConfig",
    "Subscription",
    "SubscriptionConfig",
    "TracingConfig",
    "after",
    "create_store",
    "debug",
    "inject_cofx",
    "merge_effects",
    "path",
    "validate",
]
