"""Exceptions related to ripplex."""

__all__ = [
    "RipplexException",
    "CircularDependencyError",
    "InterceptorContractError",
    "HandlerResultError",
]


class RipplexException(Exception):
    """Generic base exception used for this library."""


class CircularDependencyError(RipplexException):
    """Raised when a subscription depends on itself through its deps."""

    def __init__(self, key: str, path: list[str]) -> None:
        super().__init__(
            f"Circular dependency detected for subscription {key}: "
            + " -> ".join(path)
        )
        self.key = key
        self.path = path


class InterceptorContractError(RipplexException):
    """Raised when an interceptor phase does not return a Context."""

    def __init__(self, interceptor_id: str, direction: str, value: object) -> None:
        super().__init__(
            f"Interceptor {interceptor_id} returned {type(value).__name__} "
            f"from its {direction} phase instead of a Context"
        )
        self.interceptor_id = interceptor_id
        self.direction = direction


class HandlerResultError(RipplexException):
    """Raised when an fx event handler does not return an effect map."""

    def __init__(self, event_key: str, value: object) -> None:
        super().__init__(
            f"Event handler {event_key} returned {type(value).__name__} "
            "instead of an effect map"
        )
        self.event_key = event_key
