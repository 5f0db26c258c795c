"""Memoized, dependency aware subscriptions."""

from .manager import SubscriptionManager
from .registry import Subscription, SubscriptionConfig, SubscriptionRegistry

__all__ = [
    "Subscription",
    "SubscriptionConfig",
    "SubscriptionManager",
    "SubscriptionRegistry",
]
