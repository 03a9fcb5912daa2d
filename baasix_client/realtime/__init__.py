"""Realtime subscriptions over the Baasix socket endpoint."""

from .channel import RealtimeChannel
from .client import RealtimeClient
from .connection import ConnectionState, RealtimeConnection
from .executions import ExecutionChannelRegistry
from .subscriptions import SubscriptionHandle, SubscriptionRegistry

__all__ = [
    "ConnectionState",
    "ExecutionChannelRegistry",
    "RealtimeChannel",
    "RealtimeClient",
    "RealtimeConnection",
    "SubscriptionHandle",
    "SubscriptionRegistry",
]
