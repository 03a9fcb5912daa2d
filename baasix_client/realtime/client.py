"""Realtime facade: connection, collection subscriptions and execution channels."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from ..config import BaasixConfig
from ..credentials import CredentialStore
from ..transport.socket import RealtimeSocket, SocketFactory
from .channel import RealtimeChannel
from .connection import ConnectionListener, ConnectionState, RealtimeConnection
from .executions import ExecutionCallback, ExecutionChannelRegistry
from .subscriptions import SubscriptionCallback, SubscriptionHandle, SubscriptionRegistry


class RealtimeClient:
    """Entry point for realtime features.

    Usage:
        await realtime.connect()
        unsubscribe = await realtime.subscribe("products", on_change)
        ...
        await unsubscribe()
        await realtime.disconnect()
    """

    def __init__(
        self,
        config: BaasixConfig,
        credentials: CredentialStore,
        *,
        socket_factory: SocketFactory | None = None,
    ) -> None:
        self.connection = RealtimeConnection(
            config, credentials, socket_factory=socket_factory
        )
        self.subscriptions = SubscriptionRegistry(self.connection)
        self.executions = ExecutionChannelRegistry(self.connection)

        self.connection.add_connected_hook(self._on_connected)
        self.connection.add_teardown_hook(self.subscriptions.clear)
        self.connection.add_teardown_hook(self.executions.clear)

    async def _on_connected(self) -> None:
        self.executions.attach()
        await self.subscriptions.replay_all()

    @property
    def is_connected(self) -> bool:
        return self.connection.is_connected

    @property
    def state(self) -> ConnectionState:
        return self.connection.state

    @property
    def socket(self) -> RealtimeSocket | None:
        return self.connection.socket

    def set_socket_factory(self, factory: SocketFactory) -> None:
        self.connection.set_socket_factory(factory)

    def set_socket_url(self, url: str) -> None:
        self.connection.set_socket_url(url)

    async def connect(self) -> None:
        await self.connection.connect()

    async def disconnect(self) -> None:
        await self.connection.disconnect()

    def on_connection_change(self, listener: ConnectionListener) -> Callable[[], None]:
        return self.connection.on_connection_change(listener)

    async def subscribe(
        self, collection: str, callback: SubscriptionCallback
    ) -> SubscriptionHandle:
        return await self.subscriptions.subscribe(collection, callback)

    async def on(
        self,
        collection: str,
        action: str,
        callback: Callable[[Any], Awaitable[None] | None],
    ) -> SubscriptionHandle:
        return await self.subscriptions.on(collection, action, callback)

    async def on_any(
        self, callback: Callable[[str, dict[str, Any]], Awaitable[None] | None]
    ) -> SubscriptionHandle:
        return await self.subscriptions.on_any(callback)

    async def subscribe_to_execution(
        self, execution_id: str | int, callback: ExecutionCallback
    ) -> SubscriptionHandle:
        return await self.executions.subscribe_to_execution(execution_id, callback)

    def channel(self, collection: str) -> RealtimeChannel:
        return RealtimeChannel(self, collection)
