"""Ref-counted collection subscriptions that survive reconnects."""

from __future__ import annotations

import itertools
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from ..callbacks import invoke_callback
from ..errors import BaasixClientError
from ..transport.socket import Handler, RealtimeSocket
from .connection import RealtimeConnection

_LOGGER = logging.getLogger(__name__)

SUBSCRIPTION_ACTIONS = ("create", "update", "delete")

SubscriptionCallback = Callable[[dict[str, Any]], Awaitable[None] | None]


class SubscriptionHandle:
    """Awaitable remover returned by ``subscribe``; calling it twice is a no-op."""

    def __init__(self, remove: Callable[[], Awaitable[None]]) -> None:
        self._remove: Callable[[], Awaitable[None]] | None = remove

    @property
    def active(self) -> bool:
        return self._remove is not None

    async def __call__(self) -> None:
        remove, self._remove = self._remove, None
        if remove is not None:
            await remove()


@dataclass
class _Subscription:
    collection: str
    callbacks: dict[int, SubscriptionCallback] = field(default_factory=dict)


@dataclass
class _Listeners:
    socket: RealtimeSocket
    handlers: list[tuple[str, Handler]]


class SubscriptionRegistry:
    """Map collections to application callbacks and keep the server in sync.

    The first callback for a collection sends ``subscribe`` and attaches the
    ``{collection}:{action}`` listeners; the last removal sends
    ``unsubscribe`` and detaches them. ``replay_all`` re-sends every
    ``subscribe`` after a new handshake without touching the callbacks.
    """

    def __init__(self, connection: RealtimeConnection) -> None:
        self._connection = connection
        self._subscriptions: dict[str, _Subscription] = {}
        self._listeners: dict[str, _Listeners] = {}
        self._keys = itertools.count(1)

    @property
    def collections(self) -> list[str]:
        return list(self._subscriptions)

    def callback_count(self, collection: str) -> int:
        subscription = self._subscriptions.get(collection)
        return len(subscription.callbacks) if subscription else 0

    async def subscribe(
        self, collection: str, callback: SubscriptionCallback
    ) -> SubscriptionHandle:
        """Register ``callback`` for every change event on ``collection``."""
        if not self._connection.is_connected:
            _LOGGER.warning(
                "Subscribing to %s while not connected; it is sent on connect", collection
            )

        subscription = self._subscriptions.get(collection)
        first = subscription is None
        if subscription is None:
            subscription = _Subscription(collection)
            self._subscriptions[collection] = subscription
            self._attach(collection)

        # Registered before the first await so a concurrent removal cannot
        # empty the record.
        key = next(self._keys)
        subscription.callbacks[key] = callback
        _LOGGER.debug("Subscribed callback %d to %s", key, collection)
        if first:
            await self._send_subscribe(collection)

        async def remove() -> None:
            await self._remove(collection, key)

        return SubscriptionHandle(remove)

    async def on(
        self,
        collection: str,
        action: str,
        callback: Callable[[Any], Awaitable[None] | None],
    ) -> SubscriptionHandle:
        """Subscribe to one action; ``callback`` receives only ``payload["data"]``."""

        async def filtered(payload: dict[str, Any]) -> None:
            if payload.get("action") == action:
                await invoke_callback(
                    callback, payload.get("data"), description="Subscription callback"
                )

        return await self.subscribe(collection, filtered)

    async def on_any(
        self, callback: Callable[[str, dict[str, Any]], Awaitable[None] | None]
    ) -> SubscriptionHandle:
        """Listen on every collection subscribed right now.

        ``callback(collection, payload)``; collections subscribed later are not
        included.
        """
        handles: list[SubscriptionHandle] = []
        for collection in self.collections:

            async def forward(payload: dict[str, Any], collection: str = collection) -> None:
                await invoke_callback(
                    callback, collection, payload, description="Subscription callback"
                )

            handles.append(await self.subscribe(collection, forward))

        async def remove_all() -> None:
            for handle in handles:
                await handle()

        return SubscriptionHandle(remove_all)

    async def _remove(self, collection: str, key: int) -> None:
        subscription = self._subscriptions.get(collection)
        if subscription is None or subscription.callbacks.pop(key, None) is None:
            return
        _LOGGER.debug("Removed callback %d from %s", key, collection)
        if subscription.callbacks:
            return

        del self._subscriptions[collection]
        self._detach(collection)
        await self._emit("unsubscribe", {"collection": collection})

    async def replay_all(self) -> None:
        """Re-send ``subscribe`` and re-attach listeners for every collection."""
        if self._subscriptions:
            _LOGGER.info("Resubscribing to %d collection(s)", len(self._subscriptions))
        for collection in list(self._subscriptions):
            if collection not in self._subscriptions:
                continue
            self._attach(collection)
            await self._send_subscribe(collection)

    def clear(self) -> None:
        """Drop every record without telling the server."""
        for collection in list(self._listeners):
            self._detach(collection)
        self._subscriptions.clear()

    # -------------------------------------------------------------------------
    # Internal: server intents
    # -------------------------------------------------------------------------

    async def _send_subscribe(self, collection: str) -> None:
        def on_ack(response: Any) -> None:
            if isinstance(response, dict) and response.get("status") == "error":
                _LOGGER.warning(
                    "Failed to subscribe to %s: %s", collection, response.get("message")
                )

        await self._emit("subscribe", {"collection": collection}, ack=on_ack)

    async def _emit(self, event: str, data: dict[str, Any], **kwargs: Any) -> None:
        socket = self._connection.socket
        if socket is None or not self._connection.is_connected:
            return
        try:
            await socket.emit(event, data, **kwargs)
        except BaasixClientError as err:
            _LOGGER.warning("Could not send %s for %s: %s", event, data, err)

    # -------------------------------------------------------------------------
    # Internal: transport listeners
    # -------------------------------------------------------------------------

    def _attach(self, collection: str) -> None:
        self._detach(collection)
        socket = self._connection.socket
        if socket is None:
            return

        async def handler(payload: Any) -> None:
            await self._dispatch(collection, payload)

        handlers = [(f"{collection}:{action}", handler) for action in SUBSCRIPTION_ACTIONS]
        for event, fn in handlers:
            socket.on(event, fn)
        self._listeners[collection] = _Listeners(socket, handlers)

    def _detach(self, collection: str) -> None:
        listeners = self._listeners.pop(collection, None)
        if listeners is None:
            return
        for event, fn in listeners.handlers:
            listeners.socket.off(event, fn)

    async def _dispatch(self, collection: str, payload: Any) -> None:
        subscription = self._subscriptions.get(collection)
        if subscription is None:
            return
        for callback in list(subscription.callbacks.values()):
            await invoke_callback(callback, payload, description="Subscription callback")
