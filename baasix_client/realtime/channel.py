"""Chainable per-collection channel."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from ..callbacks import invoke_callback
from .subscriptions import SUBSCRIPTION_ACTIONS, SubscriptionHandle

if TYPE_CHECKING:
    from .client import RealtimeClient

ChannelHandler = Callable[[dict[str, Any]], Awaitable[None] | None]

_EVENT_ACTIONS = {"INSERT": "create", "UPDATE": "update", "DELETE": "delete"}


class RealtimeChannel:
    """Group handlers for one collection under a single subscription.

    Usage:
        channel = await (
            realtime.channel("products")
            .on("INSERT", on_insert)
            .on("*", on_any)
            .subscribe()
        )
        await channel.unsubscribe()
    """

    def __init__(self, realtime: RealtimeClient, collection: str) -> None:
        self._realtime = realtime
        self._collection = collection
        self._handlers: dict[str, list[ChannelHandler]] = {}
        self._handle: SubscriptionHandle | None = None

    @property
    def collection(self) -> str:
        return self._collection

    @property
    def subscribed(self) -> bool:
        return self._handle is not None and self._handle.active

    def on(self, event: str, handler: ChannelHandler) -> RealtimeChannel:
        """Add ``handler`` for ``INSERT``, ``UPDATE``, ``DELETE`` or ``*``."""
        action = _EVENT_ACTIONS.get(event.upper())
        actions = (action,) if action else SUBSCRIPTION_ACTIONS
        for name in actions:
            self._handlers.setdefault(name, []).append(handler)
        return self

    async def subscribe(self) -> RealtimeChannel:
        if self._handle is None:
            self._handle = await self._realtime.subscribe(self._collection, self._dispatch)
        return self

    async def unsubscribe(self) -> None:
        handle, self._handle = self._handle, None
        if handle is not None:
            await handle()
        self._handlers.clear()

    async def _dispatch(self, payload: dict[str, Any]) -> None:
        for handler in list(self._handlers.get(payload.get("action", ""), ())):
            await invoke_callback(handler, payload, description="Channel handler")
