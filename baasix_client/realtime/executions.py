"""Workflow execution channels.

Joining an execution room is fire-and-forget: the join is sent once, only
when connected, and never repeated after a reconnect. Removing the last
callback does not leave the room; the server drops it with the connection.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from ..callbacks import invoke_callback
from ..errors import BaasixClientError
from ..transport.socket import RealtimeSocket
from .connection import RealtimeConnection
from .subscriptions import SubscriptionHandle

_LOGGER = logging.getLogger(__name__)

EXECUTION_JOIN = "workflow:execution:join"
EXECUTION_UPDATE = "workflow:execution:update"
EXECUTION_COMPLETE = "workflow:execution:complete"

ExecutionCallback = Callable[[dict[str, Any]], Awaitable[None] | None]


class ExecutionChannelRegistry:
    """Route workflow execution updates to per-execution callbacks."""

    def __init__(self, connection: RealtimeConnection) -> None:
        self._connection = connection
        self._channels: dict[str, list[ExecutionCallback]] = {}
        self._socket: RealtimeSocket | None = None

    @property
    def execution_ids(self) -> list[str]:
        return list(self._channels)

    async def subscribe_to_execution(
        self, execution_id: str | int, callback: ExecutionCallback
    ) -> SubscriptionHandle:
        """Receive update and completion events for one execution."""
        key = str(execution_id)
        socket = self._connection.socket
        if socket is not None and self._connection.is_connected:
            try:
                await socket.emit(EXECUTION_JOIN, {"executionId": key})
            except BaasixClientError as err:
                _LOGGER.warning("Could not join execution %s: %s", key, err)

        self._channels.setdefault(key, []).append(callback)

        async def remove() -> None:
            callbacks = self._channels.get(key)
            if callbacks is None or callback not in callbacks:
                return
            callbacks.remove(callback)
            if not callbacks:
                del self._channels[key]

        return SubscriptionHandle(remove)

    def attach(self) -> None:
        """Bind the two execution listeners to the current socket."""
        self.detach()
        socket = self._connection.socket
        if socket is None:
            return
        socket.on(EXECUTION_UPDATE, self._on_update)
        socket.on(EXECUTION_COMPLETE, self._on_complete)
        self._socket = socket

    def detach(self) -> None:
        socket, self._socket = self._socket, None
        if socket is not None:
            socket.off(EXECUTION_UPDATE, self._on_update)
            socket.off(EXECUTION_COMPLETE, self._on_complete)

    def clear(self) -> None:
        self.detach()
        self._channels.clear()

    async def _on_update(self, data: Any) -> None:
        await self._dispatch(data)

    async def _on_complete(self, data: Any) -> None:
        payload = dict(data) if isinstance(data, dict) else {}
        payload["status"] = "complete"
        await self._dispatch(payload)

    async def _dispatch(self, data: Any) -> None:
        if not isinstance(data, dict) or "executionId" not in data:
            _LOGGER.debug("Ignoring execution event without executionId: %s", data)
            return
        callbacks = self._channels.get(str(data["executionId"]))
        if not callbacks:
            return
        for callback in list(callbacks):
            await invoke_callback(callback, data, description="Execution callback")
