"""Realtime connection state machine.

States::

    DISCONNECTED -> CONNECTING -> CONNECTED -> RECONNECTING -> CONNECTED
                                     |              |
                                     +--------------+--> DISCONNECTED

Every transition into ``CONNECTED`` (first handshake or transport-level
reconnect) runs the connected hooks before listeners are told, which is how
the registries replay their subscriptions. A transport drop leaves the
registries alone; only an explicit ``disconnect()`` runs the teardown hooks.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import replace
from enum import Enum
from typing import Any

from ..callbacks import invoke_callback
from ..config import BaasixConfig
from ..credentials import CredentialStore, StorageKey
from ..errors import BaasixClientError, BaasixConnectionError, BaasixTimeout
from ..singleflight import SingleFlight
from ..transport.socket import (
    EventSocket,
    Handler,
    RealtimeSocket,
    SocketFactory,
    SocketOptions,
)

_LOGGER = logging.getLogger(__name__)

ConnectionListener = Callable[[bool], Awaitable[None] | None]
ConnectedHook = Callable[[], Awaitable[None] | None]
TeardownHook = Callable[[], None]


class ConnectionState(Enum):
    """Realtime connection states."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


class RealtimeConnection:
    """Own the realtime socket and its lifecycle.

    Usage:
        connection = RealtimeConnection(config, credentials)
        remove = connection.on_connection_change(print)
        await connection.connect()
        ...
        await connection.disconnect()
    """

    def __init__(
        self,
        config: BaasixConfig,
        credentials: CredentialStore,
        *,
        socket_factory: SocketFactory | None = None,
    ) -> None:
        self._config = config
        self._credentials = credentials
        self._url = config.realtime_url
        self._socket_factory: SocketFactory = socket_factory or EventSocket
        self._options = SocketOptions(
            path=config.socket_path,
            timeout=config.connect_timeout,
            reconnection_attempts=config.reconnection_attempts,
            reconnection_delay=config.reconnection_delay,
            reconnection_delay_max=config.reconnection_delay_max,
        )

        self._socket: RealtimeSocket | None = None
        self._state = ConnectionState.DISCONNECTED
        self._flight: SingleFlight[None] = SingleFlight()
        self._handshake: asyncio.Future[None] | None = None

        self._listeners: list[ConnectionListener] = []
        self._connected_hooks: list[ConnectedHook] = []
        self._teardown_hooks: list[TeardownHook] = []

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def socket(self) -> RealtimeSocket | None:
        return self._socket

    @property
    def is_connected(self) -> bool:
        return (
            self._state is ConnectionState.CONNECTED
            and self._socket is not None
            and self._socket.connected
        )

    def set_socket_factory(self, factory: SocketFactory) -> None:
        """Use ``factory`` for the next connection attempt."""
        self._socket_factory = factory

    def set_socket_url(self, url: str) -> None:
        self._url = url.rstrip("/")

    # -------------------------------------------------------------------------
    # Listener and hook registration
    # -------------------------------------------------------------------------

    def on_connection_change(self, listener: ConnectionListener) -> Callable[[], None]:
        """Register ``listener(connected)``; returns a function removing it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def add_connected_hook(self, hook: ConnectedHook) -> None:
        self._connected_hooks.append(hook)

    def add_teardown_hook(self, hook: TeardownHook) -> None:
        self._teardown_hooks.append(hook)

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """Connect, or join the attempt already in progress.

        Raises:
            BaasixTimeout: No handshake within ``connect_timeout``.
            BaasixConnectionError: The handshake failed or ``disconnect()``
                was called first.
        """
        if self.is_connected:
            return
        await self._flight.run(self._open)

    async def disconnect(self) -> None:
        """Tear down the socket and drop every registration."""
        if self._handshake is not None and not self._handshake.done():
            self._handshake.set_exception(
                BaasixConnectionError("Disconnected before the connection was established")
            )

        socket, self._socket = self._socket, None
        if socket is not None:
            self._unbind(socket)
            await socket.disconnect()

        for hook in self._teardown_hooks:
            hook()
        await self._set_state(ConnectionState.DISCONNECTED)
        _LOGGER.info("Realtime disconnected")

    # -------------------------------------------------------------------------
    # Internal: connection attempt
    # -------------------------------------------------------------------------

    async def _access_token(self) -> str | None:
        if self._config.token:
            return self._config.token
        return await self._credentials.read(StorageKey.ACCESS_TOKEN)

    async def _open(self) -> None:
        handshake: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._handshake = handshake
        try:
            token = await self._access_token()
            if handshake.done():
                handshake.result()

            stale, self._socket = self._socket, None
            if stale is not None:
                _LOGGER.debug("Discarding previous realtime socket")
                self._unbind(stale)
                await stale.disconnect()

            await self._set_state(ConnectionState.CONNECTING)
            options = replace(self._options, token=token, token_provider=self._access_token)
            socket = self._socket_factory(self._url, options)
            self._socket = socket
            self._bind(socket)
            _LOGGER.info("Connecting to realtime server at %s", self._url)

            try:
                await socket.connect()
                await asyncio.wait_for(handshake, timeout=self._config.connect_timeout)
            except TimeoutError as err:
                await self._abandon(socket)
                raise BaasixTimeout("Realtime connection timed out") from err
            except BaasixClientError:
                await self._abandon(socket)
                raise
        finally:
            if self._handshake is handshake:
                self._handshake = None

    async def _abandon(self, socket: RealtimeSocket) -> None:
        self._unbind(socket)
        await socket.disconnect()
        if self._socket is socket:
            self._socket = None
            await self._set_state(ConnectionState.DISCONNECTED)

    def _bindings(self) -> tuple[tuple[str, Handler], ...]:
        return (
            ("connect", self._on_connect),
            ("connect_error", self._on_connect_error),
            ("disconnect", self._on_disconnect),
            ("reconnect_attempt", self._on_reconnect_attempt),
            ("reconnect", self._on_reconnect),
            ("reconnect_failed", self._on_reconnect_failed),
            ("connected", self._on_server_hello),
        )

    def _bind(self, socket: RealtimeSocket) -> None:
        for event, handler in self._bindings():
            socket.on(event, handler)

    def _unbind(self, socket: RealtimeSocket) -> None:
        for event, handler in self._bindings():
            socket.off(event, handler)

    # -------------------------------------------------------------------------
    # Internal: state machine
    # -------------------------------------------------------------------------

    async def _set_state(self, state: ConnectionState, *, notify: bool = True) -> None:
        """Update state; listeners hear about entering CONNECTED/DISCONNECTED."""
        if self._state is state:
            return
        _LOGGER.debug("State: %s → %s", self._state.value, state.value)
        self._state = state
        if notify and state in (ConnectionState.CONNECTED, ConnectionState.DISCONNECTED):
            await self._notify(state is ConnectionState.CONNECTED)

    async def _notify(self, connected: bool) -> None:
        for listener in list(self._listeners):
            await invoke_callback(listener, connected, description="Connection listener")

    async def _enter_connected(self) -> None:
        changed = self._state is not ConnectionState.CONNECTED
        await self._set_state(ConnectionState.CONNECTED, notify=False)
        for hook in list(self._connected_hooks):
            await invoke_callback(hook, description="Connected hook")
        if changed:
            await self._notify(True)

    async def _on_connect(self) -> None:
        _LOGGER.info("Realtime connected")
        await self._enter_connected()
        if self._handshake is not None and not self._handshake.done():
            self._handshake.set_result(None)

    async def _on_connect_error(self, error: Any = None) -> None:
        _LOGGER.error("Realtime connection error: %s", error)
        if self._handshake is None or self._handshake.done():
            return
        if isinstance(error, BaasixConnectionError):
            self._handshake.set_exception(error)
            return
        exc = BaasixConnectionError(f"Realtime connection failed: {error}")
        if isinstance(error, BaseException):
            exc.__cause__ = error
        self._handshake.set_exception(exc)

    async def _on_disconnect(self, reason: Any = None) -> None:
        _LOGGER.info("Realtime disconnected: %s", reason)
        await self._set_state(ConnectionState.DISCONNECTED)

    async def _on_reconnect_attempt(self, attempt: Any = None) -> None:
        _LOGGER.debug("Realtime reconnect attempt %s", attempt)
        await self._set_state(ConnectionState.RECONNECTING)

    async def _on_reconnect(self, attempt: Any = None) -> None:
        _LOGGER.info("Realtime reconnected")
        await self._enter_connected()

    async def _on_reconnect_failed(self) -> None:
        _LOGGER.warning("Realtime reconnection gave up")
        await self._set_state(ConnectionState.DISCONNECTED)

    async def _on_server_hello(self, data: Any = None) -> None:
        user_id = data.get("userId") if isinstance(data, dict) else None
        _LOGGER.info("Realtime authenticated as user %s", user_id)
