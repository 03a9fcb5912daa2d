"""Event socket: named events with acks over a WebSocket, with auto-reconnect.

The socket reports its lifecycle through the same handler table as server
events:

- ``connect``: first handshake completed.
- ``connect_error(err)``: first handshake failed; the socket stays closed.
- ``disconnect(reason)``: an established connection ended.
- ``reconnect_attempt(n)``: about to retry after a drop.
- ``reconnect_error(err)``: a retry failed.
- ``reconnect(n)``: a retry succeeded.
- ``reconnect_failed``: retries exhausted; the socket stays closed.

An explicit ``disconnect()`` never triggers reconnection.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol

from ..callbacks import invoke_callback
from ..errors import BaasixClientError, BaasixConnectionError
from .protocol import (
    FRAME_ACK,
    build_ack_frame,
    build_event_frame,
    parse_frame,
    to_ws_url,
)
from .ws_client import BaasixWsClient, BaasixWsMessageType

_LOGGER = logging.getLogger(__name__)

Handler = Callable[..., Awaitable[None] | None]
AckCallback = Callable[[Any], Awaitable[None] | None]
TokenProvider = Callable[[], Awaitable[str | None]]


@dataclass
class SocketOptions:
    """Connection options handed to a socket factory.

    Attributes:
        token: Access token sent with the handshake.
        token_provider: Resolves a fresh token before every handshake; wins
            over ``token`` when set.
        path: Realtime endpoint path.
        timeout: Handshake timeout in seconds.
        reconnection: Reconnect automatically after a drop.
        reconnection_attempts: Retries before giving up.
        reconnection_delay: First retry delay in seconds, doubled per retry.
        reconnection_delay_max: Upper bound for the retry delay.
        ping_interval: Keepalive ping interval in seconds.
    """

    token: str | None = None
    token_provider: TokenProvider | None = None
    path: str = "/socket"
    timeout: float = 20.0
    reconnection: bool = True
    reconnection_attempts: int = 10
    reconnection_delay: float = 1.0
    reconnection_delay_max: float = 5.0
    ping_interval: float | None = 20


class RealtimeSocket(Protocol):
    """Transport primitive consumed by the realtime connection."""

    @property
    def connected(self) -> bool: ...

    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    async def emit(self, event: str, data: Any = None, *, ack: AckCallback | None = None) -> None: ...

    def on(self, event: str, handler: Handler) -> None: ...

    def off(self, event: str, handler: Handler | None = None) -> None: ...


SocketFactory = Callable[[str, SocketOptions], RealtimeSocket]


class EventSocket:
    """Default ``RealtimeSocket`` over the websockets library."""

    def __init__(self, url: str, options: SocketOptions | None = None) -> None:
        self._options = options or SocketOptions()
        self._url = to_ws_url(url, self._options.path)
        self._handlers: dict[str, list[Handler]] = {}
        self._acks: dict[int, AckCallback] = {}
        self._ack_ids = itertools.count(1)

        self._ws: BaasixWsClient | None = None
        self._connected = False
        self._closing = False
        self._listen_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None

    @property
    def url(self) -> str:
        return self._url

    @property
    def connected(self) -> bool:
        return self._connected

    # -------------------------------------------------------------------------
    # Handler table
    # -------------------------------------------------------------------------

    def on(self, event: str, handler: Handler) -> None:
        self._handlers.setdefault(event, []).append(handler)

    def off(self, event: str, handler: Handler | None = None) -> None:
        """Remove one handler, or every handler for ``event``."""
        if handler is None:
            self._handlers.pop(event, None)
            return
        handlers = self._handlers.get(event)
        if not handlers:
            return
        try:
            handlers.remove(handler)
        except ValueError:
            return
        if not handlers:
            del self._handlers[event]

    async def _fire(self, event: str, *args: Any) -> None:
        for handler in list(self._handlers.get(event, ())):
            await invoke_callback(handler, *args, description=f"Handler for {event!r}")

    # -------------------------------------------------------------------------
    # Connection lifecycle
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the connection and fire ``connect`` or ``connect_error``."""
        if self._connected:
            return
        self._closing = False
        try:
            await self._open()
        except BaasixClientError as err:
            _LOGGER.debug("Handshake with %s failed: %s", self._url, err)
            await self._fire("connect_error", err)
            return
        await self._fire("connect")

    async def _resolve_token(self) -> str | None:
        if self._options.token_provider is not None:
            return await self._options.token_provider()
        return self._options.token

    async def _open(self) -> None:
        token = await self._resolve_token()
        headers = {"Authorization": f"Bearer {token}"} if token else None
        ws = BaasixWsClient()
        await ws.connect(
            self._url,
            headers=headers,
            ping_interval=self._options.ping_interval,
            timeout=self._options.timeout,
        )
        self._ws = ws
        self._connected = True
        self._listen_task = asyncio.create_task(self._listen(ws))

    async def disconnect(self) -> None:
        """Close the connection for good; no reconnect follows."""
        self._closing = True
        was_connected = self._connected
        self._connected = False
        self._acks.clear()

        current = asyncio.current_task()
        for task in (self._reconnect_task, self._listen_task):
            if task is None or task is current or task.done():
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._reconnect_task = None
        self._listen_task = None

        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await asyncio.wait_for(ws.close(), timeout=2.0)
            except TimeoutError:
                _LOGGER.warning("WebSocket close timed out")

        if was_connected:
            await self._fire("disconnect", "io client disconnect")

    async def _listen(self, ws: BaasixWsClient) -> None:
        reason = "transport close"
        async for msg in ws:
            if msg.type is BaasixWsMessageType.TEXT:
                await self._handle_text(ws, msg)
            elif msg.type is BaasixWsMessageType.CLOSED:
                break
            else:
                reason = "transport error"
                break

        if self._closing or ws is not self._ws:
            return
        _LOGGER.info("Realtime connection lost: %s", reason)
        self._connected = False
        self._ws = None
        self._acks.clear()
        await self._fire("disconnect", reason)
        if self._options.reconnection and not self._closing:
            self._reconnect_task = asyncio.create_task(self._reconnect())

    async def _handle_text(self, ws: BaasixWsClient, msg: Any) -> None:
        try:
            frame = parse_frame(ws.decode_json(msg))
        except (ValueError, BaasixClientError) as err:
            _LOGGER.warning("Ignoring invalid frame: %s", err)
            return

        if frame.type == FRAME_ACK:
            callback = self._acks.pop(frame.id, None) if frame.id is not None else None
            if callback is not None:
                await invoke_callback(callback, frame.data, description="Ack callback")
            return

        if frame.event is None:
            return
        if frame.id is not None:
            await self._send_ack(ws, frame.id)
        await self._fire(frame.event, frame.data)

    async def _send_ack(self, ws: BaasixWsClient, ack_id: int) -> None:
        try:
            await ws.send_json(build_ack_frame(ack_id, {"status": "received"}))
        except BaasixClientError as err:
            _LOGGER.debug("Could not acknowledge frame %d: %s", ack_id, err)

    async def _reconnect(self) -> None:
        attempts = self._options.reconnection_attempts
        try:
            for attempt in range(1, attempts + 1):
                delay = min(
                    self._options.reconnection_delay * (2 ** (attempt - 1)),
                    self._options.reconnection_delay_max,
                )
                _LOGGER.debug("Reconnecting in %.1fs (attempt %d)", delay, attempt)
                await asyncio.sleep(delay)
                if self._closing:
                    return

                await self._fire("reconnect_attempt", attempt)
                try:
                    await self._open()
                except BaasixClientError as err:
                    _LOGGER.debug("Reconnect attempt %d failed: %s", attempt, err)
                    await self._fire("reconnect_error", err)
                    continue

                _LOGGER.info("Reconnected after %d attempt(s)", attempt)
                await self._fire("reconnect", attempt)
                return

            _LOGGER.warning("Giving up after %d reconnect attempts", attempts)
            await self._fire("reconnect_failed")
        except asyncio.CancelledError:
            _LOGGER.debug("Reconnect cancelled")
            raise
        finally:
            if self._reconnect_task is asyncio.current_task():
                self._reconnect_task = None

    # -------------------------------------------------------------------------
    # Sending
    # -------------------------------------------------------------------------

    async def emit(self, event: str, data: Any = None, *, ack: AckCallback | None = None) -> None:
        """Send an event; ``ack`` receives the server's reply, if any.

        Raises:
            BaasixConnectionError: If the socket is not connected.
        """
        if not self._connected or self._ws is None:
            raise BaasixConnectionError("Socket is not connected")
        ack_id = None
        if ack is not None:
            ack_id = next(self._ack_ids)
            self._acks[ack_id] = ack
        try:
            await self._ws.send_json(build_event_frame(event, data, ack_id=ack_id))
        except BaasixClientError:
            if ack_id is not None:
                self._acks.pop(ack_id, None)
            raise
