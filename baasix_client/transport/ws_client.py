"""WebSocket client wrapper for the Baasix realtime endpoint."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from websockets.asyncio.client import ClientConnection
from websockets.exceptions import ConnectionClosed

from ..errors import BaasixClientError, BaasixConnectionError
from .ws import connect_websocket

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


class BaasixWsMessageType(Enum):
    """Normalized WebSocket message types."""

    TEXT = "text"
    CLOSED = "closed"
    ERROR = "error"


@dataclass(frozen=True)
class BaasixWsMessage:
    """Normalized WebSocket message payload."""

    type: BaasixWsMessageType
    data: str | None = None


class BaasixWsClient:
    """Wrapper around the websockets library connection."""

    def __init__(self) -> None:
        self._ws: ClientConnection | None = None

    async def connect(
        self,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        ping_interval: float | None = 20,
        timeout: float = 20.0,
    ) -> None:
        """Connect to the realtime endpoint."""
        self._ws = await connect_websocket(
            url,
            headers=headers,
            ping_interval=ping_interval,
            timeout=timeout,
        )

    async def close(self) -> None:
        """Close the websocket connection."""
        if self._ws is not None:
            await self._ws.close()

    async def send_json(self, payload: dict[str, Any]) -> None:
        """Send a JSON payload to the websocket."""
        if self._ws is None:
            raise BaasixConnectionError("WebSocket is not connected")
        try:
            await self._ws.send(json.dumps(payload))
        except ConnectionClosed as err:
            raise BaasixConnectionError("WebSocket closed while sending") from err

    def __aiter__(self) -> AsyncIterator[BaasixWsMessage]:
        if self._ws is None:
            raise BaasixConnectionError("WebSocket is not connected")
        return self._iter_messages()

    async def _iter_messages(self) -> AsyncIterator[BaasixWsMessage]:
        if self._ws is None:
            raise BaasixConnectionError("WebSocket is not connected")

        try:
            async for msg in self._ws:
                if isinstance(msg, bytes):
                    continue
                yield BaasixWsMessage(BaasixWsMessageType.TEXT, msg)
        except ConnectionClosed:
            yield BaasixWsMessage(type=BaasixWsMessageType.CLOSED)
        except Exception:
            yield BaasixWsMessage(type=BaasixWsMessageType.ERROR)
        else:
            # Normal iteration completion means the peer closed gracefully.
            yield BaasixWsMessage(type=BaasixWsMessageType.CLOSED)

    @staticmethod
    def decode_json(message: BaasixWsMessage) -> Any:
        """Decode a TEXT message payload into JSON."""
        if message.type is not BaasixWsMessageType.TEXT:
            raise BaasixClientError("Only TEXT messages can be decoded")
        if not isinstance(message.data, str):
            raise BaasixClientError("Message data is not a string")
        return json.loads(message.data)
