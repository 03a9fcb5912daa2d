"""Open the raw WebSocket used by the realtime event socket."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping

import websockets
from websockets.asyncio.client import ClientConnection
from websockets.exceptions import (
    InvalidHandshake,
    InvalidStatus,
    InvalidURI,
    WebSocketException,
)

from ..errors import (
    BaasixConnectionError,
    BaasixHandshakeError,
    BaasixTimeout,
)


async def connect_websocket(
    url: str,
    *,
    headers: Mapping[str, str] | None = None,
    ping_interval: float | None = 20,
    timeout: float = 20.0,
) -> ClientConnection:
    """Dial ``url`` and return the open connection.

    The bearer token travels in ``headers`` because the server authenticates
    the upgrade request itself; a rejected token surfaces as a handshake
    error carrying the HTTP status.

    Raises:
        BaasixTimeout: The upgrade did not finish within ``timeout`` seconds.
        BaasixHandshakeError: The server refused the upgrade or the URL is
            not a WebSocket URL.
        BaasixConnectionError: The network connection failed.
    """
    try:
        return await asyncio.wait_for(
            websockets.connect(
                url,
                additional_headers=dict(headers) if headers else None,
                ping_interval=ping_interval,
                close_timeout=5,
                max_size=None,
            ),
            timeout=timeout,
        )
    except TimeoutError as err:
        raise BaasixTimeout(f"Realtime handshake with {url} timed out") from err
    except InvalidStatus as err:
        status = err.response.status_code
        raise BaasixHandshakeError(
            f"Realtime server rejected the upgrade with HTTP {status}"
        ) from err
    except (InvalidHandshake, InvalidURI) as err:
        raise BaasixHandshakeError(f"Realtime handshake failed: {err}") from err
    except (OSError, WebSocketException) as err:
        raise BaasixConnectionError(f"Realtime connection to {url} failed: {err}") from err
