"""Pytest configuration and fixtures for baasix_client tests."""

from __future__ import annotations

import asyncio
import inspect
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from baasix_client.config import BaasixConfig
from baasix_client.credentials import CredentialStore
from baasix_client.errors import BaasixConnectionError
from baasix_client.storage import MemoryStorage
from baasix_client.transport.socket import SocketOptions

BASE_URL = "https://api.example.com"


@pytest.fixture
def mock_session() -> MagicMock:
    """Create a mock aiohttp ClientSession."""
    import aiohttp

    return MagicMock(spec=aiohttp.ClientSession)


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def credentials(storage: MemoryStorage) -> CredentialStore:
    return CredentialStore(storage)


@pytest.fixture
def config() -> BaasixConfig:
    return BaasixConfig(url=BASE_URL, connect_timeout=0.5)


def create_mock_response(
    status: int = 200,
    json_data: Any = None,
    text_data: str | None = None,
    read_data: bytes | None = None,
    reason: str | None = None,
    headers: dict[str, str] | None = None,
) -> AsyncMock:
    """Create a configured mock response.

    Args:
        status: HTTP status code
        json_data: Data to return from json() call
        text_data: Data to return from text() call
        read_data: Data to return from read() call
        reason: HTTP reason phrase
        headers: Response headers

    Returns:
        Configured AsyncMock response
    """
    response = AsyncMock()
    response.status = status
    response.reason = reason
    response.headers = headers or {}

    if json_data is not None:
        response.json.return_value = json_data
    else:
        response.json.side_effect = ValueError("No JSON body")
    if text_data is not None:
        response.text.return_value = text_data
    if read_data is not None:
        response.read.return_value = read_data

    response.__aenter__.return_value = response
    response.__aexit__.return_value = None

    return response


class FakeSocket:
    """In-memory ``RealtimeSocket`` driven by the test.

    ``connect()`` completes immediately unless ``fail_with`` is set (fires
    ``connect_error``) or ``silent`` is set (fires nothing).
    ``emit_delay`` makes ``emit`` yield to the loop before recording.
    """

    def __init__(self, url: str, options: SocketOptions) -> None:
        self.url = url
        self.options = options
        self.connected = False
        self.handlers: dict[str, list[Any]] = {}
        self.emitted: list[tuple[str, Any]] = []
        self.ack_response: Any = {"status": "success"}
        self.fail_with: Exception | None = None
        self.emit_delay = 0.0
        self.silent = False
        self.connect_calls = 0
        self.disconnect_calls = 0

    def on(self, event: str, handler: Any) -> None:
        self.handlers.setdefault(event, []).append(handler)

    def off(self, event: str, handler: Any = None) -> None:
        if handler is None:
            self.handlers.pop(event, None)
            return
        handlers = self.handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def handler_count(self, event: str) -> int:
        return len(self.handlers.get(event, []))

    async def fire(self, event: str, *args: Any) -> None:
        for handler in list(self.handlers.get(event, [])):
            result = handler(*args)
            if inspect.isawaitable(result):
                await result

    async def connect(self) -> None:
        self.connect_calls += 1
        if self.silent:
            return
        if self.fail_with is not None:
            await self.fire("connect_error", self.fail_with)
            return
        self.connected = True
        await self.fire("connect")

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        was_connected = self.connected
        self.connected = False
        if was_connected:
            await self.fire("disconnect", "io client disconnect")

    async def emit(self, event: str, data: Any = None, *, ack: Any = None) -> None:
        if self.emit_delay:
            await asyncio.sleep(self.emit_delay)
        if not self.connected:
            raise BaasixConnectionError("Socket is not connected")
        self.emitted.append((event, data))
        if ack is not None and self.ack_response is not None:
            result = ack(self.ack_response)
            if inspect.isawaitable(result):
                await result

    def emitted_events(self, event: str) -> list[Any]:
        return [data for name, data in self.emitted if name == event]

    async def drop(self, reason: str = "transport close") -> None:
        """Simulate the transport losing the connection."""
        self.connected = False
        await self.fire("disconnect", reason)

    async def recover(self, attempt: int = 1) -> None:
        """Simulate a successful automatic reconnect."""
        await self.fire("reconnect_attempt", attempt)
        self.connected = True
        await self.fire("reconnect", attempt)


class FakeSocketFactory:
    """Socket factory recording every socket it builds."""

    def __init__(self) -> None:
        self.sockets: list[FakeSocket] = []
        self.silent = False
        self.fail_with: Exception | None = None

    def __call__(self, url: str, options: SocketOptions) -> FakeSocket:
        socket = FakeSocket(url, options)
        socket.silent = self.silent
        socket.fail_with = self.fail_with
        self.sockets.append(socket)
        return socket

    @property
    def last(self) -> FakeSocket:
        return self.sockets[-1]


@pytest.fixture
def socket_factory() -> FakeSocketFactory:
    return FakeSocketFactory()
