"""Tests for EventSocket over a fake WebSocket client."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest

from baasix_client.errors import BaasixConnectionError, BaasixHandshakeError
from baasix_client.transport import socket as socket_module
from baasix_client.transport.socket import EventSocket, SocketOptions
from baasix_client.transport.ws_client import (
    BaasixWsClient,
    BaasixWsMessage,
    BaasixWsMessageType,
)


class FakeWs:
    """Stand-in for BaasixWsClient fed from a queue."""

    decode_json = staticmethod(BaasixWsClient.decode_json)

    def __init__(self, fail_with: Exception | None = None) -> None:
        self.fail_with = fail_with
        self.sent: list[dict[str, Any]] = []
        self.queue: asyncio.Queue[BaasixWsMessage] = asyncio.Queue()
        self.url: str | None = None
        self.connect_kwargs: dict[str, Any] = {}
        self.closed = False

    async def connect(self, url: str, **kwargs: Any) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.url = url
        self.connect_kwargs = kwargs

    async def close(self) -> None:
        self.closed = True
        self.queue.put_nowait(BaasixWsMessage(BaasixWsMessageType.CLOSED))

    async def send_json(self, payload: dict[str, Any]) -> None:
        self.sent.append(payload)

    def push(self, payload: dict[str, Any]) -> None:
        self.queue.put_nowait(BaasixWsMessage(BaasixWsMessageType.TEXT, json.dumps(payload)))

    def drop(self) -> None:
        self.queue.put_nowait(BaasixWsMessage(BaasixWsMessageType.CLOSED))

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        while True:
            msg = await self.queue.get()
            yield msg
            if msg.type is not BaasixWsMessageType.TEXT:
                return


class FakeWsFactory:
    """Replaces the BaasixWsClient class inside the socket module."""

    def __init__(self) -> None:
        self.instances: list[FakeWs] = []
        self.failures: list[Exception] = []

    def __call__(self) -> FakeWs:
        ws = FakeWs(self.failures.pop(0) if self.failures else None)
        self.instances.append(ws)
        return ws

    @property
    def last(self) -> FakeWs:
        return self.instances[-1]


@pytest.fixture
def ws_factory(monkeypatch: pytest.MonkeyPatch) -> FakeWsFactory:
    factory = FakeWsFactory()
    monkeypatch.setattr(socket_module, "BaasixWsClient", factory)
    return factory


def make_socket(**options: Any) -> EventSocket:
    options.setdefault("reconnection_delay", 0.0)
    options.setdefault("reconnection_delay_max", 0.0)
    return EventSocket("https://api.example.com", SocketOptions(**options))


def watch(sock: EventSocket, event: str) -> tuple[list[Any], asyncio.Event]:
    """Record the arguments of every ``event`` and flag the first one."""
    received: list[Any] = []
    fired = asyncio.Event()

    def handler(*args: Any) -> None:
        received.append(args)
        fired.set()

    sock.on(event, handler)
    return received, fired


class TestEventSocketConnect:
    """Tests for connect() and handshake credentials."""

    async def test_connect_fires_connect(self, ws_factory: FakeWsFactory):
        sock = make_socket(token="static", path="/socket")
        events: list[str] = []
        sock.on("connect", lambda: events.append("connect"))

        await sock.connect()

        assert sock.connected
        assert events == ["connect"]
        assert ws_factory.last.url == "wss://api.example.com/socket"
        assert ws_factory.last.connect_kwargs["headers"] == {"Authorization": "Bearer static"}
        await sock.disconnect()

    async def test_token_provider_wins(self, ws_factory: FakeWsFactory):
        async def provider() -> str:
            return "fresh"

        sock = make_socket(token="stale", token_provider=provider)
        await sock.connect()

        assert ws_factory.last.connect_kwargs["headers"] == {"Authorization": "Bearer fresh"}
        await sock.disconnect()

    async def test_no_token_no_header(self, ws_factory: FakeWsFactory):
        sock = make_socket()
        await sock.connect()

        assert ws_factory.last.connect_kwargs["headers"] is None
        await sock.disconnect()

    async def test_connect_error(self, ws_factory: FakeWsFactory):
        ws_factory.failures.append(BaasixHandshakeError("401 Unauthorized"))
        sock = make_socket()
        errors: list[Exception] = []
        sock.on("connect_error", errors.append)

        await sock.connect()

        assert not sock.connected
        assert len(errors) == 1
        assert isinstance(errors[0], BaasixHandshakeError)


class TestEventSocketMessaging:
    """Tests for inbound events, emit and acks."""

    async def test_inbound_event_dispatched(self, ws_factory: FakeWsFactory):
        sock = make_socket()
        received, fired = watch(sock, "products:create")
        await sock.connect()

        ws_factory.last.push(
            {"type": "event", "event": "products:create", "data": {"data": {"id": 1}}}
        )
        await asyncio.wait_for(fired.wait(), timeout=1)

        assert received == [({"data": {"id": 1}},)]
        await sock.disconnect()

    async def test_inbound_event_with_id_is_acknowledged(self, ws_factory: FakeWsFactory):
        sock = make_socket()
        received, fired = watch(sock, "notice")
        await sock.connect()

        ws_factory.last.push({"type": "event", "event": "notice", "data": {"n": 1}, "id": 5})
        await asyncio.wait_for(fired.wait(), timeout=1)

        assert received == [({"n": 1},)]
        assert ws_factory.last.sent == [
            {"type": "ack", "id": 5, "data": {"status": "received"}}
        ]
        await sock.disconnect()

    async def test_invalid_frame_ignored(self, ws_factory: FakeWsFactory):
        sock = make_socket()
        received, fired = watch(sock, "ping")
        await sock.connect()

        ws_factory.last.push({"type": "bogus"})
        ws_factory.last.push({"type": "event", "event": "ping", "data": None})
        await asyncio.wait_for(fired.wait(), timeout=1)

        assert received == [(None,)]
        await sock.disconnect()

    async def test_emit_with_ack(self, ws_factory: FakeWsFactory):
        sock = make_socket()
        await sock.connect()
        acked = asyncio.Event()
        replies: list[Any] = []

        def on_ack(data: Any) -> None:
            replies.append(data)
            acked.set()

        await sock.emit("subscribe", {"collection": "products"}, ack=on_ack)
        sent = ws_factory.last.sent[-1]
        assert sent["event"] == "subscribe"
        assert sent["data"] == {"collection": "products"}

        ws_factory.last.push({"type": "ack", "id": sent["id"], "data": {"status": "success"}})
        await asyncio.wait_for(acked.wait(), timeout=1)

        assert replies == [{"status": "success"}]
        await sock.disconnect()

    async def test_emit_without_ack_has_no_id(self, ws_factory: FakeWsFactory):
        sock = make_socket()
        await sock.connect()

        await sock.emit("unsubscribe", {"collection": "products"})

        assert "id" not in ws_factory.last.sent[-1]
        await sock.disconnect()

    async def test_emit_not_connected(self, ws_factory: FakeWsFactory):
        with pytest.raises(BaasixConnectionError, match="not connected"):
            await make_socket().emit("subscribe", {})

    async def test_handler_error_isolated(self, ws_factory: FakeWsFactory):
        sock = make_socket()

        def broken(data: Any) -> None:
            raise RuntimeError("handler broke")

        sock.on("news", broken)
        received, fired = watch(sock, "news")
        await sock.connect()

        ws_factory.last.push({"type": "event", "event": "news", "data": 1})
        await asyncio.wait_for(fired.wait(), timeout=1)

        assert received == [(1,)]
        await sock.disconnect()

    async def test_off_removes_handler(self, ws_factory: FakeWsFactory):
        sock = make_socket()
        calls: list[Any] = []
        handler = calls.append
        sock.on("news", handler)
        sock.off("news", handler)
        received, fired = watch(sock, "news")
        await sock.connect()

        ws_factory.last.push({"type": "event", "event": "news", "data": 1})
        await asyncio.wait_for(fired.wait(), timeout=1)

        assert calls == []
        await sock.disconnect()


class TestEventSocketLifecycle:
    """Tests for disconnects and automatic reconnection."""

    async def test_explicit_disconnect(self, ws_factory: FakeWsFactory):
        sock = make_socket()
        reasons: list[str] = []
        sock.on("disconnect", reasons.append)
        await sock.connect()
        ws = ws_factory.last

        await sock.disconnect()

        assert not sock.connected
        assert ws.closed
        assert reasons == ["io client disconnect"]
        assert len(ws_factory.instances) == 1

    async def test_drop_then_reconnect(self, ws_factory: FakeWsFactory):
        sock = make_socket()
        reasons: list[str] = []
        sock.on("disconnect", reasons.append)
        attempts: list[int] = []
        sock.on("reconnect_attempt", attempts.append)
        reconnected, fired = watch(sock, "reconnect")
        await sock.connect()

        ws_factory.last.drop()
        await asyncio.wait_for(fired.wait(), timeout=1)

        assert reasons == ["transport close"]
        assert attempts == [1]
        assert reconnected == [(1,)]
        assert sock.connected
        assert len(ws_factory.instances) == 2
        await sock.disconnect()

    async def test_reconnect_retries_then_succeeds(self, ws_factory: FakeWsFactory):
        sock = make_socket(reconnection_attempts=3)
        errors: list[Exception] = []
        sock.on("reconnect_error", errors.append)
        reconnected, fired = watch(sock, "reconnect")
        await sock.connect()

        ws_factory.failures.append(BaasixConnectionError("refused"))
        ws_factory.last.drop()
        await asyncio.wait_for(fired.wait(), timeout=1)

        assert len(errors) == 1
        assert reconnected == [(2,)]
        await sock.disconnect()

    async def test_reconnect_gives_up(self, ws_factory: FakeWsFactory):
        sock = make_socket(reconnection_attempts=2)
        failed, fired = watch(sock, "reconnect_failed")
        await sock.connect()

        ws_factory.failures.extend(
            [BaasixConnectionError("refused"), BaasixConnectionError("refused")]
        )
        ws_factory.last.drop()
        await asyncio.wait_for(fired.wait(), timeout=1)

        assert failed == [()]
        assert not sock.connected

    async def test_no_reconnect_when_disabled(self, ws_factory: FakeWsFactory):
        sock = make_socket(reconnection=False)
        dropped, fired = watch(sock, "disconnect")
        await sock.connect()

        ws_factory.last.drop()
        await asyncio.wait_for(fired.wait(), timeout=1)
        await asyncio.sleep(0)

        assert not sock.connected
        assert len(ws_factory.instances) == 1
