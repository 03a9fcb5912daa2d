"""Tests for the collection subscription registry."""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import MagicMock

import pytest

from baasix_client.config import BaasixConfig
from baasix_client.credentials import CredentialStore
from baasix_client.realtime import RealtimeClient

from .conftest import FakeSocket, FakeSocketFactory


@pytest.fixture
def realtime(
    config: BaasixConfig,
    credentials: CredentialStore,
    socket_factory: FakeSocketFactory,
) -> RealtimeClient:
    return RealtimeClient(config, credentials, socket_factory=socket_factory)


def payload(action: str, collection: str = "products", **data: Any) -> dict[str, Any]:
    return {
        "action": action,
        "collection": collection,
        "data": data,
        "timestamp": "2024-01-01T00:00:00Z",
    }


async def connected_socket(
    realtime: RealtimeClient, socket_factory: FakeSocketFactory
) -> FakeSocket:
    await realtime.connect()
    return socket_factory.last


class TestSubscribe:
    """Tests for subscribe() and handle removal."""

    async def test_first_subscriber_sends_subscribe(
        self, realtime: RealtimeClient, socket_factory: FakeSocketFactory
    ):
        socket = await connected_socket(realtime, socket_factory)

        await realtime.subscribe("products", MagicMock())

        assert socket.emitted_events("subscribe") == [{"collection": "products"}]
        for action in ("create", "update", "delete"):
            assert socket.handler_count(f"products:{action}") == 1

    async def test_ref_counted(
        self, realtime: RealtimeClient, socket_factory: FakeSocketFactory
    ):
        """Two subscribers, one removal: still subscribed; second removal unsubscribes."""
        socket = await connected_socket(realtime, socket_factory)
        first = await realtime.subscribe("products", MagicMock())
        second = await realtime.subscribe("products", MagicMock())

        assert socket.emitted_events("subscribe") == [{"collection": "products"}]
        assert realtime.subscriptions.callback_count("products") == 2

        await first()
        assert realtime.subscriptions.collections == ["products"]
        assert socket.emitted_events("unsubscribe") == []
        assert socket.handler_count("products:create") == 1

        await second()
        assert realtime.subscriptions.collections == []
        assert socket.emitted_events("unsubscribe") == [{"collection": "products"}]
        assert socket.handler_count("products:create") == 0

    async def test_handle_is_idempotent(
        self, realtime: RealtimeClient, socket_factory: FakeSocketFactory
    ):
        socket = await connected_socket(realtime, socket_factory)
        handle = await realtime.subscribe("products", MagicMock())
        await realtime.subscribe("products", MagicMock())

        await handle()
        await handle()

        assert not handle.active
        assert realtime.subscriptions.callback_count("products") == 1
        assert socket.emitted_events("unsubscribe") == []

    async def test_rejected_subscribe_stays_registered(
        self, realtime: RealtimeClient, socket_factory: FakeSocketFactory
    ):
        socket = await connected_socket(realtime, socket_factory)
        socket.ack_response = {"status": "error", "message": "Forbidden"}
        callback = MagicMock()

        await realtime.subscribe("secrets", callback)
        await socket.fire("secrets:create", payload("create", "secrets", id=1))

        assert realtime.subscriptions.collections == ["secrets"]
        callback.assert_called_once()

    async def test_subscribe_before_connect(
        self, realtime: RealtimeClient, socket_factory: FakeSocketFactory
    ):
        """Registered offline, sent once the connection comes up."""
        callback = MagicMock()
        await realtime.subscribe("products", callback)

        socket = await connected_socket(realtime, socket_factory)
        await socket.fire("products:create", payload("create", id=1))

        assert socket.emitted_events("subscribe") == [{"collection": "products"}]
        callback.assert_called_once_with(payload("create", id=1))

    async def test_removal_while_first_subscribe_in_flight(
        self, realtime: RealtimeClient, socket_factory: FakeSocketFactory
    ):
        """A sibling added and removed during the first send keeps the record."""
        socket = await connected_socket(realtime, socket_factory)
        socket.emit_delay = 0.01
        first = MagicMock()

        pending = asyncio.create_task(realtime.subscribe("products", first))
        await asyncio.sleep(0)
        second = await realtime.subscribe("products", MagicMock())
        await second()
        handle = await pending

        event = payload("create", id=1)
        await socket.fire("products:create", event)

        first.assert_called_once_with(event)
        assert realtime.subscriptions.collections == ["products"]
        assert socket.handler_count("products:create") == 1
        assert socket.emitted_events("unsubscribe") == []

        await handle()
        assert socket.emitted_events("unsubscribe") == [{"collection": "products"}]
        assert socket.handler_count("products:create") == 0


class TestDispatch:
    """Tests for event delivery."""

    async def test_delivers_to_every_callback(
        self, realtime: RealtimeClient, socket_factory: FakeSocketFactory
    ):
        socket = await connected_socket(realtime, socket_factory)
        first, second = MagicMock(), MagicMock()
        await realtime.subscribe("products", first)
        await realtime.subscribe("products", second)
        event = payload("update", id=3)

        await socket.fire("products:update", event)

        first.assert_called_once_with(event)
        second.assert_called_once_with(event)

    async def test_failing_callback_isolated(
        self, realtime: RealtimeClient, socket_factory: FakeSocketFactory
    ):
        socket = await connected_socket(realtime, socket_factory)
        broken = MagicMock(side_effect=RuntimeError("callback broke"))
        healthy = MagicMock()
        await realtime.subscribe("products", broken)
        await realtime.subscribe("products", healthy)

        await socket.fire("products:delete", payload("delete", id=1))

        broken.assert_called_once()
        healthy.assert_called_once()

    async def test_async_callback(
        self, realtime: RealtimeClient, socket_factory: FakeSocketFactory
    ):
        socket = await connected_socket(realtime, socket_factory)
        received: list[dict[str, Any]] = []

        async def callback(event: dict[str, Any]) -> None:
            received.append(event)

        await realtime.subscribe("products", callback)
        await socket.fire("products:create", payload("create", id=1))

        assert received == [payload("create", id=1)]

    async def test_self_unsubscribe_during_dispatch(
        self, realtime: RealtimeClient, socket_factory: FakeSocketFactory
    ):
        """A callback removing itself mid-dispatch skips no sibling."""
        socket = await connected_socket(realtime, socket_factory)
        calls: list[str] = []
        handles: dict[str, Any] = {}

        async def once(event: dict[str, Any]) -> None:
            calls.append("once")
            await handles["once"]()

        handles["once"] = await realtime.subscribe("products", once)
        await realtime.subscribe("products", lambda event: calls.append("always"))

        await socket.fire("products:create", payload("create", id=1))
        await socket.fire("products:create", payload("create", id=2))

        assert calls == ["once", "always", "always"]

    async def test_action_filter(
        self, realtime: RealtimeClient, socket_factory: FakeSocketFactory
    ):
        socket = await connected_socket(realtime, socket_factory)
        created = MagicMock()
        await realtime.on("products", "create", created)

        await socket.fire("products:update", payload("update", id=1))
        await socket.fire("products:create", payload("create", id=2))

        created.assert_called_once_with({"id": 2})

    async def test_on_any(self, realtime: RealtimeClient, socket_factory: FakeSocketFactory):
        socket = await connected_socket(realtime, socket_factory)
        await realtime.subscribe("products", MagicMock())
        await realtime.subscribe("orders", MagicMock())
        seen = MagicMock()

        handle = await realtime.on_any(seen)
        await socket.fire("orders:create", payload("create", "orders", id=1))

        seen.assert_called_once_with("orders", payload("create", "orders", id=1))
        assert realtime.subscriptions.callback_count("orders") == 2

        await handle()
        assert realtime.subscriptions.callback_count("orders") == 1


class TestReplay:
    """Tests for resubscription after reconnect."""

    async def test_reconnect_replays_without_duplicates(
        self, realtime: RealtimeClient, socket_factory: FakeSocketFactory
    ):
        socket = await connected_socket(realtime, socket_factory)
        products, orders = MagicMock(), MagicMock()
        await realtime.subscribe("products", products)
        await realtime.subscribe("orders", orders)

        await socket.drop()
        assert realtime.subscriptions.collections == ["products", "orders"]
        await socket.recover()

        assert socket.emitted_events("subscribe") == [
            {"collection": "products"},
            {"collection": "orders"},
            {"collection": "products"},
            {"collection": "orders"},
        ]
        assert socket.handler_count("products:create") == 1

        event = payload("create", id=1)
        await socket.fire("products:create", event)
        products.assert_called_once_with(event)
        orders.assert_not_called()

    async def test_replay_all_is_idempotent(
        self, realtime: RealtimeClient, socket_factory: FakeSocketFactory
    ):
        socket = await connected_socket(realtime, socket_factory)
        callback = MagicMock()
        await realtime.subscribe("products", callback)

        await realtime.subscriptions.replay_all()
        await realtime.subscriptions.replay_all()
        await socket.fire("products:create", payload("create", id=1))

        assert socket.handler_count("products:create") == 1
        callback.assert_called_once()

    async def test_explicit_disconnect_clears(
        self, realtime: RealtimeClient, socket_factory: FakeSocketFactory
    ):
        """Three collections and two executions are dropped; a new subscribe sends once."""
        socket = await connected_socket(realtime, socket_factory)
        for collection in ("products", "orders", "users"):
            await realtime.subscribe(collection, MagicMock())
        await realtime.subscribe_to_execution("exec-1", MagicMock())
        await realtime.subscribe_to_execution(2, MagicMock())

        await realtime.disconnect()

        assert realtime.subscriptions.collections == []
        assert realtime.executions.execution_ids == []
        assert socket.handler_count("products:create") == 0
        assert socket.handler_count("workflow:execution:update") == 0

        await realtime.connect()
        new_socket = socket_factory.last
        assert new_socket is not socket
        await realtime.subscribe("products", MagicMock())

        assert new_socket.emitted_events("subscribe") == [{"collection": "products"}]
