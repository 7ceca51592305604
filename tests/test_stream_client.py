"""Tests for DeltaStreamClient.

A fake connector stands in for the websockets client so the reconnect policy,
subscription replay and frame handling can be exercised without a server.
"""

import asyncio
import json

from kubewake import stream_client
from kubewake.models import ConnectionState, DeltaKind, Subscription
from kubewake.protocol import encode_subscription
from kubewake.stream_client import DeltaStreamClient

URL = "ws://backend.test/api/v1/events/ws"

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class FakeConnection:
    """Async-iterable connection fed by the test."""

    def __init__(self) -> None:
        self.sent = []
        self.closed = False
        self._frames: asyncio.Queue = asyncio.Queue()

    async def send(self, data: str) -> None:
        self.sent.append(data)

    def feed(self, frame) -> None:
        self._frames.put_nowait(frame)

    def drop(self) -> None:
        self._frames.put_nowait(ConnectionResetError("peer reset"))

    def finish(self) -> None:
        self._frames.put_nowait(None)

    async def close(self) -> None:
        self.closed = True
        self._frames.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._frames.get()
        if item is None:
            raise StopAsyncIteration
        if isinstance(item, Exception):
            raise item
        return item


class FakeConnector:
    """Hands out queued outcomes; a fresh FakeConnection once they run out."""

    def __init__(self, *outcomes) -> None:
        self.outcomes = list(outcomes)
        self.calls = 0
        self.connections = []

    async def __call__(self, url: str):
        self.calls += 1
        outcome = self.outcomes.pop(0) if self.outcomes else FakeConnection()
        if isinstance(outcome, Exception):
            raise outcome
        self.connections.append(outcome)
        return outcome


async def _until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


def _frame(kind: str = "ADDED", name: str = "api.1", cluster: str = "prod") -> str:
    return json.dumps({
        "type": kind,
        "cluster": cluster,
        "timestamp": "2024-01-15T10:00:00Z",
        "event": {"name": name, "namespace": "default", "count": 1},
    })


def _client(connector, deltas=None, errors=None, interval: float = 0.02) -> DeltaStreamClient:
    return DeltaStreamClient(
        URL,
        (deltas if deltas is not None else []).append,
        reconnect_interval=interval,
        connector=connector,
        on_error=(errors if errors is not None else []).append,
    )


# ---------------------------------------------------------------------------
# Subscription replay
# ---------------------------------------------------------------------------


class TestSubscriptionReplay:
    async def test_only_latest_subscription_is_sent_on_open(self) -> None:
        connector = FakeConnector()
        client = _client(connector)
        s0 = Subscription.build(clusters=["a"])
        s1 = Subscription.build(clusters=["a", "b"], types=["Warning"])
        await client.subscribe(s0)
        await client.subscribe(s1)
        try:
            client.connect()
            assert await client.wait_until_open(1.0)
            await asyncio.sleep(0)
            assert connector.connections[0].sent == [encode_subscription(s1)]
        finally:
            await client.disconnect()

    async def test_subscribe_while_open_sends_immediately(self) -> None:
        connector = FakeConnector()
        client = _client(connector)
        try:
            client.connect()
            assert await client.wait_until_open(1.0)
            assert connector.connections[0].sent == []
            sub = Subscription.build(clusters=["prod"])
            await client.subscribe(sub)
            assert connector.connections[0].sent == [encode_subscription(sub)]
        finally:
            await client.disconnect()

    async def test_subscription_replayed_after_reconnect(self) -> None:
        connector = FakeConnector()
        client = _client(connector)
        sub = Subscription.build(clusters=["prod"])
        await client.subscribe(sub)
        try:
            client.connect()
            assert await client.wait_until_open(1.0)
            connector.connections[0].finish()
            await _until(lambda: connector.calls == 2 and client.is_connected)
            await asyncio.sleep(0)
            assert connector.connections[1].sent == [encode_subscription(sub)]
        finally:
            await client.disconnect()


# ---------------------------------------------------------------------------
# Reconnect policy
# ---------------------------------------------------------------------------


class TestReconnect:
    async def test_connect_failure_schedules_retry(self) -> None:
        errors = []
        states = []
        connector = FakeConnector(OSError("connection refused"))
        client = _client(connector, errors=errors)
        client.on_state_change = states.append
        try:
            client.connect()
            assert await client.wait_until_open(1.0)
            assert connector.calls == 2
            assert client.last_error is None
            assert len(errors) == 1
            assert "connection refused" in str(errors[0])
            assert states == [
                ConnectionState.CONNECTING,
                ConnectionState.CLOSED,
                ConnectionState.CONNECTING,
                ConnectionState.OPEN,
            ]
        finally:
            await client.disconnect()

    async def test_dropped_connection_reconnects(self) -> None:
        connector = FakeConnector()
        client = _client(connector)
        try:
            client.connect()
            assert await client.wait_until_open(1.0)
            connector.connections[0].drop()
            await _until(lambda: connector.calls == 2 and client.is_connected)
            assert connector.connections[0].closed
            assert client.attempts == 2
        finally:
            await client.disconnect()

    async def test_failure_records_last_error_until_next_open(self) -> None:
        connector = FakeConnector(OSError("boom"), OSError("boom again"))
        client = _client(connector, interval=0.5)
        try:
            client.connect()
            await _until(lambda: client.reconnect_pending)
            assert client.state is ConnectionState.CLOSED
            assert "boom" in client.last_error
        finally:
            await client.disconnect()

    async def test_connect_is_noop_while_open(self) -> None:
        connector = FakeConnector()
        client = _client(connector)
        try:
            client.connect()
            assert await client.wait_until_open(1.0)
            client.connect()
            await asyncio.sleep(0.05)
            assert connector.calls == 1
        finally:
            await client.disconnect()

    async def test_auto_reconnect_disabled(self) -> None:
        connector = FakeConnector(OSError("refused"))
        client = _client(connector)
        client.auto_reconnect = False
        client.connect()
        await _until(lambda: client.state is ConnectionState.CLOSED)
        await asyncio.sleep(0.1)
        assert connector.calls == 1
        assert not client.reconnect_pending


# ---------------------------------------------------------------------------
# Disconnect
# ---------------------------------------------------------------------------


class TestDisconnect:
    async def test_disconnect_cancels_pending_retry(self) -> None:
        connector = FakeConnector(OSError("refused"))
        client = _client(connector, interval=0.05)
        client.connect()
        await _until(lambda: client.reconnect_pending)
        await client.disconnect()
        assert not client.reconnect_pending
        await asyncio.sleep(0.2)
        assert connector.calls == 1
        assert client.state is ConnectionState.CLOSED

    async def test_disconnect_closes_open_socket_without_retry(self) -> None:
        connector = FakeConnector()
        client = _client(connector)
        client.connect()
        assert await client.wait_until_open(1.0)
        await client.disconnect()
        assert connector.connections[0].closed
        await asyncio.sleep(0.1)
        assert connector.calls == 1
        assert client.state is ConnectionState.CLOSED
        assert not client.reconnect_pending

    async def test_disconnect_while_connecting(self) -> None:
        gate = asyncio.Event()

        async def slow_connector(url):
            await gate.wait()
            return FakeConnection()

        client = _client(slow_connector)
        client.connect()
        assert client.state is ConnectionState.CONNECTING
        await client.disconnect()
        gate.set()
        await asyncio.sleep(0.05)
        assert client.state is ConnectionState.CLOSED

    async def test_double_disconnect_is_safe(self) -> None:
        connector = FakeConnector()
        client = _client(connector)
        client.connect()
        assert await client.wait_until_open(1.0)
        await client.disconnect()
        await client.disconnect()
        assert client.state is ConnectionState.CLOSED

    async def test_connect_after_disconnect_rearms(self) -> None:
        connector = FakeConnector()
        client = _client(connector)
        client.connect()
        assert await client.wait_until_open(1.0)
        await client.disconnect()
        client.connect()
        try:
            assert await client.wait_until_open(1.0)
            assert connector.calls == 2
        finally:
            await client.disconnect()


# ---------------------------------------------------------------------------
# Frames
# ---------------------------------------------------------------------------


class TestFrames:
    async def test_frames_delivered_in_order(self) -> None:
        deltas = []
        connector = FakeConnector()
        client = _client(connector, deltas=deltas)
        try:
            client.connect()
            assert await client.wait_until_open(1.0)
            conn = connector.connections[0]
            conn.feed(_frame("ADDED", "a"))
            conn.feed(_frame("MODIFIED", "a"))
            conn.feed(_frame("DELETED", "a"))
            await _until(lambda: len(deltas) == 3)
            assert [d.kind for d in deltas] == [DeltaKind.ADDED, DeltaKind.MODIFIED, DeltaKind.DELETED]
        finally:
            await client.disconnect()

    async def test_malformed_frame_is_dropped(self) -> None:
        deltas = []
        errors = []
        connector = FakeConnector()
        client = _client(connector, deltas=deltas, errors=errors)
        try:
            client.connect()
            assert await client.wait_until_open(1.0)
            conn = connector.connections[0]
            conn.feed("{not json")
            conn.feed(json.dumps({"type": "ADDED", "cluster": "prod", "event": {"namespace": "x"}}))
            conn.feed(_frame("ADDED", "good"))
            await _until(lambda: len(deltas) == 1)
            assert deltas[0].event.name == "good"
            assert len(errors) == 2
            assert client.is_connected
        finally:
            await client.disconnect()

    async def test_handler_failure_does_not_stop_reader(self) -> None:
        seen = []

        def handler(delta):
            seen.append(delta.event.name)
            if delta.event.name == "bad":
                raise RuntimeError("handler bug")

        connector = FakeConnector()
        client = DeltaStreamClient(URL, handler, reconnect_interval=0.02, connector=connector)
        try:
            client.connect()
            assert await client.wait_until_open(1.0)
            connector.connections[0].feed(_frame(name="bad"))
            connector.connections[0].feed(_frame(name="ok"))
            await _until(lambda: seen == ["bad", "ok"])
            assert client.is_connected
        finally:
            await client.disconnect()

    async def test_deeply_nested_frame_is_dropped(self) -> None:
        deltas = []
        errors = []
        connector = FakeConnector()
        client = _client(connector, deltas=deltas, errors=errors)
        try:
            client.connect()
            assert await client.wait_until_open(1.0)
            conn = connector.connections[0]
            conn.feed("[" * 100000 + "]" * 100000)
            conn.feed(_frame("ADDED", "after"))
            await _until(lambda: len(deltas) == 1)
            assert deltas[0].event.name == "after"
            assert client.is_connected
            assert not client.reconnect_pending
            assert not conn.closed
            assert connector.calls == 1
            assert len(errors) == 1
        finally:
            await client.disconnect()

    async def test_unexpected_decode_failure_is_dropped(self, monkeypatch) -> None:
        real_decode = stream_client.decode_delta

        def flaky_decode(frame, received_at=None):
            if frame == "explode":
                raise RuntimeError("decoder bug")
            return real_decode(frame, received_at)

        monkeypatch.setattr(stream_client, "decode_delta", flaky_decode)
        deltas = []
        connector = FakeConnector()
        client = _client(connector, deltas=deltas)
        try:
            client.connect()
            assert await client.wait_until_open(1.0)
            connector.connections[0].feed("explode")
            connector.connections[0].feed(_frame("ADDED", "after"))
            await _until(lambda: len(deltas) == 1)
            assert client.is_connected
            assert connector.calls == 1
        finally:
            await client.disconnect()
