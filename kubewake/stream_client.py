"""
Delta stream client for Kubewake.

This module owns the single persistent WebSocket connection to the dashboard
backend's event stream. It decodes inbound delta frames, replays the current
subscription after every (re)connect, and reconnects on a fixed interval after
any failure until ``disconnect()`` is called.

Connection lifecycle:
    CLOSED -> CONNECTING -> OPEN -> CLOSED -> (after reconnect_interval) CONNECTING ...

Delivery notes:
- Frames are applied in arrival order; the connection is a single FIFO channel.
- The protocol has no sequence numbers. Deltas the server emits while the client
  is disconnected are lost, not queued; a later full refetch is the only way to
  recover them.
- A malformed frame is logged and dropped; it never stops the reader.

Example:
    ```python
    client = DeltaStreamClient("ws://localhost:8080/api/v1/events/ws", on_delta=aggregator.apply)
    await client.subscribe(Subscription.build(clusters=["prod"]))
    client.connect()
    ...
    await client.disconnect()
    ```
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional, Union

from websockets.asyncio.client import connect as ws_connect

from .constants import DEFAULT_RECONNECT_INTERVAL_SECONDS, DEFAULT_OPEN_TIMEOUT_SECONDS
from .exceptions import ProtocolError, StreamConnectionError
from .logger import log, log_exception
from .models import ConnectionState, DeltaMessage, Subscription
from .protocol import decode_delta, encode_subscription

Connector = Callable[[str], Awaitable[Any]]


async def open_websocket(url: str) -> Any:
    """Open a websockets client connection to ``url``."""
    return await ws_connect(url, open_timeout=DEFAULT_OPEN_TIMEOUT_SECONDS)


class DeltaStreamClient:
    """
    Owner of the delta stream connection and its wire protocol.

    Attributes:
        url: WebSocket URL of the event stream
        on_delta: Called synchronously with each decoded DeltaMessage
        reconnect_interval: Seconds to wait before each reconnect attempt
        auto_reconnect: Whether ``connect()`` arms the reconnect policy
        on_state_change: Optional callback receiving each new ConnectionState
        on_error: Optional callback receiving StreamConnectionError / ProtocolError
        last_error: Message of the last connection error (cleared on OPEN)
        attempts: Total number of connection attempts made

    Only ``disconnect()`` disables reconnection. Connection failures never raise
    out of this class; they become ``state``, ``last_error`` and a scheduled retry.
    """

    def __init__(
        self,
        url: str,
        on_delta: Callable[[DeltaMessage], Any],
        *,
        reconnect_interval: float = DEFAULT_RECONNECT_INTERVAL_SECONDS,
        auto_reconnect: bool = True,
        connector: Optional[Connector] = None,
        on_state_change: Optional[Callable[[ConnectionState], None]] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
    ):
        self.url = url
        self.on_delta = on_delta
        self.reconnect_interval = reconnect_interval
        self.auto_reconnect = auto_reconnect
        self.on_state_change = on_state_change
        self.on_error = on_error
        self.last_error: Optional[str] = None
        self.attempts = 0

        self._connector = connector or open_websocket
        self._state = ConnectionState.CLOSED
        self._ws: Any = None
        self._task: Optional[asyncio.Task] = None
        self._reconnect_handle: Optional[asyncio.TimerHandle] = None
        self._should_reconnect = False
        self._subscription: Optional[Subscription] = None
        self._opened = asyncio.Event()
        # bumped on every connect/disconnect; callbacks from an older connection are ignored
        self._generation = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.OPEN

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None

    @property
    def subscription(self) -> Optional[Subscription]:
        return self._subscription

    def connect(self) -> None:
        """
        Open the connection unless it is already open or opening.

        Re-arms the reconnect policy and cancels any pending reconnect timer so
        attempts never overlap. Must be called from a running event loop.
        """
        if self._state in (ConnectionState.OPEN, ConnectionState.CONNECTING):
            return
        loop = asyncio.get_running_loop()
        self._cancel_reconnect()
        self._should_reconnect = self.auto_reconnect
        self._generation += 1
        self._set_state(ConnectionState.CONNECTING)
        self._task = loop.create_task(self._run(self._generation))

    async def disconnect(self) -> None:
        """
        Close the connection and permanently stop reconnecting.

        The pending reconnect timer is cancelled and the frame reader detached
        before the socket is closed, so the close cannot re-arm reconnection.
        Calling it again is a no-op.
        """
        self._should_reconnect = False
        self._cancel_reconnect()
        self._generation += 1
        task, ws = self._task, self._ws
        self._task = None
        self._ws = None
        self._opened.clear()
        if self._state is not ConnectionState.CLOSED:
            self._set_state(ConnectionState.CLOSED)
            log.info("[stream] disconnected")

        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            await asyncio.wait([task])
        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                log_exception("[stream] error while closing connection", e)

    async def subscribe(self, subscription: Subscription) -> None:
        """
        Record ``subscription`` as current and send it if the connection is open.

        When not open, the most recently recorded subscription is sent on the
        next successful open.
        """
        self._subscription = subscription
        if self._state is ConnectionState.OPEN:
            await self._send_subscription(subscription)

    async def wait_until_open(self, timeout: Optional[float] = None) -> bool:
        """Wait for the connection to reach OPEN; returns False on timeout."""
        try:
            await asyncio.wait_for(self._opened.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        self._state = state
        if self.on_state_change:
            try:
                self.on_state_change(state)
            except Exception as e:
                log_exception("[stream] state callback failed", e)

    def _report(self, error: Exception) -> None:
        if self.on_error:
            try:
                self.on_error(error)
            except Exception as e:
                log_exception("[stream] error callback failed", e)

    def _cancel_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

    def _schedule_reconnect(self) -> None:
        self._cancel_reconnect()
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(self.reconnect_interval, self._reconnect)
        log.info(f"[stream] reconnecting in {self.reconnect_interval}s")

    def _reconnect(self) -> None:
        self._reconnect_handle = None
        if self._should_reconnect:
            self.connect()

    async def _run(self, generation: int) -> None:
        self.attempts += 1
        log.info(f"[stream] connecting to {self.url} (attempt {self.attempts})")
        try:
            ws = await self._connector(self.url)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._handle_closed(StreamConnectionError(f"connect failed: {e.__class__.__name__}: {e}"), generation)
            return

        if generation != self._generation:
            await ws.close()
            return
        self._ws = ws
        await self._handle_open(ws)

        error: Optional[Exception] = None
        try:
            async for frame in ws:
                if generation != self._generation:
                    return
                self._handle_frame(frame)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = StreamConnectionError(f"connection lost: {e.__class__.__name__}: {e}")
        else:
            error = StreamConnectionError("connection closed by server")
        if generation == self._generation:
            try:
                await ws.close()
            except Exception as e:
                log_exception("[stream] error while closing connection", e)
        self._handle_closed(error, generation)

    async def _handle_open(self, ws: Any) -> None:
        self.last_error = None
        self._set_state(ConnectionState.OPEN)
        self._opened.set()
        log.info("[stream] connected")
        if self._subscription is not None:
            await self._send_subscription(self._subscription)

    def _handle_closed(self, error: Optional[Exception], generation: int) -> None:
        if generation != self._generation:
            return
        self._ws = None
        self._task = None
        self._opened.clear()
        if error is not None:
            self.last_error = str(error)
            log.warning(f"[stream] {error}")
            self._report(error)
        self._set_state(ConnectionState.CLOSED)
        if self._should_reconnect:
            self._schedule_reconnect()

    def _handle_frame(self, frame: Union[str, bytes]) -> None:
        try:
            delta = decode_delta(frame)
        except ProtocolError as e:
            log.warning(f"[stream] dropping malformed frame: {e}")
            self._report(e)
            return
        except Exception as e:
            log_exception("[stream] dropping undecodable frame", e)
            self._report(ProtocolError(f"undecodable frame: {e.__class__.__name__}: {e}"))
            return
        try:
            self.on_delta(delta)
        except Exception as e:
            log_exception(f"[stream] delta handler failed for {delta.kind.value} {delta.cluster_tag}", e)

    async def _send_subscription(self, subscription: Subscription) -> bool:
        ws = self._ws
        if ws is None:
            return False
        try:
            await ws.send(encode_subscription(subscription))
        except Exception as e:
            log_exception("[stream] failed to send subscription", e)
            return False
        log.debug(f"[stream] subscribed clusters={sorted(subscription.clusters)}")
        return True
