"""
Event engine service object.

The EventEngine wires the delta stream client, the per-cluster stores, the
aggregator, the windowed view, the cluster registry and the polling path into
one explicitly constructed service with a ``start()`` / ``stop()`` lifecycle.
There is no module-level instance: whoever constructs the engine owns it and
hands it to the HTTP surface (or to tests).

All state changes happen on the event loop inside synchronous callbacks, so a
reader never observes a half-applied delta. Readers get immutable snapshots
from ``engine.view`` and ``engine.aggregator.snapshot``.

Example:
    ```python
    engine = EventEngine(EngineConfig(backend_url="http://localhost:8080"))
    await engine.start()
    await engine.select_clusters(["prod", "staging"])
    rows = engine.view.windowed(0, 50)
    await engine.stop()
    ```
"""

import asyncio
from typing import Any, Callable, Dict, Iterable, List, Optional

import httpx

from .aggregator import Aggregator
from .constants import AGE_TICK_SECONDS, DEFAULT_HTTP_TIMEOUT_SECONDS
from .exceptions import PollError
from .logger import log, log_exception
from .models import (
    ActivityEntry, AggregatedView, ConnectionState, DeltaMessage, EngineConfig, EventRecord, Subscription
)
from .poller import EventPoller
from .registry import ClusterRegistry
from .ring_buffer import LogBuffer
from .stream_client import Connector, DeltaStreamClient
from .timestamps import format_age, utc_now
from .windowed import WindowedView

EngineListener = Callable[[str], None]


class EventEngine:
    """
    Owner of the whole event aggregation pipeline.

    Attributes:
        config: Engine configuration
        registry: Known clusters and their connectivity
        aggregator: Per-cluster stores and the merged view
        view: WindowedView over the merged view
        client: The single DeltaStreamClient of this engine
        poller: Polling path (created on start)
        activity: Bounded log of connection and polling activity
        now: Time of the last age tick, used for age labels
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        registry: Optional[ClusterRegistry] = None,
        connector: Optional[Connector] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or EngineConfig()
        if registry is None:
            registry = ClusterRegistry.from_contexts(self.config.clusters)
        self.registry = registry
        self.aggregator = Aggregator(registry, self.config.max_events_per_cluster)
        self.view = WindowedView(self.aggregator)
        self.activity: LogBuffer[ActivityEntry] = LogBuffer(
            self.config.activity_capacity, search_fields=('message', 'level')
        )
        self.client = DeltaStreamClient(
            self.config.resolved_stream_url(),
            self.handle_delta,
            reconnect_interval=self.config.reconnect_interval,
            connector=connector,
            on_state_change=self._on_state_change,
            on_error=self._on_stream_error,
        )
        self.poller: Optional[EventPoller] = None
        self.facets = Subscription()
        self.kinds: frozenset = frozenset()
        self.now = utc_now()

        self._http = http_client
        self._owns_http = http_client is None
        self._tasks: List[asyncio.Task] = []
        self._listeners: List[EngineListener] = []
        self._started = False
        self._stopped = False
        self.aggregator.add_listener(self._on_view)

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(base_url=self.config.backend_url, timeout=DEFAULT_HTTP_TIMEOUT_SECONDS)
        return self._http

    @property
    def is_connected(self) -> bool:
        return self.client.is_connected

    @property
    def snapshot(self) -> AggregatedView:
        return self.aggregator.snapshot

    def add_listener(self, listener: EngineListener) -> None:
        """Register ``listener(kind)``; kind is "events", "tick" or "connection"."""
        self._listeners.append(listener)

    def remove_listener(self, listener: EngineListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, kind: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(kind)
            except Exception as e:
                log_exception("[engine] listener failed", e)

    def record(self, level: str, message: str) -> None:
        self.activity.push(ActivityEntry(utc_now(), level, message))

    # -- lifecycle -------------------------------------------------------

    async def start(self) -> None:
        """Start the age tick and either the live stream or the polling loop."""
        if self._started:
            return
        self._started = True
        self._stopped = False
        self.record('info', 'engine started')

        if not self.registry.clusters:
            try:
                await self.registry.refresh(self.http)
                self.record('info', f"loaded {len(self.registry.clusters)} clusters from backend")
            except PollError as e:
                log.warning(f"[engine] {e}")
                self.record('warning', str(e))

        self.poller = EventPoller(self.http, self.aggregator, self.facets, self.kinds, self.config.list_limit)
        loop = asyncio.get_running_loop()
        self._tasks.append(loop.create_task(self._age_tick()))
        if self.config.stream:
            self._tasks.append(loop.create_task(self._bootstrap_stream()))
        else:
            self._tasks.append(loop.create_task(self.poller.run(self.poll_targets, self.config.poll_interval)))
        log.info(f"[engine] started (stream={'on' if self.config.stream else 'off'})")

    async def stop(self) -> None:
        """Disconnect the stream, cancel background tasks and release the HTTP client. Safe to repeat."""
        if self._stopped or not self._started:
            return
        self._stopped = True
        self._started = False
        await self.client.disconnect()

        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.wait(tasks)

        if self._owns_http and self._http is not None:
            await self._http.aclose()
            self._http = None
        self.record('info', 'engine stopped')
        log.info("[engine] stopped")

    async def _bootstrap_stream(self) -> None:
        # initial population from the listing endpoint, then live deltas
        await self.refresh()
        await self.client.subscribe(self.derive_subscription())
        self.client.connect()

    async def _age_tick(self) -> None:
        while True:
            await asyncio.sleep(AGE_TICK_SECONDS)
            self.now = utc_now()
            self._notify('tick')

    # -- operations ------------------------------------------------------

    def connect(self) -> None:
        self.client.connect()

    async def disconnect(self) -> None:
        await self.client.disconnect()

    async def subscribe(self, subscription: Subscription) -> None:
        """Send ``subscription`` as-is and adopt its namespace/type/reason facets for polling."""
        self._set_facets(subscription.namespaces, subscription.types, subscription.reasons)
        await self.client.subscribe(subscription)

    async def select_clusters(self, clusters: Iterable[str]) -> None:
        """Change the cluster selection and resubscribe accordingly."""
        self.aggregator.select(clusters)
        if self.config.stream:
            await self.client.subscribe(self.derive_subscription())

    def set_search(self, term: Optional[str]) -> None:
        self.aggregator.set_search(term)

    async def set_facets(
        self,
        namespaces: Iterable[str] = (),
        types: Iterable[str] = (),
        reasons: Iterable[str] = (),
        kinds: Iterable[str] = ()
    ) -> None:
        """
        Change the namespace/type/reason/kind facets.

        Facets are filtered by the server subscription on the live path and at
        fetch time on the polling path, so the stores are refetched here.
        """
        self._set_facets(namespaces, types, reasons)
        self.kinds = frozenset(k for k in kinds if k)
        if self.poller is not None:
            self.poller.kinds = self.kinds
        if self.config.stream:
            await self.client.subscribe(self.derive_subscription())
        await self.refresh()

    def _set_facets(self, namespaces: Iterable[str], types: Iterable[str], reasons: Iterable[str]) -> None:
        self.facets = Subscription.build(namespaces=namespaces, types=types, reasons=reasons)
        if self.poller is not None:
            self.poller.facets = self.facets

    async def refresh(self) -> Dict[str, bool]:
        """Full refetch of every selected cluster through the polling path."""
        if self.poller is None:
            return {}
        return await self.poller.poll_once(self.derive_clusters())

    def handle_delta(self, delta: DeltaMessage) -> None:
        self.aggregator.apply(delta)

    def derive_clusters(self) -> List[str]:
        """Clusters the current selection asks for."""
        if self.aggregator.all_selected:
            connected = [c.context for c in self.registry.connected()]
            if connected:
                return connected
            return sorted(self.aggregator.stores)
        return sorted(self.aggregator.selection)

    def derive_subscription(self) -> Subscription:
        return Subscription.build(
            clusters=self.derive_clusters(),
            namespaces=self.facets.namespaces,
            types=self.facets.types,
            reasons=self.facets.reasons,
        )

    def poll_targets(self) -> List[str]:
        """Clusters refreshed by the polling loop (none while the live stream is used)."""
        if self.config.stream:
            return []
        return self.derive_clusters()

    # -- presentation helpers -------------------------------------------

    def render_event(self, event: EventRecord) -> Dict[str, Any]:
        row = event.to_dict()
        row['age'] = format_age(event.last_timestamp or event.first_timestamp, self.now)
        return row

    def status(self) -> Dict[str, Any]:
        snap = self.aggregator.snapshot
        return {
            'connected': self.client.is_connected,
            'state': self.client.state.value,
            'lastError': self.client.last_error,
            'reconnectPending': self.client.reconnect_pending,
            'stream': self.config.stream,
            'loading': self.aggregator.is_loading(),
            'errors': self.aggregator.errors(),
            'selection': sorted(self.aggregator.selection),
            'search': self.aggregator.search,
            'total': snap.total,
            'presented': len(snap.events),
            'warnings': snap.warnings,
            'normals': snap.normals,
            'clusters': [
                {'name': c.name, 'context': c.context, 'connected': c.connected, 'error': c.error}
                for _, c in sorted(self.registry.clusters.items())
            ],
            'now': self.now.isoformat(),
        }

    # -- callbacks -------------------------------------------------------

    def _on_view(self, view: AggregatedView) -> None:
        self._notify('events')

    def _on_state_change(self, state: ConnectionState) -> None:
        self.record('info', f"stream {state.value.lower()}")
        self._notify('connection')

    def _on_stream_error(self, error: Exception) -> None:
        self.record('warning', f"{error.__class__.__name__}: {error}")
