"""
FastAPI server and WebSocket handling for Kubewake.

This module exposes an EventEngine to browser views: a small REST API for
reading windowed slices of the merged event view and for driving the engine
(connect, disconnect, subscribe, select clusters, search), plus a WebSocket
endpoint that pushes status updates whenever the view changes.

Key Components:
- Hub: WebSocket client set with coalesced status broadcasts
- create_app: Build the FastAPI application around an engine
- run_server: Main server startup and configuration

The engine is passed in explicitly; the app's lifespan starts and stops it.

Example:
    ```python
    engine = EventEngine(EngineConfig(backend_url="http://localhost:8080"))
    app = create_app(engine)
    ```
"""

import asyncio
import json
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Set

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from . import __version__
from .constants import DEFAULT_UVICORN_LOG_LEVEL, DEFAULT_WINDOW_SIZE
from .engine import EventEngine
from .exceptions import ConfigurationError
from .logger import configure_logging, log, log_exception
from .models import ServerConfig, Subscription
from .registry import ClusterRegistry


class SubscribeRequest(BaseModel):
    clusters: List[str] = []
    namespaces: List[str] = []
    types: List[str] = []
    reasons: List[str] = []


class SelectRequest(BaseModel):
    clusters: List[str]


class SearchRequest(BaseModel):
    term: str = ''


class FacetsRequest(BaseModel):
    namespaces: List[str] = []
    types: List[str] = []
    reasons: List[str] = []
    kinds: List[str] = []


class Hub:
    """
    WebSocket clients of one app and their status broadcasts.

    Engine notifications only mark the hub dirty; a single broadcaster task
    sends one status message per burst of changes, so a storm of deltas does
    not turn into a storm of frames.

    Attributes:
        engine: Engine whose status is broadcast
        clients: Set of connected WebSocket clients
    """

    def __init__(self, engine: EventEngine):
        self.engine = engine
        self.clients: Set[WebSocket] = set()
        self._dirty = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    def mark_dirty(self, kind: str = 'events') -> None:
        self._dirty.set()

    def start(self) -> None:
        self.engine.add_listener(self.mark_dirty)
        self._task = asyncio.get_running_loop().create_task(self._broadcast_loop())

    async def stop(self) -> None:
        self.engine.remove_listener(self.mark_dirty)
        if self._task is not None:
            self._task.cancel()
            await asyncio.wait([self._task])
            self._task = None

    async def _broadcast_loop(self) -> None:
        while True:
            await self._dirty.wait()
            self._dirty.clear()
            await self.broadcast({'type': 'status', 'data': self.engine.status()})

    async def broadcast(self, msg: Dict[str, Any]) -> None:
        """Broadcast message to all connected WebSocket clients."""
        if not self.clients:
            return

        dead = []
        try:
            txt = json.dumps(msg, separators=(',', ':'))
        except (TypeError, ValueError) as e:
            log_exception("[broadcast] Failed to serialize message", e)
            return

        for ws in list(self.clients):
            try:
                await ws.send_text(txt)
            except Exception as e:
                log_exception("[broadcast] Failed to send to client", e)
                dead.append(ws)

        for d in dead:
            self.clients.discard(d)


def _window(engine: EventEngine, start: int, end: int, query: str = '') -> Dict[str, Any]:
    if query:
        matches = engine.view.search_in_buffer(query)
        size = len(matches)
        lo, hi = min(max(start, 0), size), min(max(end, 0), size)
        rows = matches[lo:hi] if lo < hi else ()
    else:
        size = len(engine.view)
        rows = engine.view.windowed(start, end)
    return {
        'events': [engine.render_event(e) for e in rows],
        'size': size,
        'total': engine.view.total,
        'start': start,
        'end': end,
    }


def create_app(engine: EventEngine) -> FastAPI:
    """
    Build the FastAPI application for ``engine``.

    Routes:
        GET  /api/status      connectivity, selection and counts
        GET  /api/events      windowed rows (start, end, q)
        GET  /api/reasons     reasons with summed counts
        GET  /api/facets      distinct namespaces, kinds and types
        GET  /api/activity    recent activity log entries
        POST /api/connect     open the delta stream
        POST /api/disconnect  close the delta stream
        POST /api/subscribe   replace the stream subscription
        POST /api/select      change the cluster selection
        POST /api/search      change the free-text filter
        POST /api/facets      change namespace/type/reason/kind facets
        POST /api/refresh     full refetch of the selected clusters
        WS   /ws              status pushes and windowed reads
    """
    hub = Hub(engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await engine.start()
        hub.start()
        try:
            yield
        finally:
            await hub.stop()
            await engine.stop()

    app = FastAPI(title='kubewake', version=__version__, lifespan=lifespan)
    app.state.engine = engine
    app.state.hub = hub

    @app.get("/")
    async def index():
        return {'name': 'kubewake', 'version': __version__}

    @app.get('/api/status')
    async def status():
        return engine.status()

    @app.get('/api/events')
    async def events(start: int = 0, end: int = DEFAULT_WINDOW_SIZE, q: str = ''):
        return _window(engine, start, end, q.strip())

    @app.get('/api/reasons')
    async def reasons():
        return {'reasons': [{'reason': r, 'count': c} for r, c in engine.snapshot.reasons]}

    @app.get('/api/facets')
    async def facets():
        snap = engine.snapshot
        return {'namespaces': list(snap.namespaces), 'kinds': list(snap.kinds), 'types': list(snap.types)}

    @app.get('/api/activity')
    async def activity(limit: int = 200, q: str = ''):
        entries = engine.activity.search(q) if q else engine.activity.recent(limit)
        return {
            'entries': [e.to_dict() for e in entries[-limit:]] if limit > 0 else [],
            'capacity': engine.activity.capacity,
            'atCapacity': engine.activity.is_at_capacity(),
        }

    @app.post('/api/connect')
    async def connect():
        engine.connect()
        return {'ok': True, 'state': engine.client.state.value}

    @app.post('/api/disconnect')
    async def disconnect():
        await engine.disconnect()
        return {'ok': True, 'state': engine.client.state.value}

    @app.post('/api/subscribe')
    async def subscribe(payload: SubscribeRequest):
        sub = Subscription.build(payload.clusters, payload.namespaces, payload.types, payload.reasons)
        await engine.subscribe(sub)
        log.info(f"[api] subscription clusters={sorted(sub.clusters)}")
        return {'ok': True, 'sent': engine.is_connected}

    @app.post('/api/select')
    async def select(payload: SelectRequest):
        await engine.select_clusters(payload.clusters)
        return {'ok': True, 'selection': sorted(engine.aggregator.selection)}

    @app.post('/api/search')
    async def search(payload: SearchRequest):
        engine.set_search(payload.term)
        return {'ok': True, 'presented': len(engine.view)}

    @app.post('/api/facets')
    async def set_facets(payload: FacetsRequest):
        await engine.set_facets(payload.namespaces, payload.types, payload.reasons, payload.kinds)
        return {'ok': True}

    @app.post('/api/refresh')
    async def refresh():
        results = await engine.refresh()
        return {'ok': all(results.values()), 'clusters': results}

    @app.websocket("/ws")
    async def websocket_endpoint(ws: WebSocket):
        await ws.accept()
        log.info("[ws] client connected")
        hub.clients.add(ws)
        try:
            await ws.send_text(json.dumps({'type': 'status', 'data': engine.status()}))
            while True:
                try:
                    raw = await ws.receive_text()
                    msg = json.loads(raw)
                except json.JSONDecodeError as e:
                    log.warning(f"[ws] Invalid JSON received: {e}")
                    continue

                if not isinstance(msg, dict):
                    log.warning("[ws] Ignoring non-object message")
                    continue
                action = msg.get('action')
                if action == 'window':
                    try:
                        start = int(msg.get('start', 0))
                        end = int(msg.get('end', DEFAULT_WINDOW_SIZE))
                    except (TypeError, ValueError):
                        log.warning("[ws] Invalid window request")
                        continue
                    data = _window(engine, start, end, str(msg.get('q') or '').strip())
                    await ws.send_text(json.dumps({'type': 'window', 'data': data}))
                elif action == 'search':
                    engine.set_search(str(msg.get('term') or ''))
                elif action == 'select':
                    clusters = msg.get('clusters')
                    if not isinstance(clusters, list):
                        log.warning("[ws] Invalid select request - clusters must be a list")
                        continue
                    await engine.select_clusters(str(c) for c in clusters)
                else:
                    log.warning(f"[ws] Unknown action: {action}")

        except WebSocketDisconnect:
            log.info("[ws] client disconnected")
        except Exception as e:
            log_exception("[ws] WebSocket error", e)
        finally:
            hub.clients.discard(ws)

    return app


async def run_server(config: ServerConfig) -> None:
    """Run the Kubewake server until interrupted."""
    configure_logging(config.log_level)
    registry = None
    if config.use_kubeconfig:
        try:
            registry = await ClusterRegistry.from_kubeconfig(config.kubeconfig, config.context)
        except ConfigurationError as e:
            log_exception("[server] Failed to load Kubernetes configuration", e)
            raise
    engine = EventEngine(config.engine, registry=registry)
    app = create_app(engine)

    import uvicorn
    uvicorn_log_level = os.getenv('KUBEWAKE_UVICORN_LEVEL', config.uvicorn_log_level or DEFAULT_UVICORN_LOG_LEVEL)
    uv_config = uvicorn.Config(app, host=config.host, port=config.port, log_level=uvicorn_log_level)
    server = uvicorn.Server(uv_config)
    await server.serve()
