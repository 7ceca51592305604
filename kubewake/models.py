"""
Data models for Kubewake.

This module defines the data structures used throughout the Kubewake engine. It
provides type-safe representations of Kubernetes events, stream deltas,
subscriptions, per-cluster store state and engine configuration.

Key Models:
- EventRecord: One observed cluster event
- DeltaKind / DeltaMessage: A single incremental update from the stream
- Subscription: What the client wants the server to push
- ClusterStoreState: Per-cluster event collection plus loading/error flags
- ConnectionState: Lifecycle of the delta stream connection
- AggregatedView: Published, immutable snapshot of the merged view
- ClusterInfo: A known cluster and its connectivity
- ActivityEntry: One line of the engine's activity log
- EngineConfig / ServerConfig: Configuration parameters

Events and snapshots are frozen dataclasses so that readers can hold on to them
while the engine publishes newer ones.

Example:
    ```python
    event = EventRecord(
        name="api-7d9.17a",
        namespace="default",
        type="Warning",
        reason="BackOff",
        message="Back-off restarting failed container",
        count=3,
        cluster_tag="prod",
    )
    ```
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Any, Optional, Tuple, FrozenSet, Iterable

from .constants import (
    ALL_NAMESPACES, DEFAULT_BACKEND_URL, DEFAULT_RECONNECT_INTERVAL_SECONDS,
    DEFAULT_POLL_INTERVAL_SECONDS, DEFAULT_MAX_EVENTS_PER_CLUSTER,
    DEFAULT_ACTIVITY_CAPACITY, DEFAULT_EVENTS_LIST_LIMIT, EVENTS_WS_PATH
)


@dataclass(frozen=True)
class EventRecord:
    """
    One observed Kubernetes event.

    Attributes:
        name: Event object name
        namespace: Namespace of the event
        type: Event type (Normal, Warning, or anything else the cluster reports)
        reason: Event reason code
        message: Human-readable event message
        count: Number of occurrences (never negative)
        first_timestamp: First occurrence, ISO-8601
        last_timestamp: Most recent occurrence, ISO-8601
        involved_object_kind: Kind of the object the event is about
        involved_object_name: Name of the object the event is about
        source: Combined reporting source ("component@host" or controller)
        source_component: Reporting component
        source_host: Reporting host
        cluster_tag: Identifier of the cluster the event came from

    Two records with the same ``key`` in the same cluster are the same logical
    event at different points of its lifecycle. The same namespace and name in
    different clusters are unrelated events.
    """
    name: str
    namespace: str
    type: str = ''
    reason: str = ''
    message: str = ''
    count: int = 0
    first_timestamp: str = ''
    last_timestamp: str = ''
    involved_object_kind: str = ''
    involved_object_name: str = ''
    source: str = ''
    source_component: str = ''
    source_host: str = ''
    cluster_tag: str = ''

    @property
    def key(self) -> Tuple[str, str, str]:
        return (self.cluster_tag, self.namespace, self.name)

    def to_dict(self) -> Dict[str, Any]:
        """Render the camelCase shape used on the wire and by the HTTP surface."""
        return {
            'name': self.name,
            'namespace': self.namespace,
            'type': self.type,
            'reason': self.reason,
            'message': self.message,
            'count': self.count,
            'firstTimestamp': self.first_timestamp,
            'lastTimestamp': self.last_timestamp,
            'involvedObjectKind': self.involved_object_kind,
            'involvedObjectName': self.involved_object_name,
            'source': self.source,
            'sourceComponent': self.source_component,
            'sourceHost': self.source_host,
            'clusterTag': self.cluster_tag,
        }


class DeltaKind(str, Enum):
    ADDED = 'ADDED'
    MODIFIED = 'MODIFIED'
    DELETED = 'DELETED'


@dataclass(frozen=True)
class DeltaMessage:
    """
    A single incremental update from the delta stream.

    Attributes:
        kind: ADDED, MODIFIED or DELETED
        event: The event the update describes
        cluster_tag: Cluster the update belongs to (routing key)
        received_at: Client-side receive time (not server time)
        sent_at: Server ``timestamp`` field, informational only

    A delta is consumed once by the reducer and then discarded; only its effect
    on the store persists.
    """
    kind: DeltaKind
    event: EventRecord
    cluster_tag: str
    received_at: datetime
    sent_at: str = ''


def _normalize(values: Optional[Iterable[str]]) -> FrozenSet[str]:
    if not values:
        return frozenset()
    return frozenset(v for v in values if v)


@dataclass(frozen=True)
class Subscription:
    """
    Declarative filter sent to the server describing which deltas to push.

    Attributes:
        clusters: Cluster tags to stream
        namespaces: Namespaces to stream (empty or containing "all" = every namespace)
        types: Event types to stream (empty = every type)
        reasons: Event reasons to stream (empty = every reason)

    Sending a subscription replaces the previous one for the connection; it is
    never additive.

    Example:
        ```python
        sub = Subscription.build(clusters=["prod"], types=["Warning"])
        ```
    """
    clusters: FrozenSet[str] = frozenset()
    namespaces: FrozenSet[str] = frozenset()
    types: FrozenSet[str] = frozenset()
    reasons: FrozenSet[str] = frozenset()

    @classmethod
    def build(
        cls,
        clusters: Optional[Iterable[str]] = None,
        namespaces: Optional[Iterable[str]] = None,
        types: Optional[Iterable[str]] = None,
        reasons: Optional[Iterable[str]] = None,
    ) -> 'Subscription':
        return cls(_normalize(clusters), _normalize(namespaces), _normalize(types), _normalize(reasons))

    @property
    def all_namespaces(self) -> bool:
        return not self.namespaces or ALL_NAMESPACES in self.namespaces

    def matches(self, event: EventRecord) -> bool:
        """Whether ``event`` passes the namespace, type and reason facets."""
        if not self.all_namespaces and event.namespace not in self.namespaces:
            return False
        if self.types and event.type not in self.types:
            return False
        if self.reasons and event.reason not in self.reasons:
            return False
        return True


@dataclass(frozen=True)
class ClusterStoreState:
    """
    State of one cluster's event store.

    Attributes:
        events: Ordered event collection, newest insertions first
        loading: Whether a full refetch is in flight
        last_error: Message of the last failed refetch, if any
    """
    events: Tuple[EventRecord, ...] = ()
    loading: bool = False
    last_error: Optional[str] = None


class ConnectionState(str, Enum):
    CLOSED = 'CLOSED'
    CONNECTING = 'CONNECTING'
    OPEN = 'OPEN'


@dataclass(frozen=True)
class AggregatedView:
    """
    Immutable snapshot of the merged view published by the aggregator.

    Attributes:
        events: Presented collection (sorted, after free-text filtering)
        total: Number of merged events before free-text filtering
        reasons: (reason, summed count) pairs, highest count first
        namespaces: Distinct namespaces in the merged collection
        kinds: Distinct involved object kinds in the merged collection
        types: Distinct event types in the merged collection
        warnings: Warning events in the presented collection
        normals: Normal events in the presented collection
    """
    events: Tuple[EventRecord, ...] = ()
    total: int = 0
    reasons: Tuple[Tuple[str, int], ...] = ()
    namespaces: Tuple[str, ...] = ()
    kinds: Tuple[str, ...] = ()
    types: Tuple[str, ...] = ()
    warnings: int = 0
    normals: int = 0


@dataclass
class ClusterInfo:
    """
    A cluster known to the registry.

    Attributes:
        name: Display name
        context: Kubeconfig context, used as the cluster tag
        connected: Whether the backend currently holds a connection to it
        error: Last connection error reported for it
    """
    name: str
    context: str
    connected: bool = False
    error: Optional[str] = None


@dataclass(frozen=True)
class ActivityEntry:
    at: datetime
    level: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {'at': self.at.isoformat(), 'level': self.level, 'message': self.message}


@dataclass
class EngineConfig:
    """
    Engine configuration parameters.

    Attributes:
        backend_url: Base HTTP URL of the dashboard backend
        stream_url: WebSocket URL of the delta stream (derived from backend_url if None)
        stream: Whether to use the live stream (False = polling only)
        clusters: Clusters to poll or stream when no registry is available
        reconnect_interval: Seconds between reconnect attempts
        poll_interval: Seconds between full refetches on the polling path
        max_events_per_cluster: Bound on each cluster store
        activity_capacity: Capacity of the activity ring buffer
        list_limit: ``limit`` passed to the backend listing endpoint
    """
    backend_url: str = DEFAULT_BACKEND_URL
    stream_url: Optional[str] = None
    stream: bool = True
    clusters: Tuple[str, ...] = ()
    reconnect_interval: float = DEFAULT_RECONNECT_INTERVAL_SECONDS
    poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS
    max_events_per_cluster: int = DEFAULT_MAX_EVENTS_PER_CLUSTER
    activity_capacity: int = DEFAULT_ACTIVITY_CAPACITY
    list_limit: int = DEFAULT_EVENTS_LIST_LIMIT

    def resolved_stream_url(self) -> str:
        if self.stream_url:
            return self.stream_url
        base = self.backend_url.rstrip('/')
        if base.startswith('https://'):
            base = 'wss://' + base[len('https://'):]
        elif base.startswith('http://'):
            base = 'ws://' + base[len('http://'):]
        return base + EVENTS_WS_PATH


@dataclass
class ServerConfig:
    """
    Server configuration parameters.

    Attributes:
        host: Server bind host
        port: Server port
        log_level: Application log level
        uvicorn_log_level: Uvicorn server log level
        engine: Engine configuration
        use_kubeconfig: Discover clusters from a kubeconfig instead of the backend
        kubeconfig: Path to kubeconfig (defaults to kube rules)
        context: Kubeconfig context to treat as connected
    """
    host: str
    port: int
    log_level: str
    uvicorn_log_level: str
    engine: EngineConfig = field(default_factory=EngineConfig)
    use_kubeconfig: bool = False
    kubeconfig: Optional[str] = None
    context: Optional[str] = None
