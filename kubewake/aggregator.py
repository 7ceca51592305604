"""
Multi-cluster event aggregation.

The Aggregator owns every per-cluster store and produces the merged view the
presentation layer reads. Any store change, selection change or search change
triggers a full recomputation:

1. Select source stores ("all" = every participating store, otherwise exactly
   the named ones).
2. Concatenate their events.
3. Stable sort by last timestamp descending, count descending on ties.
4. Apply the case-insensitive free-text filter over message, involved object
   name, reason and cluster tag.

Namespace/type/reason/kind facets are applied by the server subscription or at
fetch time, never here, so the live and polling paths cannot disagree.

Each recomputation publishes a new immutable AggregatedView; readers holding an
older snapshot keep a consistent copy.
"""

from collections import Counter
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from .constants import ALL_CLUSTERS
from .logger import log, log_exception
from .models import AggregatedView, DeltaMessage, EventRecord
from .registry import ClusterRegistry
from .store import ClusterEventStore
from .timestamps import timestamp_seconds

Listener = Callable[[AggregatedView], None]


def sort_key(event: EventRecord) -> Tuple[float, int]:
    """Key for newest-first, highest-count-first ordering (ascending sort on negated values)."""
    ts = event.last_timestamp or event.first_timestamp
    return (-timestamp_seconds(ts), -event.count)


def matches_text(event: EventRecord, needle: str) -> bool:
    """Case-insensitive substring match; ``needle`` must already be lower-cased."""
    return (
        needle in event.message.lower()
        or needle in event.involved_object_name.lower()
        or needle in event.reason.lower()
        or needle in event.cluster_tag.lower()
    )


def filter_text(events: Iterable[EventRecord], term: str) -> Tuple[EventRecord, ...]:
    if not term:
        return tuple(events)
    needle = term.lower()
    return tuple(e for e in events if matches_text(e, needle))


class Aggregator:
    """
    Merges per-cluster stores into one sorted, filtered, searchable view.

    Attributes:
        stores: Per-cluster stores keyed by cluster tag
        registry: Optional cluster registry restricting "all clusters" to connected ones
        max_events_per_cluster: Bound handed to every store created here

    Example:
        ```python
        agg = Aggregator()
        agg.apply(delta)
        agg.select(["prod"])
        agg.set_search("backoff")
        for event in agg.snapshot.events:
            print(event.cluster_tag, event.reason)
        ```
    """

    def __init__(self, registry: Optional[ClusterRegistry] = None, max_events_per_cluster: Optional[int] = None):
        self.registry = registry
        self.max_events_per_cluster = max_events_per_cluster
        self.stores: Dict[str, ClusterEventStore] = {}
        self._selection: Set[str] = {ALL_CLUSTERS}
        self._search = ''
        self._listeners: List[Listener] = []
        self._snapshot = AggregatedView()

    @property
    def snapshot(self) -> AggregatedView:
        return self._snapshot

    @property
    def selection(self) -> Set[str]:
        return set(self._selection)

    @property
    def search(self) -> str:
        return self._search

    @property
    def all_selected(self) -> bool:
        return ALL_CLUSTERS in self._selection

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def store_for(self, cluster_tag: str) -> ClusterEventStore:
        """Return the cluster's store, creating it on first use."""
        store = self.stores.get(cluster_tag)
        if store is None:
            store = ClusterEventStore(cluster_tag, self.max_events_per_cluster, on_change=self._on_store_change)
            self.stores[cluster_tag] = store
        return store

    def apply(self, delta: DeltaMessage) -> bool:
        """Route a delta to its cluster's store. Returns whether anything changed."""
        return self.store_for(delta.cluster_tag).apply(delta)

    def load_cluster(self, cluster_tag: str, events: Iterable[EventRecord]) -> None:
        self.store_for(cluster_tag).load(events)

    def mark_loading(self, cluster_tag: str) -> None:
        self.store_for(cluster_tag).mark_loading()

    def mark_failed(self, cluster_tag: str, error: str) -> None:
        self.store_for(cluster_tag).mark_failed(error)

    def select(self, clusters: Iterable[str]) -> None:
        """Set the cluster selection; include "all" to aggregate every participating store."""
        selection = set(clusters)
        if selection == self._selection:
            return
        self._selection = selection
        self.recompute()

    def set_search(self, term: Optional[str]) -> None:
        term = (term or '').strip()
        if term == self._search:
            return
        self._search = term
        self.recompute()

    def participating(self) -> List[str]:
        """Cluster tags that take part in an "all clusters" view."""
        tags = sorted(self.stores)
        if self.registry is not None:
            connected = {c.context for c in self.registry.connected()}
            if connected:
                tags = [t for t in tags if t in connected]
        return tags

    def selected_clusters(self) -> List[str]:
        if self.all_selected:
            return self.participating()
        return sorted(t for t in self._selection if t in self.stores)

    def is_loading(self) -> bool:
        return any(s.state.loading for s in self.stores.values())

    def errors(self) -> Dict[str, str]:
        return {tag: s.state.last_error for tag, s in self.stores.items() if s.state.last_error}

    def _on_store_change(self, store: ClusterEventStore) -> None:
        self.recompute()

    def recompute(self) -> AggregatedView:
        """Rebuild and publish the merged view from scratch."""
        merged: List[EventRecord] = []
        for tag in self.selected_clusters():
            merged.extend(self.stores[tag].events)
        merged.sort(key=sort_key)

        presented = filter_text(merged, self._search)

        reasons: Counter = Counter()
        for e in merged:
            if e.reason:
                reasons[e.reason] += e.count
        view = AggregatedView(
            events=presented,
            total=len(merged),
            reasons=tuple(sorted(reasons.items(), key=lambda kv: (-kv[1], kv[0]))),
            namespaces=tuple(sorted({e.namespace for e in merged if e.namespace})),
            kinds=tuple(sorted({e.involved_object_kind for e in merged if e.involved_object_kind})),
            types=tuple(sorted({e.type for e in merged if e.type})),
            warnings=sum(1 for e in presented if e.type == 'Warning'),
            normals=sum(1 for e in presented if e.type == 'Normal'),
        )
        self._snapshot = view
        for listener in list(self._listeners):
            try:
                listener(view)
            except Exception as e:
                log_exception("[aggregate] listener failed", e)
        log.debug(f"[aggregate] recomputed total={view.total} presented={len(view.events)}")
        return view
