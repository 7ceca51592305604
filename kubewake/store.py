"""
Per-cluster event stores.

Each cluster's events live in a ClusterEventStore whose state only ever changes
through ``reduce_event``, the pure ADDED/MODIFIED/DELETED reducer. Both the live
stream and the polling path go through it, so the reducer is the single source
of truth regardless of how events arrive.

Reducer rules:
- ADDED prepends unconditionally. No duplicate-key check is made; if the server
  redelivers an ADDED after a reconnect the row appears twice.
- MODIFIED replaces the first record with the same (namespace, name) in place.
  A miss is dropped, never inserted.
- DELETED removes every record with the same (namespace, name). A miss is a no-op.

No-op outcomes return the prior state object itself.
"""

from dataclasses import replace
from typing import Callable, Iterable, Optional, Tuple

from .models import ClusterStoreState, DeltaKind, DeltaMessage, EventRecord
from .timestamps import utc_now


def _same_event(a: EventRecord, b: EventRecord) -> bool:
    return a.namespace == b.namespace and a.name == b.name


def reduce_event(
    state: ClusterStoreState,
    delta: DeltaMessage,
    max_events: Optional[int] = None
) -> ClusterStoreState:
    """
    Apply one delta to a cluster's store state.

    Args:
        state: Prior state of the cluster's store
        delta: The delta to apply
        max_events: Optional bound; an ADDED that overflows it drops records from the tail

    Returns:
        ClusterStoreState: The next state (``state`` itself when nothing changed)
    """
    event = delta.event
    if event.cluster_tag != delta.cluster_tag:
        event = replace(event, cluster_tag=delta.cluster_tag)
    events = state.events

    if delta.kind is DeltaKind.ADDED:
        updated: Tuple[EventRecord, ...] = (event,) + events
        if max_events is not None and len(updated) > max_events:
            updated = updated[:max_events]
        return replace(state, events=updated)

    if delta.kind is DeltaKind.MODIFIED:
        for i, existing in enumerate(events):
            if _same_event(existing, event):
                return replace(state, events=events[:i] + (event,) + events[i + 1:])
        return state

    if delta.kind is DeltaKind.DELETED:
        kept = tuple(e for e in events if not _same_event(e, event))
        if len(kept) == len(events):
            return state
        return replace(state, events=kept)

    return state


class ClusterEventStore:
    """
    Owner of one cluster's event state.

    Attributes:
        cluster_tag: Cluster this store belongs to
        max_events: Bound on the number of retained events (None = unbounded)

    ``on_change`` is called with the store after every state change. The
    presentation layer reads ``state`` / ``events`` snapshots only.

    Example:
        ```python
        store = ClusterEventStore("prod")
        store.apply(delta)
        print(len(store.events))
        ```
    """

    def __init__(
        self,
        cluster_tag: str,
        max_events: Optional[int] = None,
        on_change: Optional[Callable[['ClusterEventStore'], None]] = None
    ):
        self.cluster_tag = cluster_tag
        self.max_events = max_events
        self.on_change = on_change
        self._state = ClusterStoreState()

    @property
    def state(self) -> ClusterStoreState:
        return self._state

    @property
    def events(self) -> Tuple[EventRecord, ...]:
        return self._state.events

    def _set(self, state: ClusterStoreState) -> bool:
        if state is self._state:
            return False
        self._state = state
        if self.on_change:
            self.on_change(self)
        return True

    def apply(self, delta: DeltaMessage) -> bool:
        """Apply a delta routed to this cluster. Returns whether the state changed."""
        if delta.cluster_tag != self.cluster_tag:
            raise ValueError(f"delta for cluster {delta.cluster_tag!r} routed to store {self.cluster_tag!r}")
        return self._set(reduce_event(self._state, delta, self.max_events))

    def load(self, events: Iterable[EventRecord]) -> None:
        """
        Replace the collection with a full listing (polling path).

        The listing is fed through the ADDED reducer newest-last, so the final
        order equals the listing order. Clears the loading flag and last error.
        """
        now = utc_now()
        state = ClusterStoreState()
        for event in reversed(list(events)):
            delta = DeltaMessage(DeltaKind.ADDED, event, self.cluster_tag, now)
            state = reduce_event(state, delta)
        if self.max_events is not None and len(state.events) > self.max_events:
            state = replace(state, events=state.events[:self.max_events])
        self._set(state)

    def mark_loading(self) -> None:
        self._set(replace(self._state, loading=True, last_error=None))

    def mark_failed(self, error: str) -> None:
        """Record a failed refetch; already-buffered events are kept."""
        self._set(replace(self._state, loading=False, last_error=error))
