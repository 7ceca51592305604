"""
Polling path for clusters that are not on the live stream.

The poller periodically refetches each cluster's full event listing from the
backend's REST endpoint and loads it into the cluster's store through the same
reducer the stream uses. Single-valued facets are sent to the backend as query
parameters; multi-valued ones are applied to the fetched listing, so the
presented events match what the stream subscription would have delivered.

A failed fetch never raises: it is recorded as the store's last error and the
events already buffered for that cluster stay visible.
"""

import asyncio
from typing import Dict, FrozenSet, Iterable, List, Optional

import httpx

from .aggregator import Aggregator
from .constants import DEFAULT_EVENTS_LIST_LIMIT, DEFAULT_POLL_INTERVAL_SECONDS, EVENTS_LIST_PATH
from .exceptions import PollError, ProtocolError
from .logger import log, log_exception
from .models import EventRecord, Subscription
from .protocol import decode_event


def _single(values: FrozenSet[str]) -> str:
    return next(iter(values)) if len(values) == 1 else ''


def build_list_params(
    cluster: str,
    facets: Subscription,
    kinds: FrozenSet[str] = frozenset(),
    limit: int = DEFAULT_EVENTS_LIST_LIMIT
) -> Dict[str, str]:
    """Query parameters for the backend listing endpoint (empty value = no filter)."""
    namespace = '' if facets.all_namespaces else _single(facets.namespaces)
    return {
        'context': cluster,
        'namespace': namespace,
        'type': _single(facets.types),
        'reason': _single(facets.reasons),
        'involvedObjectKind': _single(kinds),
        'limit': str(limit),
    }


def filter_fetched(events: Iterable[EventRecord], facets: Subscription, kinds: FrozenSet[str] = frozenset()) -> List[EventRecord]:
    """Apply the facets the backend could not filter on to a fetched listing."""
    return [e for e in events if facets.matches(e) and (not kinds or e.involved_object_kind in kinds)]


class EventPoller:
    """
    Periodic full refetch of cluster event listings.

    Attributes:
        client: httpx.AsyncClient whose base_url points at the backend
        aggregator: Aggregator owning the stores to fill
        facets: Namespace/type/reason filters (clusters are ignored here)
        kinds: Involved object kinds to keep (empty = all)
        limit: ``limit`` sent to the listing endpoint

    Example:
        ```python
        async with httpx.AsyncClient(base_url="http://localhost:8080") as http:
            poller = EventPoller(http, aggregator)
            await poller.poll_once(["prod", "staging"])
        ```
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        aggregator: Aggregator,
        facets: Optional[Subscription] = None,
        kinds: Iterable[str] = (),
        limit: int = DEFAULT_EVENTS_LIST_LIMIT
    ):
        self.client = client
        self.aggregator = aggregator
        self.facets = facets or Subscription()
        self.kinds = frozenset(k for k in kinds if k)
        self.limit = limit

    async def fetch_cluster(self, cluster: str) -> List[EventRecord]:
        """
        Fetch and decode one cluster's listing.

        Raises:
            PollError: On transport errors, non-2xx responses or malformed payloads
        """
        params = build_list_params(cluster, self.facets, self.kinds, self.limit)
        try:
            resp = await self.client.get(EVENTS_LIST_PATH, params=params)
            resp.raise_for_status()
            payload = resp.json()
        except httpx.HTTPStatusError as e:
            raise PollError(f"Failed to fetch events from {cluster}: HTTP {e.response.status_code}") from e
        except (httpx.HTTPError, ValueError) as e:
            raise PollError(f"Failed to fetch events from {cluster}: {e}") from e

        items = payload.get('events') if isinstance(payload, dict) else None
        if items is None:
            items = []
        if not isinstance(items, list):
            raise PollError(f"Event listing for {cluster} is not an array")

        events = []
        for item in items:
            try:
                events.append(decode_event(item, cluster))
            except ProtocolError as e:
                log.warning(f"[poll] skipping malformed event from {cluster}: {e}")
        return filter_fetched(events, self.facets, self.kinds)

    async def poll_cluster(self, cluster: str) -> bool:
        """Refetch one cluster into its store. Returns whether the fetch succeeded."""
        self.aggregator.mark_loading(cluster)
        try:
            events = await self.fetch_cluster(cluster)
        except PollError as e:
            log.warning(f"[poll] {e}")
            self.aggregator.mark_failed(cluster, str(e))
            return False
        self.aggregator.load_cluster(cluster, events)
        log.debug(f"[poll] loaded {len(events)} events from {cluster}")
        return True

    async def poll_once(self, clusters: Iterable[str]) -> Dict[str, bool]:
        """Refetch every cluster concurrently."""
        targets = sorted(set(clusters))
        if not targets:
            return {}
        results = await asyncio.gather(*(self.poll_cluster(c) for c in targets))
        return dict(zip(targets, results))

    async def run(self, clusters_fn, interval: float = DEFAULT_POLL_INTERVAL_SECONDS) -> None:
        """Poll ``clusters_fn()`` every ``interval`` seconds until cancelled."""
        log.info(f"[poll] refresh interval={interval}s")
        while True:
            try:
                await self.poll_once(clusters_fn())
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log_exception("[poll] refresh cycle failed", e)
            await asyncio.sleep(interval)
