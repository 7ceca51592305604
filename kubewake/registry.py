"""
Cluster registry for Kubewake.

The registry supplies the set of known clusters and their connectivity. The
aggregator uses it to decide which stores take part in "all clusters" views,
and the engine uses it to decide which clusters to subscribe to or poll.

Clusters can be discovered two ways:
- from a kubeconfig, using the Kubernetes client's config loader
- from the dashboard backend's ``/api/v1/clusters/config`` endpoint

Example:
    ```python
    registry = await ClusterRegistry.from_kubeconfig(None, None)
    print([c.context for c in registry.connected()])
    ```
"""

import asyncio
from typing import Dict, Iterable, List, Optional

import httpx
from kubernetes import config
from kubernetes.config.config_exception import ConfigException

from .constants import CLUSTERS_CONFIG_PATH
from .exceptions import ConfigurationError, PollError
from .logger import log
from .models import ClusterInfo


class ClusterRegistry:
    """
    Known clusters keyed by context.

    Attributes:
        clusters: Dictionary of ClusterInfo keyed by context name
    """

    def __init__(self, clusters: Optional[Iterable[ClusterInfo]] = None):
        self.clusters: Dict[str, ClusterInfo] = {}
        for info in clusters or ():
            self.clusters[info.context] = info

    @classmethod
    def from_contexts(cls, contexts: Iterable[str], connected: bool = True) -> 'ClusterRegistry':
        return cls(ClusterInfo(name=c, context=c, connected=connected) for c in contexts)

    @classmethod
    async def from_kubeconfig(cls, kubeconfig: Optional[str], context: Optional[str]) -> 'ClusterRegistry':
        """
        Build a registry from the contexts of a kubeconfig file.

        Every context is known; only the requested context (or the kubeconfig's
        current context) is marked connected.

        Args:
            kubeconfig: Path to kubeconfig file (optional, uses default if None)
            context: Context to mark connected (optional, uses current context if None)

        Raises:
            ConfigurationError: If the kubeconfig cannot be read
        """
        def _load():
            return config.list_kube_config_contexts(config_file=kubeconfig)

        loop = asyncio.get_event_loop()
        try:
            contexts, active = await loop.run_in_executor(None, _load)
        except (ConfigException, OSError) as e:
            raise ConfigurationError(f"Failed to read kubeconfig: {e}") from e

        selected = context or (active or {}).get('name')
        infos = []
        for ctx in contexts or []:
            name = ctx.get('name')
            if not name:
                continue
            infos.append(ClusterInfo(name=name, context=name, connected=(name == selected)))
        log.info(f"[registry] loaded {len(infos)} contexts from kubeconfig, active={selected}")
        return cls(infos)

    async def refresh(self, client: httpx.AsyncClient) -> None:
        """
        Reload the cluster list from the backend.

        Raises:
            PollError: If the backend cannot be reached or returns an unusable payload
        """
        try:
            resp = await client.get(CLUSTERS_CONFIG_PATH)
            resp.raise_for_status()
            payload = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise PollError(f"Failed to fetch clusters: {e}") from e

        items = payload.get('clusters') if isinstance(payload, dict) else None
        if not isinstance(items, list):
            raise PollError("Cluster listing has no 'clusters' array")

        clusters: Dict[str, ClusterInfo] = {}
        for item in items:
            if not isinstance(item, dict) or not item.get('context'):
                continue
            ctx = str(item['context'])
            clusters[ctx] = ClusterInfo(
                name=str(item.get('name') or ctx),
                context=ctx,
                connected=bool(item.get('connected')),
                error=item.get('error') or None,
            )
        self.clusters = clusters
        log.debug(f"[registry] refreshed {len(clusters)} clusters")

    def get(self, context: str) -> Optional[ClusterInfo]:
        return self.clusters.get(context)

    def known(self) -> List[str]:
        return sorted(self.clusters)

    def connected(self) -> List[ClusterInfo]:
        return [c for _, c in sorted(self.clusters.items()) if c.connected]

    def set_connected(self, context: str, connected: bool, error: Optional[str] = None) -> None:
        info = self.clusters.get(context)
        if info is None:
            info = self.clusters[context] = ClusterInfo(name=context, context=context)
        info.connected = connected
        info.error = error
