"""
Kubewake - Real-time multi-cluster Kubernetes event aggregation.

Kubewake keeps a live, bounded, queryable view of Kubernetes events streamed from
a dashboard backend over a single WebSocket connection, merged across any number
of clusters. Clusters that are not on the live stream are kept fresh by periodic
polling through the same reducer.

Key Features:
- One shared, auto-reconnecting delta stream with subscription replay
- Per-cluster event stores driven by ADDED/MODIFIED/DELETED deltas
- Merged, sorted and searchable view across clusters
- Windowed slices for virtualized rendering
- Bounded ring buffers for log-style streams
- Small JSON/WebSocket HTTP surface for browser views

Example:
    Basic usage:
    ```bash
    kubewake serve --backend-url http://localhost:8080
    ```

    Polling only, for two clusters:
    ```bash
    kubewake serve --no-stream --cluster prod --cluster staging
    ```
"""

__all__ = ["__version__"]
__version__ = "0.1.0"
