"""
Command-line interface for Kubewake.

This module provides the command-line interface for Kubewake, handling argument
parsing, input validation, and server startup.

Key Functions:
- build_parser: Create and configure the argument parser
- build_config: Turn parsed arguments into a validated ServerConfig
- main: Main entry point for the CLI application

By default the engine streams deltas from the backend's WebSocket endpoint; with
``--no-stream`` it polls the backend's listing endpoint instead.

Example:
    ```bash
    # Live stream, clusters discovered from the backend
    kubewake serve --backend-url http://localhost:8080

    # Polling only, clusters from the local kubeconfig
    kubewake serve --no-stream --kubeconfig ~/.kube/config --poll-interval 15
    ```
"""

import argparse
import asyncio
import os
import sys
from typing import Optional, Sequence

from .constants import (
    DEFAULT_HOST, DEFAULT_PORT, DEFAULT_BACKEND_URL, DEFAULT_RECONNECT_INTERVAL_SECONDS,
    DEFAULT_POLL_INTERVAL_SECONDS, DEFAULT_MAX_EVENTS_PER_CLUSTER, DEFAULT_LOG_LEVEL,
    DEFAULT_UVICORN_LOG_LEVEL
)
from .exceptions import ConfigurationError
from .models import EngineConfig, ServerConfig
from .server import run_server
from .validation import (
    validate_port, validate_host, validate_interval, validate_capacity,
    validate_backend_url, validate_stream_url
)


def build_parser() -> argparse.ArgumentParser:
    """
    Build and configure the command-line argument parser.

    Environment Variables:
        KUBEWAKE_HOST: Default host to bind to (default: localhost)
        KUBEWAKE_PORT: Default port to bind to (default: 8090)
        KUBEWAKE_BACKEND_URL: Default backend base URL (default: http://localhost:8080)
    """
    env_host = os.getenv('KUBEWAKE_HOST', DEFAULT_HOST)
    env_port = os.getenv('KUBEWAKE_PORT', str(DEFAULT_PORT))
    env_backend = os.getenv('KUBEWAKE_BACKEND_URL', DEFAULT_BACKEND_URL)

    p = argparse.ArgumentParser("kubewake", description="Real-time multi-cluster Kubernetes event aggregation")
    p.add_argument("command", choices=['serve'], help="Subcommand to run (only 'serve' supported)")
    p.add_argument("--backend-url", default=env_backend, help="Dashboard backend base URL (env: KUBEWAKE_BACKEND_URL)")
    p.add_argument("--stream-url", default=None, help="Event stream WebSocket URL (default: derived from backend URL)")
    p.add_argument("--no-stream", action="store_true", help="Poll the listing endpoint instead of streaming deltas")
    p.add_argument("--cluster", action="append", default=[], help="Cluster context to watch (repeatable)")
    p.add_argument("--kubeconfig", default=None, help="Path to kubeconfig used for cluster discovery")
    p.add_argument("--context", default=None, help="Kubecontext treated as connected (with --kubeconfig)")
    p.add_argument("--host", default=env_host, help="Host to bind (env: KUBEWAKE_HOST)")
    p.add_argument("--port", type=int, default=env_port, help="Port for HTTP server (env: KUBEWAKE_PORT)")
    p.add_argument("--reconnect-interval", type=float, default=DEFAULT_RECONNECT_INTERVAL_SECONDS, help="Seconds between stream reconnect attempts")
    p.add_argument("--poll-interval", type=float, default=DEFAULT_POLL_INTERVAL_SECONDS, help="Seconds between full refetches when not streaming")
    p.add_argument("--max-events", type=int, default=DEFAULT_MAX_EVENTS_PER_CLUSTER, help="Maximum events kept per cluster")
    return p


def build_config(args: argparse.Namespace) -> ServerConfig:
    """
    Validate parsed arguments and build the server configuration.

    Raises:
        ConfigurationError: If any argument is invalid
    """
    engine = EngineConfig(
        backend_url=validate_backend_url(args.backend_url),
        stream_url=validate_stream_url(args.stream_url) if args.stream_url else None,
        stream=not args.no_stream,
        clusters=tuple(c.strip() for c in args.cluster if c and c.strip()),
        reconnect_interval=validate_interval(args.reconnect_interval, "Reconnect interval"),
        poll_interval=validate_interval(args.poll_interval, "Poll interval", minimum=1.0),
        max_events_per_cluster=validate_capacity(args.max_events, "Max events"),
    )
    return ServerConfig(
        host=validate_host(args.host),
        port=validate_port(args.port),
        log_level=os.getenv('KUBEWAKE_LOG_LEVEL', DEFAULT_LOG_LEVEL),
        uvicorn_log_level=os.getenv('KUBEWAKE_UVICORN_LEVEL', DEFAULT_UVICORN_LOG_LEVEL),
        engine=engine,
        use_kubeconfig=bool(args.kubeconfig or args.context),
        kubeconfig=args.kubeconfig,
        context=args.context,
    )


def main(argv: Optional[Sequence[str]] = None) -> None:
    """
    Main entry point for the Kubewake CLI application.

    Raises:
        SystemExit: On configuration errors (exit code 2) or server errors (exit code 1)
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = build_config(args)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(2)

    try:
        asyncio.run(run_server(config))
    except KeyboardInterrupt:
        print("\nShutting down...", file=sys.stderr)
    except Exception as e:
        print(f"Server error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":  # pragma: no cover
    main()
