"""
Constants and configuration for Kubewake.

This module contains the configuration constants used throughout the Kubewake
engine, including stream reconnect timing, polling intervals, buffer capacities
and default server values.

Constants are organized by category:
- Stream: Reconnect interval and backend endpoint paths
- Polling intervals: Default intervals for background refresh tasks
- Buffer limits: Capacities of stores and ring buffers
- Selection: Sentinel values used by cluster and namespace selection
- Logging: Default log levels
- Server defaults: Default host, port and backend configuration
"""

# Stream
DEFAULT_RECONNECT_INTERVAL_SECONDS = 5.0
DEFAULT_OPEN_TIMEOUT_SECONDS = 10.0
EVENTS_WS_PATH = "/api/v1/events/ws"

# Backend REST endpoints
EVENTS_LIST_PATH = "/api/v1/events/list"
CLUSTERS_CONFIG_PATH = "/api/v1/clusters/config"
DEFAULT_EVENTS_LIST_LIMIT = 2000
DEFAULT_HTTP_TIMEOUT_SECONDS = 15.0

# Polling intervals (in seconds)
DEFAULT_POLL_INTERVAL_SECONDS = 30.0
AGE_TICK_SECONDS = 1.0

# Buffer limits
DEFAULT_MAX_EVENTS_PER_CLUSTER = 5000
DEFAULT_LOG_BUFFER_CAPACITY = 10000
DEFAULT_ACTIVITY_CAPACITY = 1000
DEFAULT_WINDOW_SIZE = 100

# Selection
ALL_CLUSTERS = "all"
ALL_NAMESPACES = "all"

# Logging
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_UVICORN_LOG_LEVEL = "info"

# Server defaults
DEFAULT_HOST = "localhost"
DEFAULT_PORT = 8090
DEFAULT_BACKEND_URL = "http://localhost:8080"
