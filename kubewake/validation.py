"""
Input validation for Kubewake.

This module provides validation functions for command-line arguments and
configuration values. Each function returns the normalized value or raises
ConfigurationError with a descriptive message.

Key Functions:
- validate_port: Validates port numbers (1-65535)
- validate_host: Validates host strings
- validate_interval: Validates reconnect and polling intervals
- validate_capacity: Validates buffer and store capacities
- validate_backend_url: Validates the backend base URL
- validate_stream_url: Validates an explicit WebSocket URL

Example:
    ```python
    try:
        port = validate_port(8090)
        url = validate_backend_url("http://localhost:8080/")
    except ConfigurationError as e:
        print(f"Validation failed: {e}")
    ```
"""

from urllib.parse import urlparse

from .exceptions import ConfigurationError, InvalidCapacityError


def validate_port(port: int) -> int:
    """
    Validate port number for server binding.

    Raises:
        ConfigurationError: If port is not an integer or outside 1-65535
    """
    if isinstance(port, bool) or not isinstance(port, int) or port < 1 or port > 65535:
        raise ConfigurationError(f"Port must be an integer between 1 and 65535, got: {port}")
    return port


def validate_host(host: str) -> str:
    """
    Validate host string for server binding.

    Returns:
        str: The trimmed host string

    Raises:
        ConfigurationError: If host is empty or too long
    """
    if not host or not host.strip():
        raise ConfigurationError("Host cannot be empty")

    host = host.strip()
    if len(host) > 253:  # DNS name length limit
        raise ConfigurationError("Host name too long")

    return host


def validate_interval(interval: float, name: str = "Interval", minimum: float = 0.1) -> float:
    """
    Validate a timer interval in seconds.

    Args:
        interval: Interval in seconds
        name: Human-readable setting name for error messages
        minimum: Smallest accepted value

    Raises:
        ConfigurationError: If interval is not a number or is below ``minimum``
    """
    if isinstance(interval, bool) or not isinstance(interval, (int, float)) or interval <= 0:
        raise ConfigurationError(f"{name} must be a positive number, got: {interval}")
    if interval < minimum:
        raise ConfigurationError(f"{name} should be at least {minimum} seconds")
    return float(interval)


def validate_capacity(capacity: int, name: str = "Capacity") -> int:
    """
    Validate a buffer or store capacity.

    Raises:
        InvalidCapacityError: If capacity is not a positive integer
    """
    if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity <= 0:
        raise InvalidCapacityError(f"{name} must be a positive integer, got: {capacity}")
    return capacity


def validate_backend_url(url: str) -> str:
    """
    Validate the backend base URL.

    Returns:
        str: The URL without a trailing slash

    Raises:
        ConfigurationError: If the URL is not an absolute http(s) URL
    """
    if not url or not url.strip():
        raise ConfigurationError("Backend URL cannot be empty")
    url = url.strip().rstrip('/')
    parsed = urlparse(url)
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        raise ConfigurationError(f"Backend URL must be an absolute http(s) URL, got: {url}")
    return url


def validate_stream_url(url: str) -> str:
    """
    Validate an explicit delta stream URL.

    Raises:
        ConfigurationError: If the URL is not an absolute ws(s) URL
    """
    if not url or not url.strip():
        raise ConfigurationError("Stream URL cannot be empty")
    url = url.strip()
    parsed = urlparse(url)
    if parsed.scheme not in ('ws', 'wss') or not parsed.netloc:
        raise ConfigurationError(f"Stream URL must be an absolute ws(s) URL, got: {url}")
    return url
