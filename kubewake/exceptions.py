"""
Custom exceptions for Kubewake.

This module defines the exception classes used throughout Kubewake. Most of them
never leave the engine: stream and polling failures are converted into state
(connectivity flag, last-error strings) that the presentation layer observes.

Exception Hierarchy:
- KubewakeError: Base exception for all Kubewake-specific errors
  - StreamConnectionError: Transport failure or unexpected close of the delta stream
  - ProtocolError: A frame or payload that does not decode to the expected shape
  - PollError: A failed full refetch of a cluster's events
  - ConfigurationError: Raised when there's a configuration issue
    - InvalidCapacityError: Raised for a non-positive buffer capacity

A MODIFIED or DELETED delta for an unknown event and a ring buffer evicting its
oldest item are normal outcomes, not errors.

Example:
    ```python
    try:
        delta = decode_delta(frame)
    except ProtocolError as e:
        log.warning(f"[stream] dropping frame: {e}")
    ```
"""


class KubewakeError(Exception):
    """Base exception for Kubewake errors."""
    pass


class StreamConnectionError(KubewakeError):
    """Raised when the delta stream connection fails or closes unexpectedly."""
    pass


class ProtocolError(KubewakeError):
    """Raised when a frame or payload does not match the wire protocol."""
    pass


class PollError(KubewakeError):
    """Raised when a cluster's event listing cannot be fetched."""
    pass


class ConfigurationError(KubewakeError):
    """Raised when there's a configuration issue."""
    pass


class InvalidCapacityError(ConfigurationError, ValueError):
    """Raised when a buffer is constructed with a capacity below 1."""
    pass
