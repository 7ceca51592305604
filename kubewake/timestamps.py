"""
Timestamp parsing and age labels.

Kubernetes and the dashboard backend exchange ISO-8601 strings. The aggregator
needs them as sortable numbers and the presentation layer needs short
human-readable age labels ("12s", "4m", "3h", "2d").
"""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 string into an aware UTC datetime, or None if unusable."""
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith('Z') or text.endswith('z'):
        text = text[:-1] + '+00:00'
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def timestamp_seconds(value: Optional[str]) -> float:
    """Epoch seconds for an ISO-8601 string; unparseable values sort as the epoch."""
    parsed = parse_timestamp(value)
    if parsed is None:
        return 0.0
    return parsed.timestamp()


def format_age(timestamp: Optional[str], now: Optional[datetime] = None) -> str:
    """
    Render the time elapsed since ``timestamp`` as a compact age label.

    Uses the largest whole unit among days, hours, minutes and seconds. Future
    timestamps render as ``0s``; unparseable ones render as an empty string.

    Example:
        ```python
        format_age("2024-01-15T10:00:00Z", now=parse_timestamp("2024-01-15T12:30:00Z"))
        # '2h'
        ```
    """
    parsed = parse_timestamp(timestamp)
    if parsed is None:
        return ''
    now = now or utc_now()
    diff = (now - parsed).total_seconds()
    if diff < 0:
        return '0s'

    seconds = int(diff)
    minutes = seconds // 60
    hours = minutes // 60
    days = hours // 24
    if days > 0:
        return f"{days}d"
    if hours > 0:
        return f"{hours}h"
    if minutes > 0:
        return f"{minutes}m"
    return f"{seconds}s"
