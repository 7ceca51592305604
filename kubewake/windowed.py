"""
Windowed read access to the aggregated event view.

Virtualized tables only render the rows on screen, so they ask for a slice of
the presented collection instead of the whole thing. Reads always go against
the aggregator's latest published snapshot.
"""

from typing import Tuple

from .aggregator import Aggregator, filter_text
from .models import EventRecord


class WindowedView:
    """
    Read-only slicing and search facade over an Aggregator.

    Example:
        ```python
        view = WindowedView(aggregator)
        rows = view.windowed(0, 50)
        hits = view.search_in_buffer("oomkilled")
        ```
    """

    def __init__(self, aggregator: Aggregator):
        self._aggregator = aggregator

    @property
    def events(self) -> Tuple[EventRecord, ...]:
        return self._aggregator.snapshot.events

    @property
    def total(self) -> int:
        """Number of merged events before free-text filtering."""
        return self._aggregator.snapshot.total

    def __len__(self) -> int:
        return len(self.events)

    def windowed(self, start: int, end: int) -> Tuple[EventRecord, ...]:
        """Half-open slice [start, end) in current order; out-of-range indices clamp."""
        events = self.events
        size = len(events)
        start = min(max(start, 0), size)
        end = min(max(end, 0), size)
        if start >= end:
            return ()
        return events[start:end]

    def search_in_buffer(self, query: str) -> Tuple[EventRecord, ...]:
        """Case-insensitive substring search in existing order; an empty query returns everything."""
        return filter_text(self.events, (query or '').strip())
