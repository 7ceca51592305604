"""
Ring buffer storage for bounded streams.

This module provides the fixed-capacity, overwrite-oldest buffer used for the
engine's activity backlog and for any log-style stream that must not grow
without bound.

Key Components:
- RingBuffer: Circular storage with batch appends and ordered snapshots
- LogBuffer: RingBuffer plus the helpers a log viewer needs (tail, window, search)

Every operation completes without suspending, so on the event loop a reader can
never observe a batch half applied.

Example:
    ```python
    buf = RingBuffer(3)
    for line in ("a", "b", "c", "d", "e"):
        buf.push(line)
    buf.get_all()  # ['c', 'd', 'e']
    ```
"""

from typing import Any, Generic, Iterable, Iterator, List, Optional, Sequence, TypeVar

from .constants import DEFAULT_LOG_BUFFER_CAPACITY
from .exceptions import InvalidCapacityError

T = TypeVar('T')


class RingBuffer(Generic[T]):
    """
    Fixed-capacity circular buffer that overwrites its oldest item when full.

    After any sequence of operations the buffer holds exactly the last
    ``min(capacity, total_pushed)`` items in their original relative order.

    Args:
        capacity: Maximum number of items retained (must be at least 1)

    Raises:
        InvalidCapacityError: If capacity is not a positive integer
    """

    def __init__(self, capacity: int):
        if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity <= 0:
            raise InvalidCapacityError(f"Ring buffer capacity must be a positive integer, got: {capacity!r}")
        self._capacity = capacity
        self._items: List[Optional[T]] = []
        self._head = 0  # next overwrite position once full

    @property
    def capacity(self) -> int:
        return self._capacity

    def push(self, item: T) -> None:
        """Append one item, evicting the oldest if at capacity."""
        if len(self._items) < self._capacity:
            self._items.append(item)
        else:
            self._items[self._head] = item
            self._head = (self._head + 1) % self._capacity

    def push_batch(self, items: Iterable[T]) -> None:
        """
        Append a sequence of items.

        If the batch is at least as large as the capacity, the buffer ends up
        holding exactly the last ``capacity`` items of the batch and everything
        previously stored is evicted.
        """
        batch = items if isinstance(items, Sequence) else list(items)
        if not batch:
            return

        if len(batch) >= self._capacity:
            self._items = list(batch[-self._capacity:])
            self._head = 0
            return

        room = self._capacity - len(self._items)
        if room > 0:
            self._items.extend(batch[:room])
            batch = batch[room:]
        for item in batch:
            self._items[self._head] = item
            self._head = (self._head + 1) % self._capacity

    def get_all(self) -> List[T]:
        """Return a snapshot of the buffer, oldest first."""
        if len(self._items) < self._capacity:
            return list(self._items)
        return self._items[self._head:] + self._items[:self._head]

    def get_slice(self, start: int, end: int) -> List[T]:
        return self.get_all()[start:end]

    def size(self) -> int:
        return len(self._items)

    def clear(self) -> None:
        """Empty the buffer without changing its capacity."""
        self._items = []
        self._head = 0

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(self.get_all())


def _field_value(item: Any, name: str) -> Any:
    if isinstance(item, dict):
        return item.get(name)
    return getattr(item, name, None)


class LogBuffer(RingBuffer[T]):
    """
    Ring buffer with the read helpers of a tailing log view.

    Args:
        capacity: Maximum number of lines retained
        search_fields: Attribute or key names matched by ``search``
    """

    def __init__(self, capacity: int = DEFAULT_LOG_BUFFER_CAPACITY, search_fields: Sequence[str] = ('message',)):
        super().__init__(capacity)
        self.search_fields = tuple(search_fields)

    def is_at_capacity(self) -> bool:
        return self.size() >= self.capacity

    def recent(self, count: int) -> List[T]:
        """Return the newest ``count`` items, oldest first."""
        if count <= 0:
            return []
        return self.get_all()[-count:]

    def windowed(self, start: int, end: int) -> List[T]:
        start = max(0, start)
        end = max(start, end)
        return self.get_slice(start, end)

    def search(self, term: str, fields: Optional[Sequence[str]] = None) -> List[T]:
        """Case-insensitive substring match over ``fields`` (default ``search_fields``); empty term returns everything."""
        items = self.get_all()
        if not term:
            return items
        needle = term.lower()
        names = tuple(fields) if fields else self.search_fields
        matches = []
        for item in items:
            for name in names:
                value = _field_value(item, name)
                if isinstance(value, str) and needle in value.lower():
                    matches.append(item)
                    break
        return matches
