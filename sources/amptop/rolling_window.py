"""Fixed-capacity ring buffer of recent samples for the live chart.

Backed by a preallocated list and a head cursor, so memory stays constant no
matter how long the session runs. Single owner, no locking.
"""

from typing import Generic, Iterable, List, Optional, TypeVar

T = TypeVar("T")


class RollingWindow(Generic[T]):
    """Keeps the newest ``capacity`` items; the oldest is evicted on overflow."""

    def __init__(self, capacity: int, items: Iterable[T] = ()) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._slots: List[Optional[T]] = [None] * capacity
        self._head = 0          # next slot to write
        self._size = 0
        for item in items:
            self.push(item)

    def __len__(self) -> int:
        return self._size

    def __iter__(self):
        return iter(self.items())

    @property
    def capacity(self) -> int:
        return len(self._slots)

    @property
    def is_full(self) -> bool:
        return self._size == len(self._slots)

    def push(self, item: T) -> Optional[T]:
        """Add ``item``; return the evicted entry when the window was full."""
        evicted = self._slots[self._head] if self.is_full else None
        self._slots[self._head] = item
        self._head = (self._head + 1) % len(self._slots)
        if self._size < len(self._slots):
            self._size += 1
        return evicted

    def items(self) -> List[T]:
        """Contents oldest first."""
        cap = len(self._slots)
        start = (self._head - self._size) % cap
        return [self._slots[(start + i) % cap] for i in range(self._size)]

    def latest(self) -> Optional[T]:
        if self._size == 0:
            return None
        return self._slots[(self._head - 1) % len(self._slots)]

    def clear(self) -> None:
        self._slots = [None] * len(self._slots)
        self._head = 0
        self._size = 0

    def resize(self, capacity: int) -> None:
        """Change capacity, keeping the newest entries that still fit."""
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        if capacity == len(self._slots):
            return
        kept = self.items()[-capacity:]
        self._slots = [None] * capacity
        self._head = 0
        self._size = 0
        for item in kept:
            self.push(item)
