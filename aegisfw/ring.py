"""Bounded event buffer that batches events for database writes."""

from __future__ import annotations

import threading
from collections import deque

from aegisfw.store_model import Event

DEFAULT_CAPACITY = 50_000


class EventRing:
    """A thread-safe bounded FIFO of events.

    When full, pushing drops the oldest event. Share one instance between
    producers and the writer.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._queue: deque[Event] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._queue.maxlen or 0

    def push(self, event: Event) -> None:
        """Add an event, dropping the oldest if the buffer is full."""
        with self._lock:
            self._queue.append(event)

    def drain(self, max_events: int) -> list[Event]:
        """Remove and return up to ``max_events`` events, oldest first."""
        if max_events < 0:
            raise ValueError(f"max_events must not be negative, got {max_events}")
        with self._lock:
            count = min(max_events, len(self._queue))
            return [self._queue.popleft() for _ in range(count)]

    def __len__(self) -> int:
        with self._lock:
            return len(self._queue)