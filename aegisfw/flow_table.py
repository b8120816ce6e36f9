"""Bounded flow table with least-recently-used eviction and idle expiry."""

from __future__ import annotations

import threading
import time
from collections import OrderedDict

from aegisfw.detection_model import FlowKey, FlowState

DEFAULT_CAPACITY = 500_000
DEFAULT_TIME_TO_IDLE = 120.0


class FlowTable:
    """Maps flow keys to mutable flow state.

    A flow not accessed for ``time_to_idle`` seconds expires. When the table
    holds more than ``max_capacity`` flows, the least recently used go first.
    Repeated lookups of a live key return the same ``FlowState`` object, so
    changes made through one handle are seen through every other.
    """

    def __init__(
        self,
        max_capacity: int = DEFAULT_CAPACITY,
        time_to_idle: float = DEFAULT_TIME_TO_IDLE,
    ) -> None:
        if max_capacity < 0:
            raise ValueError(f"max_capacity must not be negative, got {max_capacity}")
        if time_to_idle <= 0:
            raise ValueError(f"time_to_idle must be positive, got {time_to_idle}")
        self._max_capacity = max_capacity
        self._time_to_idle = time_to_idle
        self._entries: OrderedDict[FlowKey, tuple[FlowState, float]] = OrderedDict()
        self._lock = threading.Lock()

    @property
    def max_capacity(self) -> int:
        return self._max_capacity

    def get_or_create(self, key: FlowKey) -> FlowState:
        """Return the state for ``key``, creating fresh state if there is none."""
        now = time.monotonic()
        with self._lock:
            self._expire(now)
            entry = self._entries.get(key)
            if entry is None:
                state = FlowState()
                self._entries[key] = (state, now)
                while len(self._entries) > self._max_capacity:
                    self._entries.popitem(last=False)
            else:
                state = entry[0]
                self._entries[key] = (state, now)
                self._entries.move_to_end(key)
            return state

    def invalidate(self, key: FlowKey) -> None:
        """Forget a flow, for example once it is known to be closed."""
        with self._lock:
            self._entries.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            self._expire(time.monotonic())
            return len(self._entries)

    def _expire(self, now: float) -> None:
        # Entries are kept in access order, so idle ones sit at the front.
        while self._entries:
            key, (_, last_access) = next(iter(self._entries.items()))
            if now - last_access < self._time_to_idle:
                break
            del self._entries[key]