"""Fixed-capacity ordered map with oldest-first eviction."""

from __future__ import annotations

import threading
from collections import OrderedDict
from typing import Generic, Hashable, Iterator, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class BoundedCache(Generic[K, V]):
    """Insertion-ordered map that drops its oldest entry when full.

    Re-putting an existing key refreshes its value but keeps its position,
    so eviction order is strictly first-inserted, first-evicted. Every
    operation takes the internal lock; none of them can fail.
    """

    def __init__(self, capacity: int = 1000) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._capacity = capacity
        self._items: OrderedDict[K, V] = OrderedDict()
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def put(self, key: K, value: V) -> K | None:
        """Store a value; return the evicted key, if any."""
        with self._lock:
            if key in self._items:
                self._items[key] = value
                return None
            evicted = None
            if len(self._items) >= self._capacity:
                evicted, _ = self._items.popitem(last=False)
            self._items[key] = value
            return evicted

    def get(self, key: K, default: V | None = None) -> V | None:
        with self._lock:
            return self._items.get(key, default)

    def remove(self, key: K) -> bool:
        with self._lock:
            if key not in self._items:
                return False
            del self._items[key]
            return True

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def keys(self) -> list[K]:
        """Keys from oldest to newest."""
        with self._lock:
            return list(self._items)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __iter__(self) -> Iterator[K]:
        return iter(self.keys())
