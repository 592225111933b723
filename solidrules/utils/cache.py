"""Bounded in-memory caches."""

from collections import OrderedDict
from typing import Any, Dict, Generic, Hashable, Iterator, Optional, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class BoundedCache(Generic[K, V]):
    """LRU-capped mapping with explicit invalidation.

    Reads refresh an entry's recency; inserting beyond ``max_size`` evicts the
    least recently used entries. The cache is a derived view and must never be
    treated as the source of truth.
    """

    def __init__(self, max_size: int = 1000):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self._entries: "OrderedDict[K, V]" = OrderedDict()
        self.evictions = 0

    def get(self, key: K, default: Optional[V] = None) -> Optional[V]:
        if key not in self._entries:
            return default
        self._entries.move_to_end(key)
        return self._entries[key]

    def set(self, key: K, value: V) -> None:
        self._entries[key] = value
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)
            self.evictions += 1

    def pop(self, key: K, default: Optional[V] = None) -> Optional[V]:
        return self._entries.pop(key, default)

    def invalidate(self, key: Optional[K] = None) -> None:
        """Drop one entry, or every entry when no key is given."""
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    def snapshot(self) -> Dict[K, V]:
        return dict(self._entries)

    def __contains__(self, key: Any) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[K]:
        return iter(list(self._entries))
