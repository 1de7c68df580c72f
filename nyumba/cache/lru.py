"""
Fixed-capacity LRU cache.

Tier 1 of the multi-level cache and the backing store of the TTL memoizer.
Recency is kept by an ordered mapping: the least-recently-used key is always
first, so eviction is a single pop from the front.
"""

import logging
import threading
from collections import OrderedDict
from typing import Any, Generic, Hashable, List, TypeVar

from nyumba.cache.exceptions import CacheConfigError

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class _Missing:
    """Marker for "no value stored", distinct from a stored ``None``."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


class LRUCache(Generic[K, V]):
    """
    Least-recently-used cache with O(1) get and set.

    ``get`` and ``set`` refresh a key's recency; ``has`` and ``delete`` do not.
    Pass ``MISSING`` (or any sentinel) as ``default`` to ``get`` when stored
    values may legitimately be ``None``.
    """

    def __init__(self, capacity: int):
        """
        Initialize the cache.

        Args:
            capacity: Maximum number of entries (must be > 0)

        Raises:
            CacheConfigError: If capacity is not positive
        """
        if capacity <= 0:
            raise CacheConfigError("capacity", capacity, "must be > 0")
        self._capacity = capacity
        self._data: "OrderedDict[K, V]" = OrderedDict()
        self._lock = threading.RLock()
        self._evictions = 0

    @property
    def capacity(self) -> int:
        """Maximum number of entries."""
        return self._capacity

    @property
    def evictions(self) -> int:
        """Number of entries evicted for capacity since creation."""
        return self._evictions

    def get(self, key: K, default: Any = None) -> Any:
        """
        Look up a key and mark it most recently used.

        Args:
            key: Key to look up
            default: Returned when the key is absent

        Returns:
            Stored value, or ``default`` on a miss
        """
        with self._lock:
            if key not in self._data:
                return default
            self._data.move_to_end(key)
            return self._data[key]

    def set(self, key: K, value: V) -> None:
        """
        Store a value, evicting the least-recently-used key when full.

        Args:
            key: Key to store
            value: Value to store
        """
        with self._lock:
            if key in self._data:
                self._data.move_to_end(key)
            elif len(self._data) >= self._capacity:
                evicted, _ = self._data.popitem(last=False)
                self._evictions += 1
                logger.debug(f"Evicted LRU key: {evicted!r}")
            self._data[key] = value

    def has(self, key: K) -> bool:
        """Check presence without touching recency."""
        with self._lock:
            return key in self._data

    def delete(self, key: K) -> bool:
        """
        Remove a key.

        Returns:
            True if the key was present
        """
        with self._lock:
            if key in self._data:
                del self._data[key]
                return True
            return False

    def clear(self) -> None:
        """Remove all entries."""
        with self._lock:
            self._data.clear()

    def size(self) -> int:
        """Current number of entries."""
        with self._lock:
            return len(self._data)

    def keys(self) -> List[K]:
        """Snapshot of keys, least recently used first."""
        with self._lock:
            return list(self._data.keys())

    def __contains__(self, key: object) -> bool:
        return self.has(key)  # type: ignore[arg-type]

    def __len__(self) -> int:
        return self.size()

    def __repr__(self) -> str:
        return f"LRUCache(capacity={self._capacity}, size={len(self)})"
