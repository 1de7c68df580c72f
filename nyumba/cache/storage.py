"""
Key/Value Store Backends.

Provides the string key/value stores that back tiers 2 and 3 of the
multi-level cache. A store only needs the five operations the cache relies
on (get, set, remove, length, ordinal key lookup), so any backend with that
shape can be substituted:

- MemoryKeyValueStore: process-lifetime store (session scope)
- LocalKeyValueStore: one file per key under a directory (durable scope)

Both support an optional byte quota. A write that would exceed it raises
StorageQuotaError and leaves the store unchanged.
"""

import hashlib
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Union
from urllib.parse import quote, unquote

from nyumba.cache.exceptions import CacheConfigError, CorruptEntryError, StorageQuotaError

logger = logging.getLogger(__name__)


class StoreType(Enum):
    """Supported key/value store types."""

    MEMORY = "memory"  # Lives as long as the process (session tier)
    LOCAL = "local"  # Files on disk, survives restarts (durable tier)


@dataclass
class StoreConfig:
    """
    Configuration for key/value stores.

    Attributes:
        store_type: Type of store backend
        root_path: Directory for LOCAL stores (ignored for MEMORY)
        max_size_bytes: Quota in bytes, None for unlimited
    """

    store_type: StoreType
    root_path: Optional[Union[str, Path]] = None
    max_size_bytes: Optional[int] = None

    def __post_init__(self):
        """Validate configuration."""
        if self.max_size_bytes is not None and self.max_size_bytes < 1:
            raise CacheConfigError("max_size_bytes", self.max_size_bytes, "must be >= 1")
        if self.store_type == StoreType.LOCAL and not self.root_path:
            raise CacheConfigError("root_path", self.root_path, "is required for local stores")


def entry_size(key: str, value: str) -> int:
    """Bytes charged against a quota for one entry."""
    return len(key.encode("utf-8")) + len(value.encode("utf-8"))


class KeyValueStore(ABC):
    """
    Abstract string key/value store.

    Mirrors the minimal storage contract the cache depends on:
    ``get_item``, ``set_item``, ``remove_item``, ``length`` and ``key(index)``.
    """

    def __init__(self, max_size_bytes: Optional[int] = None):
        self.max_size_bytes = max_size_bytes
        self._total_size: int = 0

    @property
    @abstractmethod
    def store_type(self) -> StoreType:
        """Return the store type."""
        pass

    @property
    def total_size(self) -> int:
        """Bytes currently charged against the quota."""
        return self._total_size

    @property
    def available_space(self) -> Optional[int]:
        """Remaining bytes, or None if unlimited."""
        if self.max_size_bytes is None:
            return None
        return max(0, self.max_size_bytes - self._total_size)

    @abstractmethod
    def get_item(self, key: str) -> Optional[str]:
        """
        Read a value.

        Args:
            key: Store key

        Returns:
            Stored string or None if absent

        Raises:
            CorruptEntryError: If the stored bytes cannot be read as text
        """
        pass

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        """
        Write a value, replacing any previous one.

        Args:
            key: Store key
            value: String to store

        Raises:
            StorageQuotaError: If the write would exceed the quota
        """
        pass

    @abstractmethod
    def remove_item(self, key: str) -> None:
        """Remove a key. Removing an absent key is a no-op."""
        pass

    @property
    @abstractmethod
    def length(self) -> int:
        """Number of stored keys."""
        pass

    @abstractmethod
    def key(self, index: int) -> Optional[str]:
        """
        Return the key at an ordinal position.

        Args:
            index: Position in the store's enumeration order

        Returns:
            Key or None if index is out of range
        """
        pass

    def keys(self) -> List[str]:
        """Snapshot of all keys, built from ordinal enumeration."""
        result = []
        for i in range(self.length):
            k = self.key(i)
            if k is not None:
                result.append(k)
        return result

    def _check_quota(self, key: str, value: str, previous: Optional[str]) -> int:
        """Return the size delta of a write, raising if it does not fit."""
        new_size = entry_size(key, value)
        old_size = entry_size(key, previous) if previous is not None else 0
        delta = new_size - old_size
        if self.max_size_bytes is not None and delta > 0:
            available = self.max_size_bytes - self._total_size
            if delta > available:
                raise StorageQuotaError(delta, max(0, available))
        return delta

    def __len__(self) -> int:
        return self.length

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.get_item(key) is not None


class MemoryKeyValueStore(KeyValueStore):
    """
    Dictionary-backed store.

    Enumeration follows insertion order. Used as the session tier and in
    tests for either tier.
    """

    def __init__(self, max_size_bytes: Optional[int] = None):
        super().__init__(max_size_bytes)
        self._data: Dict[str, str] = {}
        logger.debug(f"Initialized memory store (quota={max_size_bytes})")

    @property
    def store_type(self) -> StoreType:
        return StoreType.MEMORY

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        delta = self._check_quota(key, value, self._data.get(key))
        self._data[key] = value
        self._total_size += delta

    def remove_item(self, key: str) -> None:
        previous = self._data.pop(key, None)
        if previous is not None:
            self._total_size -= entry_size(key, previous)

    @property
    def length(self) -> int:
        return len(self._data)

    def key(self, index: int) -> Optional[str]:
        if index < 0 or index >= len(self._data):
            return None
        for i, k in enumerate(self._data):
            if i == index:
                return k
        return None

    def keys(self) -> List[str]:
        return list(self._data)


class LocalKeyValueStore(KeyValueStore):
    """
    Local filesystem store.

    Each key is a file named after the percent-encoded key, sharded into
    subdirectories by a hash prefix. Writes go to a temp file that is renamed
    into place, so readers never see a partial value.
    """

    VALUE_SUFFIX = ".kv"
    TEMP_SUFFIX = ".tmp"

    def __init__(self, root_path: Union[str, Path], max_size_bytes: Optional[int] = None):
        super().__init__(max_size_bytes)
        self._root = Path(root_path).expanduser()
        self._root.mkdir(parents=True, exist_ok=True)
        self._recalculate_size()
        logger.info(
            f"Initialized local store at {self._root} (size={self._total_size} bytes)"
        )

    @property
    def store_type(self) -> StoreType:
        return StoreType.LOCAL

    @property
    def root(self) -> Path:
        return self._root

    def _recalculate_size(self) -> None:
        """Recalculate quota usage from the files on disk."""
        total = 0
        for key, path in self._iter_entries():
            total += len(key.encode("utf-8")) + path.stat().st_size
        self._total_size = total

    def _get_path(self, key: str) -> Path:
        """Get filesystem path for a key."""
        shard = hashlib.sha256(key.encode("utf-8")).hexdigest()[:2]
        return self._root / shard / (quote(key, safe="") + self.VALUE_SUFFIX)

    def _iter_entries(self) -> Iterator:
        """Yield (key, path) for every stored value, sorted by path."""
        for path in sorted(self._root.rglob("*" + self.VALUE_SUFFIX)):
            if not path.is_file():
                continue
            yield unquote(path.name[: -len(self.VALUE_SUFFIX)]), path

    def get_item(self, key: str) -> Optional[str]:
        """
        Read a value from disk.

        Raises:
            CorruptEntryError: If the file is not valid UTF-8
        """
        path = self._get_path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except UnicodeDecodeError as e:
            raise CorruptEntryError(key, f"not valid UTF-8: {e}")

    def set_item(self, key: str, value: str) -> None:
        path = self._get_path(key)
        try:
            previous = self.get_item(key)
        except CorruptEntryError:
            self.remove_item(key)
            previous = None
        delta = self._check_quota(key, value, previous)
        path.parent.mkdir(parents=True, exist_ok=True)

        # Atomic write
        temp_path = path.with_name(path.name + self.TEMP_SUFFIX)
        try:
            temp_path.write_text(value, encoding="utf-8")
            os.replace(temp_path, path)
        except Exception:
            if temp_path.exists():
                temp_path.unlink()
            raise

        self._total_size += delta
        logger.debug(f"Stored {len(value)} chars at key {key}")

    def remove_item(self, key: str) -> None:
        path = self._get_path(key)
        try:
            size = path.stat().st_size
            path.unlink()
        except FileNotFoundError:
            return
        self._total_size -= len(key.encode("utf-8")) + size

    @property
    def length(self) -> int:
        return sum(1 for _ in self._iter_entries())

    def key(self, index: int) -> Optional[str]:
        if index < 0:
            return None
        for i, (k, _) in enumerate(self._iter_entries()):
            if i == index:
                return k
        return None

    def keys(self) -> List[str]:
        return [k for k, _ in self._iter_entries()]


def create_store(config: StoreConfig) -> KeyValueStore:
    """
    Factory function to create the appropriate key/value store.

    Args:
        config: Store configuration

    Returns:
        KeyValueStore instance

    Raises:
        ValueError: If store type is not supported
    """
    if config.store_type == StoreType.LOCAL:
        return LocalKeyValueStore(config.root_path, max_size_bytes=config.max_size_bytes)
    elif config.store_type == StoreType.MEMORY:
        return MemoryKeyValueStore(max_size_bytes=config.max_size_bytes)
    else:
        raise ValueError(f"Unsupported store type: {config.store_type}")
