"""
Cache System for Nyumba listing data.

Provides the client-side caching layer that sits in front of the listings
backend, so repeated searches and detail views avoid a round trip.

Components:
- LRUCache: bounded in-memory cache with recency eviction
- Key/value stores (memory, local directory) for the session and durable tiers
- MultiLevelCache: L1 memory -> L2 session -> L3 durable, with TTL envelopes
- memoize_with_ttl: result caching for pure search functions

Example usage:
    from nyumba.cache import MultiLevelCacheConfig, build_cache

    config = MultiLevelCacheConfig(
        l1_capacity=200,
        durable_path="~/.nyumba/cache",
    )

    with build_cache(config, start_cleanup=True) as cache:
        cache.set("listings:mbeya", listings, ttl_ms=60_000, persistent=True)
        listings = cache.get("listings:mbeya")
"""

from nyumba.cache.exceptions import (
    CacheConfigError,
    CorruptEntryError,
    NyumbaCacheError,
    StorageQuotaError,
)

from nyumba.cache.lru import MISSING, LRUCache

from nyumba.cache.storage import (
    KeyValueStore,
    LocalKeyValueStore,
    MemoryKeyValueStore,
    StoreConfig,
    StoreType,
    create_store,
)

from nyumba.cache.multilevel import (
    CacheStatistics,
    MultiLevelCache,
    MultiLevelCacheConfig,
    build_cache,
    decode_envelope,
    encode_envelope,
    is_envelope_valid,
)

from nyumba.cache.memoize import memoize_with_ttl

__all__ = [
    # Errors
    "CacheConfigError",
    "CorruptEntryError",
    "NyumbaCacheError",
    "StorageQuotaError",
    # LRU
    "MISSING",
    "LRUCache",
    # Stores
    "KeyValueStore",
    "LocalKeyValueStore",
    "MemoryKeyValueStore",
    "StoreConfig",
    "StoreType",
    "create_store",
    # Multi-level cache
    "CacheStatistics",
    "MultiLevelCache",
    "MultiLevelCacheConfig",
    "build_cache",
    "decode_envelope",
    "encode_envelope",
    "is_envelope_valid",
    # Memoization
    "memoize_with_ttl",
]
