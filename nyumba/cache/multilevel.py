"""
Multi-Level Cache for listing data.

Layers an in-memory LRU cache over two string key/value stores:

- L1: LRUCache holding raw values (fastest, smallest)
- L2: session-scoped store holding JSON envelopes
- L3: durable store holding JSON envelopes, written only for persistent sets

Envelopes have the shape ``{"data": value, "timestamp": ms, "ttl": ms}`` and
are valid while ``now - timestamp < ttl``. Reads go L1 -> L2 -> L3 and promote
hits upward. Expired or corrupt envelopes are removed when read and by the
periodic cleanup sweep.

L1 stores raw values with no expiry of its own, so a value promoted into L1
lives there until evicted by capacity or until a sweep expires the same key
in L2/L3, even past its original TTL.
"""

import json
import logging
import os
import threading
import time
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

import yaml

from nyumba.cache.exceptions import CacheConfigError, CorruptEntryError
from nyumba.cache.lru import MISSING, LRUCache
from nyumba.cache.storage import (
    KeyValueStore,
    LocalKeyValueStore,
    MemoryKeyValueStore,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TTL_MS = 5 * 60 * 1000  # 5 minutes
DEFAULT_CLEANUP_INTERVAL_SECONDS = 10 * 60  # 10 minutes


def now_ms() -> int:
    """Current wall-clock time in milliseconds since the epoch."""
    return int(time.time() * 1000)


@dataclass
class MultiLevelCacheConfig:
    """
    Configuration for the multi-level cache.

    Attributes:
        l1_capacity: Maximum entries in the in-memory LRU tier
        l2_key_prefix: Namespace prefix for session-tier keys
        l3_key_prefix: Namespace prefix for durable-tier keys
        default_ttl_ms: TTL applied when set() is called without one
        cleanup_interval_seconds: Interval between background sweeps
        session_quota_bytes: Byte quota for the session store (None = unlimited)
        durable_path: Directory for the durable store (None = in-memory)
        durable_quota_bytes: Byte quota for the durable store (None = unlimited)
    """

    l1_capacity: int = 100
    l2_key_prefix: str = "nyumba_l2_"
    l3_key_prefix: str = "nyumba_l3_"
    default_ttl_ms: int = DEFAULT_TTL_MS
    cleanup_interval_seconds: float = DEFAULT_CLEANUP_INTERVAL_SECONDS
    session_quota_bytes: Optional[int] = None
    durable_path: Optional[Path] = None
    durable_quota_bytes: Optional[int] = None

    def __post_init__(self):
        """Validate configuration."""
        if self.l1_capacity <= 0:
            raise CacheConfigError("l1_capacity", self.l1_capacity, "must be > 0")
        if self.default_ttl_ms <= 0:
            raise CacheConfigError("default_ttl_ms", self.default_ttl_ms, "must be > 0")
        if self.cleanup_interval_seconds <= 0:
            raise CacheConfigError(
                "cleanup_interval_seconds", self.cleanup_interval_seconds, "must be > 0"
            )
        if not self.l2_key_prefix or not self.l3_key_prefix:
            raise CacheConfigError("key_prefix", "", "must not be empty")
        if self.l2_key_prefix == self.l3_key_prefix:
            raise CacheConfigError(
                "l3_key_prefix", self.l3_key_prefix, "must differ from l2_key_prefix"
            )
        for name in ("session_quota_bytes", "durable_quota_bytes"):
            value = getattr(self, name)
            if value is not None and value < 1:
                raise CacheConfigError(name, value, "must be >= 1")
        if self.durable_path is not None:
            self.durable_path = Path(self.durable_path).expanduser()

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> "MultiLevelCacheConfig":
        """
        Create configuration from dictionary.

        Unknown keys are ignored so the cache section can live in a larger
        application config.

        Args:
            config_dict: Configuration dictionary

        Returns:
            MultiLevelCacheConfig instance
        """
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in config_dict.items() if k in known})

    @classmethod
    def from_yaml(cls, yaml_path: str) -> "MultiLevelCacheConfig":
        """
        Load configuration from YAML file.

        Args:
            yaml_path: Path to YAML configuration file

        Returns:
            MultiLevelCacheConfig instance
        """
        path = Path(yaml_path).expanduser()
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

        with open(path, "r") as f:
            config_dict = yaml.safe_load(f) or {}

        # Extract cache section if present
        if "cache" in config_dict:
            config_dict = config_dict["cache"] or {}

        return cls.from_dict(config_dict)

    @classmethod
    def from_environment(cls) -> "MultiLevelCacheConfig":
        """
        Create configuration from environment variables.

        Environment variables override default values:
        - NYUMBA_CACHE_L1_CAPACITY
        - NYUMBA_CACHE_DEFAULT_TTL_MS
        - NYUMBA_CACHE_DURABLE_PATH
        - NYUMBA_CACHE_CLEANUP_INTERVAL

        Returns:
            MultiLevelCacheConfig instance
        """
        overrides: Dict[str, Any] = {}

        conversions = {
            "NYUMBA_CACHE_L1_CAPACITY": ("l1_capacity", int),
            "NYUMBA_CACHE_DEFAULT_TTL_MS": ("default_ttl_ms", int),
            "NYUMBA_CACHE_CLEANUP_INTERVAL": ("cleanup_interval_seconds", float),
        }
        for env_name, (field_name, convert) in conversions.items():
            raw = os.environ.get(env_name)
            if not raw:
                continue
            try:
                overrides[field_name] = convert(raw)
            except ValueError:
                logger.warning(f"Ignoring invalid {env_name}={raw!r}")

        if os.environ.get("NYUMBA_CACHE_DURABLE_PATH"):
            overrides["durable_path"] = Path(os.environ["NYUMBA_CACHE_DURABLE_PATH"])

        return cls(**overrides)

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            "l1_capacity": self.l1_capacity,
            "l2_key_prefix": self.l2_key_prefix,
            "l3_key_prefix": self.l3_key_prefix,
            "default_ttl_ms": self.default_ttl_ms,
            "cleanup_interval_seconds": self.cleanup_interval_seconds,
            "session_quota_bytes": self.session_quota_bytes,
            "durable_path": str(self.durable_path) if self.durable_path else None,
            "durable_quota_bytes": self.durable_quota_bytes,
        }


@dataclass
class CacheStatistics:
    """Entry counts per tier plus hit/miss counters."""

    l1_size: int = 0
    l2_size: int = 0
    l3_size: int = 0
    l1_max_size: int = 0
    l1_hits: int = 0
    l2_hits: int = 0
    l3_hits: int = 0
    misses: int = 0

    @property
    def hits(self) -> int:
        return self.l1_hits + self.l2_hits + self.l3_hits

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "l1_size": self.l1_size,
            "l2_size": self.l2_size,
            "l3_size": self.l3_size,
            "l1_max_size": self.l1_max_size,
            "l1_hits": self.l1_hits,
            "l2_hits": self.l2_hits,
            "l3_hits": self.l3_hits,
            "misses": self.misses,
            "hit_rate": self.hit_rate,
        }


def encode_envelope(data: Any, ttl_ms: int, timestamp_ms: Optional[int] = None) -> str:
    """
    Wrap a value in a JSON envelope.

    Raises:
        TypeError: If the value is not JSON serializable
    """
    return json.dumps(
        {
            "data": data,
            "timestamp": timestamp_ms if timestamp_ms is not None else now_ms(),
            "ttl": ttl_ms,
        }
    )


def decode_envelope(key: str, raw: str) -> Any:
    """
    Parse a stored envelope.

    Raises:
        CorruptEntryError: If the stored text is not valid JSON
    """
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        raise CorruptEntryError(key, str(e)) from e


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_envelope_valid(envelope: Any, current_ms: Optional[int] = None) -> bool:
    """
    Check an envelope's shape and freshness.

    Missing data, or missing or zero timestamp/ttl, counts as invalid.
    """
    if not isinstance(envelope, dict) or "data" not in envelope:
        return False
    timestamp = envelope.get("timestamp")
    ttl = envelope.get("ttl")
    if not _is_number(timestamp) or not _is_number(ttl) or not timestamp or not ttl:
        return False
    current = current_ms if current_ms is not None else now_ms()
    return (current - timestamp) < ttl


@dataclass
class _Tier:
    """A durable tier: its store, its key prefix and a label for logs."""

    name: str
    store: KeyValueStore
    prefix: str
    hits: int = 0


class MultiLevelCache:
    """
    Hierarchical read-through / write-through cache.

    Construct once in the application's composition root (see build_cache)
    and inject where needed. The periodic sweep is started and stopped
    explicitly; using the cache as a context manager stops it on exit.
    """

    def __init__(
        self,
        config: Optional[MultiLevelCacheConfig] = None,
        session_store: Optional[KeyValueStore] = None,
        durable_store: Optional[KeyValueStore] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        """
        Initialize the cache.

        Args:
            config: Cache configuration (defaults if None)
            session_store: Store for L2, or None to skip the tier
            durable_store: Store for L3, or None to skip the tier
            clock: Millisecond clock, defaults to wall-clock time
        """
        self.config = config or MultiLevelCacheConfig()
        self._clock = clock or now_ms
        self._l1: LRUCache[str, Any] = LRUCache(self.config.l1_capacity)
        self._l2 = (
            _Tier("L2", session_store, self.config.l2_key_prefix)
            if session_store is not None
            else None
        )
        self._l3 = (
            _Tier("L3", durable_store, self.config.l3_key_prefix)
            if durable_store is not None
            else None
        )
        self._l1_hits = 0
        self._misses = 0
        self._lock = threading.RLock()
        self._cleanup_thread: Optional[threading.Thread] = None
        self._shutdown_event = threading.Event()

        logger.info(
            f"MultiLevelCache initialized with l1_capacity={self.config.l1_capacity}, "
            f"l2={'on' if self._l2 else 'off'}, l3={'on' if self._l3 else 'off'}, "
            f"default_ttl_ms={self.config.default_ttl_ms}"
        )

    def get(self, key: str, default: Any = None) -> Any:
        """
        Look up a key through L1, L2 then L3.

        Args:
            key: Cache key
            default: Returned when no tier holds a valid entry

        Returns:
            Cached value or ``default``
        """
        with self._lock:
            value = self._l1.get(key, MISSING)
            if value is not MISSING:
                self._l1_hits += 1
                return value

            if self._l2 is not None:
                found, value, _ = self._read_tier(self._l2, key)
                if found:
                    self._l1.set(key, value)
                    logger.debug(f"Promoted {key} from L2 to L1")
                    return value

            if self._l3 is not None:
                found, value, raw = self._read_tier(self._l3, key)
                if found:
                    self._l1.set(key, value)
                    if self._l2 is not None:
                        self._write_tier(self._l2, key, raw)
                    logger.debug(f"Promoted {key} from L3 to L1/L2")
                    return value

            self._misses += 1
            return default

    def set(
        self,
        key: str,
        value: Any,
        ttl_ms: Optional[int] = None,
        persistent: bool = False,
    ) -> None:
        """
        Store a value in L1 and L2, and in L3 when persistent.

        Store failures in L2/L3 are logged and trigger a cleanup of that tier;
        they are never raised. A value that cannot be JSON-encoded stays in L1
        only, and any older copy of the key in L2/L3 is removed.

        A non-positive TTL is rejected rather than stored, since its envelope
        could never be read back as valid.

        Args:
            key: Cache key
            value: JSON-serializable value
            ttl_ms: Time to live in milliseconds (config default if None)
            persistent: Also write the durable tier

        Raises:
            CacheConfigError: If ttl_ms is not positive
        """
        ttl = ttl_ms if ttl_ms is not None else self.config.default_ttl_ms
        if ttl <= 0:
            raise CacheConfigError("ttl_ms", ttl, "must be > 0")

        with self._lock:
            self._l1.set(key, value)

            if self._l2 is None and (self._l3 is None or not persistent):
                return

            try:
                payload = encode_envelope(value, ttl, self._clock())
            except (TypeError, ValueError) as e:
                logger.warning(f"Value for {key} is not serializable, kept in L1 only: {e}")
                for tier in self._tiers():
                    tier.store.remove_item(tier.prefix + key)
                return

            if self._l2 is not None:
                self._write_tier(self._l2, key, payload)
            if persistent and self._l3 is not None:
                self._write_tier(self._l3, key, payload)

    def get_or_set(
        self,
        key: str,
        factory: Callable[[], T],
        ttl_ms: Optional[int] = None,
        persistent: bool = False,
    ) -> T:
        """
        Return the cached value, computing and storing it on a miss.

        Args:
            key: Cache key
            factory: Callable producing the value when not cached
            ttl_ms: TTL for a freshly computed value
            persistent: Also write the durable tier

        Returns:
            Cached or freshly computed value
        """
        with self._lock:
            value = self.get(key, MISSING)
            if value is not MISSING:
                return value
            result = factory()
            self.set(key, result, ttl_ms=ttl_ms, persistent=persistent)
            return result

    def delete(self, key: str) -> None:
        """Remove a key from every tier."""
        with self._lock:
            self._l1.delete(key)
            for tier in self._tiers():
                tier.store.remove_item(tier.prefix + key)
            logger.debug(f"Deleted cache key: {key}")

    def clear(self) -> None:
        """Remove every key this cache owns from all tiers and reset counters."""
        with self._lock:
            self._l1.clear()
            cleared = 0
            for tier in self._tiers():
                for store_key in self._owned_keys(tier):
                    tier.store.remove_item(store_key)
                    cleared += 1
                tier.hits = 0
            self._l1_hits = 0
            self._misses = 0
            logger.info(f"Cleared cache ({cleared} stored entries)")

    def cleanup(self) -> int:
        """
        Sweep L2 and L3, removing expired or corrupt envelopes.

        Returns:
            Number of entries removed
        """
        with self._lock:
            removed = sum(self._cleanup_tier(tier) for tier in self._tiers())

        if removed > 0:
            logger.info(f"Cleaned up {removed} expired cache entries")
        return removed

    def get_stats(self) -> CacheStatistics:
        """
        Get current entry counts and counters.

        Returns:
            CacheStatistics object
        """
        with self._lock:
            return CacheStatistics(
                l1_size=self._l1.size(),
                l2_size=len(self._owned_keys(self._l2)) if self._l2 else 0,
                l3_size=len(self._owned_keys(self._l3)) if self._l3 else 0,
                l1_max_size=self._l1.capacity,
                l1_hits=self._l1_hits,
                l2_hits=self._l2.hits if self._l2 else 0,
                l3_hits=self._l3.hits if self._l3 else 0,
                misses=self._misses,
            )

    def start_cleanup_thread(self) -> None:
        """Start the background cleanup thread."""
        if self._cleanup_thread is not None and self._cleanup_thread.is_alive():
            return

        self._shutdown_event.clear()
        self._cleanup_thread = threading.Thread(
            target=self._cleanup_loop,
            daemon=True,
            name="nyumba-cache-cleanup",
        )
        self._cleanup_thread.start()
        logger.info(
            f"Started cache cleanup thread "
            f"(interval={self.config.cleanup_interval_seconds}s)"
        )

    def stop_cleanup_thread(self, timeout: float = 5.0) -> None:
        """
        Stop the background cleanup thread.

        Args:
            timeout: Maximum time to wait for thread to stop
        """
        if self._cleanup_thread is None or not self._cleanup_thread.is_alive():
            return

        self._shutdown_event.set()
        self._cleanup_thread.join(timeout=timeout)
        logger.info("Stopped cache cleanup thread")

    @property
    def cleanup_running(self) -> bool:
        return self._cleanup_thread is not None and self._cleanup_thread.is_alive()

    def __enter__(self) -> "MultiLevelCache":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop_cleanup_thread()

    def _cleanup_loop(self) -> None:
        """Background cleanup loop."""
        while not self._shutdown_event.wait(timeout=self.config.cleanup_interval_seconds):
            try:
                self.cleanup()
            except Exception as e:
                logger.error(f"Error in cleanup loop: {e}")

    def _tiers(self) -> List[_Tier]:
        return [t for t in (self._l2, self._l3) if t is not None]

    def _owned_keys(self, tier: _Tier) -> List[str]:
        """Store keys carrying this tier's prefix."""
        return [k for k in tier.store.keys() if k.startswith(tier.prefix)]

    def _read_tier(self, tier: _Tier, key: str) -> Tuple[bool, Any, Optional[str]]:
        """
        Read and validate one envelope, removing it if expired or corrupt.

        Returns:
            Tuple of (found, value, raw envelope text)
        """
        store_key = tier.prefix + key
        try:
            raw = tier.store.get_item(store_key)
            if raw is None:
                return False, None, None
            envelope = decode_envelope(store_key, raw)
        except CorruptEntryError as e:
            logger.warning(f"{tier.name} cache parse error: {e}")
            tier.store.remove_item(store_key)
            return False, None, None

        if not is_envelope_valid(envelope, self._clock()):
            logger.debug(f"{tier.name} entry expired: {key}")
            tier.store.remove_item(store_key)
            return False, None, None

        tier.hits += 1
        return True, envelope["data"], raw

    def _write_tier(self, tier: _Tier, key: str, payload: str) -> None:
        """Best-effort write; failures drop the entry and sweep the tier."""
        store_key = tier.prefix + key
        try:
            tier.store.set_item(store_key, payload)
        except OSError as e:
            logger.warning(f"{tier.name} cache storage error: {e}")
            # Drop any older value so a later read cannot return it
            try:
                tier.store.remove_item(store_key)
            except OSError as remove_error:
                logger.warning(f"{tier.name} could not drop {key}: {remove_error}")
            self._cleanup_tier(tier)

    def _cleanup_tier(self, tier: _Tier) -> int:
        """Remove invalid envelopes from one tier."""
        current = self._clock()
        to_remove = []
        for store_key in self._owned_keys(tier):
            try:
                raw = tier.store.get_item(store_key)
                if raw is None:
                    continue
                envelope = decode_envelope(store_key, raw)
            except CorruptEntryError:
                to_remove.append(store_key)
                continue
            if not is_envelope_valid(envelope, current):
                to_remove.append(store_key)

        for store_key in to_remove:
            tier.store.remove_item(store_key)
            self._l1.delete(store_key[len(tier.prefix):])

        if to_remove:
            logger.debug(f"{tier.name} cleanup removed {len(to_remove)} entries")
        return len(to_remove)


def build_cache(
    config: Optional[MultiLevelCacheConfig] = None,
    start_cleanup: bool = False,
) -> MultiLevelCache:
    """
    Build a MultiLevelCache with stores chosen from configuration.

    The session tier is always in memory. The durable tier is a directory
    store when ``durable_path`` is set, otherwise in memory.

    Args:
        config: Cache configuration (defaults if None)
        start_cleanup: Start the periodic sweep immediately

    Returns:
        Configured MultiLevelCache
    """
    config = config or MultiLevelCacheConfig()
    session_store = MemoryKeyValueStore(max_size_bytes=config.session_quota_bytes)
    if config.durable_path is not None:
        durable_store: KeyValueStore = LocalKeyValueStore(
            config.durable_path, max_size_bytes=config.durable_quota_bytes
        )
    else:
        durable_store = MemoryKeyValueStore(max_size_bytes=config.durable_quota_bytes)

    cache = MultiLevelCache(
        config=config,
        session_store=session_store,
        durable_store=durable_store,
    )
    if start_cleanup:
        cache.start_cleanup_thread()
    return cache
