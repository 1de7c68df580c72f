"""
Memoization with per-result time-to-live.

Results are keyed by the JSON encoding of the call arguments and kept in a
bounded LRUCache, each with its own timestamp and TTL.
"""

import functools
import json
import logging
import threading
from typing import Any, Callable, Dict, TypeVar

from nyumba.cache.exceptions import CacheConfigError
from nyumba.cache.lru import MISSING, LRUCache
from nyumba.cache.multilevel import DEFAULT_TTL_MS, now_ms

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


def _make_key(args: tuple, kwargs: Dict[str, Any]) -> str:
    return json.dumps([args, kwargs], sort_keys=True, default=repr)


def memoize_with_ttl(
    ttl_ms: int = DEFAULT_TTL_MS,
    maxsize: int = 256,
    clock: Callable[[], int] = now_ms,
) -> Callable[[F], F]:
    """
    Cache a function's results for ``ttl_ms`` milliseconds.

    Arguments that JSON cannot encode are keyed by their ``repr``. The wrapper
    exposes ``cache_clear()`` and ``cache_info()``.

    Args:
        ttl_ms: Lifetime of each cached result
        maxsize: Maximum number of cached argument combinations
        clock: Millisecond clock

    Example:
        @memoize_with_ttl(ttl_ms=60_000)
        def search(query, filters):
            ...
    """
    if ttl_ms <= 0:
        raise CacheConfigError("ttl_ms", ttl_ms, "must be > 0")

    def decorator(fn: F) -> F:
        results: LRUCache[str, tuple] = LRUCache(maxsize)
        counters = {"hits": 0, "misses": 0}
        lock = threading.Lock()

        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            key = _make_key(args, kwargs)
            current = clock()
            cached = results.get(key, MISSING)
            if cached is not MISSING:
                value, timestamp = cached
                if current - timestamp < ttl_ms:
                    with lock:
                        counters["hits"] += 1
                    return value
                results.delete(key)

            with lock:
                counters["misses"] += 1
            value = fn(*args, **kwargs)
            results.set(key, (value, current))
            return value

        def cache_clear() -> None:
            results.clear()
            with lock:
                counters["hits"] = 0
                counters["misses"] = 0

        def cache_info() -> Dict[str, int]:
            with lock:
                return {
                    "hits": counters["hits"],
                    "misses": counters["misses"],
                    "size": results.size(),
                    "maxsize": results.capacity,
                }

        wrapper.cache_clear = cache_clear  # type: ignore[attr-defined]
        wrapper.cache_info = cache_info  # type: ignore[attr-defined]
        logger.debug(f"Memoizing {fn.__qualname__} (ttl_ms={ttl_ms}, maxsize={maxsize})")
        return wrapper  # type: ignore[return-value]

    return decorator
