"""
Bloom Filter for fast listing existence checks.

Answers "might this id exist?" without false negatives, so callers can skip
backend lookups for ids that were never seen. Sized once from the expected
number of elements and a target false-positive rate:

    m = ceil(-n * ln(p) / ln(2)^2)     bits
    k = ceil((m / n) * ln(2))          hash rounds

Adding more than ``expected_elements`` items raises the real false-positive
rate above the target. There is no removal.

The hash is a seeded polynomial rolling hash (h = h * 33 + c, wrapped to a
signed 32-bit integer) over UTF-16 code units. It is simple rather than
well-distributed, so the measured false-positive rate can sit above the
configured target for some key spaces.
"""

import logging
import math
import threading

import numpy as np

from nyumba.cache.exceptions import CacheConfigError

logger = logging.getLogger(__name__)


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def _code_units(item: str) -> np.ndarray:
    """UTF-16 code units of a string."""
    return np.frombuffer(item.encode("utf-16-le"), dtype="<u2")


def rolling_hash(units, seed: int, size: int) -> int:
    """Seeded rolling hash of code units, reduced modulo ``size``."""
    h = seed
    for unit in units:
        h = _to_int32(_to_int32(h << 5) + h + int(unit))
    return abs(h) % size


class BloomFilter:
    """Fixed-size probabilistic set of strings."""

    def __init__(self, expected_elements: int, false_positive_rate: float = 0.01):
        """
        Initialize the filter.

        Args:
            expected_elements: Number of items the filter is sized for
            false_positive_rate: Target false-positive probability (0 < p < 1)

        Raises:
            CacheConfigError: If either parameter is out of range
        """
        if expected_elements <= 0:
            raise CacheConfigError("expected_elements", expected_elements, "must be > 0")
        if not 0 < false_positive_rate < 1:
            raise CacheConfigError(
                "false_positive_rate", false_positive_rate, "must be between 0 and 1"
            )

        self.expected_elements = expected_elements
        self.false_positive_rate = false_positive_rate
        self.size = math.ceil(
            (-expected_elements * math.log(false_positive_rate)) / (math.log(2) ** 2)
        )
        self.hash_functions = math.ceil((self.size / expected_elements) * math.log(2))
        self._bits = np.zeros(self.size, dtype=bool)
        self._count = 0
        self._lock = threading.Lock()

        logger.debug(
            f"BloomFilter sized m={self.size} bits, k={self.hash_functions} "
            f"for n={expected_elements}, p={false_positive_rate}"
        )

    def _indexes(self, item: str):
        units = _code_units(item)
        return [rolling_hash(units, seed, self.size) for seed in range(self.hash_functions)]

    def add(self, item: str) -> None:
        """Set the item's bits."""
        indexes = self._indexes(item)
        with self._lock:
            self._bits[indexes] = True
            self._count += 1

    def might_contain(self, item: str) -> bool:
        """
        True if every bit for the item is set.

        Always True for added items; may be True for others.
        """
        indexes = self._indexes(item)
        with self._lock:
            return bool(self._bits[indexes].all())

    @property
    def count(self) -> int:
        """Number of add() calls (duplicates included)."""
        return self._count

    @property
    def saturated(self) -> bool:
        """True once more items were added than the filter was sized for."""
        return self._count > self.expected_elements

    def fill_ratio(self) -> float:
        """Fraction of bits set."""
        with self._lock:
            return float(self._bits.mean())

    def __contains__(self, item: object) -> bool:
        return isinstance(item, str) and self.might_contain(item)
