"""
Grid Spatial Index for location-based listing search.

Buckets listing ids into a uniform lat/lng grid (default 0.01 degrees,
roughly 1 km cells) and answers radius queries by scanning the square of
cells around the query point.

Radius queries return a superset of the true circle: the km-to-cell
conversion uses 111 km per degree for both axes, which overestimates
longitude coverage away from the equator. Use filter_by_distance for an
exact post-filter.
"""

import logging
import math
import threading
from typing import Dict, Iterable, Mapping, Set, Tuple

import numpy as np

from nyumba.cache.exceptions import CacheConfigError

logger = logging.getLogger(__name__)

KM_PER_DEGREE = 111.0
EARTH_RADIUS_KM = 6371.0088

GridKey = Tuple[int, int]


class SpatialIndex:
    """
    Uniform-grid index mapping (lat, lng) cells to sets of listing ids.

    The index does not remember where an id was inserted; callers remove an
    id with the same coordinates they added it with, and must remove it
    before re-adding it elsewhere.
    """

    def __init__(self, grid_size: float = 0.01):
        """
        Initialize spatial index.

        Args:
            grid_size: Cell edge length in degrees

        Raises:
            CacheConfigError: If grid_size is not positive
        """
        if not grid_size > 0:
            raise CacheConfigError("grid_size", grid_size, "must be > 0")
        self.grid_size = grid_size
        self._grid: Dict[GridKey, Set[str]] = {}
        self._lock = threading.RLock()

    def grid_key(self, lat: float, lng: float) -> GridKey:
        """
        Cell coordinates for a point.

        Raises:
            CacheConfigError: If lat or lng is NaN or infinite
        """
        if not math.isfinite(lat):
            raise CacheConfigError("lat", lat, "must be finite")
        if not math.isfinite(lng):
            raise CacheConfigError("lng", lng, "must be finite")
        return (math.floor(lat / self.grid_size), math.floor(lng / self.grid_size))

    def add_property(self, property_id: str, lat: float, lng: float) -> None:
        """Insert an id into the cell containing (lat, lng)."""
        key = self.grid_key(lat, lng)
        with self._lock:
            self._grid.setdefault(key, set()).add(property_id)

    def remove_property(self, property_id: str, lat: float, lng: float) -> bool:
        """
        Remove an id from the cell containing (lat, lng).

        Returns:
            True if the id was in that cell
        """
        key = self.grid_key(lat, lng)
        with self._lock:
            cell = self._grid.get(key)
            if cell is None or property_id not in cell:
                return False
            cell.discard(property_id)
            if not cell:
                del self._grid[key]
            return True

    def cell_radius(self, radius_km: float) -> int:
        """Number of cells to scan in each direction for a radius."""
        if math.isnan(radius_km):
            raise CacheConfigError("radius_km", radius_km, "must be a number")
        if radius_km == math.inf:
            raise CacheConfigError("radius_km", radius_km, "must be finite")
        if radius_km <= 0:
            return 0
        return math.ceil(radius_km / (self.grid_size * KM_PER_DEGREE))

    def find_nearby(self, lat: float, lng: float, radius_km: float) -> Set[str]:
        """
        Find ids in the square of cells around a point.

        Args:
            lat: Query latitude
            lng: Query longitude
            radius_km: Search radius in kilometres (negative treated as 0)

        Returns:
            Deduplicated ids from the (2r+1)^2 neighbouring cells
        """
        radius = self.cell_radius(radius_km)
        center_lat, center_lng = self.grid_key(lat, lng)
        result: Set[str] = set()

        with self._lock:
            for i in range(-radius, radius + 1):
                for j in range(-radius, radius + 1):
                    cell = self._grid.get((center_lat + i, center_lng + j))
                    if cell:
                        result.update(cell)

        logger.debug(
            f"find_nearby({lat:.4f}, {lng:.4f}, {radius_km}km) scanned "
            f"{(2 * radius + 1) ** 2} cells, found {len(result)}"
        )
        return result

    def bucket_count(self) -> int:
        """Number of non-empty cells."""
        with self._lock:
            return len(self._grid)

    def clear(self) -> None:
        with self._lock:
            self._grid.clear()

    def __len__(self) -> int:
        with self._lock:
            return sum(len(cell) for cell in self._grid.values())


def haversine_km(lat1, lng1, lat2, lng2):
    """
    Great-circle distance in kilometres.

    Accepts scalars or numpy arrays (broadcast together).
    """
    lat1, lng1, lat2, lng2 = (
        np.radians(np.asarray(v, dtype=float)) for v in (lat1, lng1, lat2, lng2)
    )
    dlat = lat2 - lat1
    dlng = lng2 - lng1
    a = np.sin(dlat / 2.0) ** 2 + np.cos(lat1) * np.cos(lat2) * np.sin(dlng / 2.0) ** 2
    return 2.0 * EARTH_RADIUS_KM * np.arcsin(np.sqrt(np.clip(a, 0.0, 1.0)))


def filter_by_distance(
    lat: float,
    lng: float,
    radius_km: float,
    locations: Mapping[str, Tuple[float, float]],
    candidates: Iterable[str] = None,
) -> Set[str]:
    """
    Keep the ids whose true distance from (lat, lng) is within radius_km.

    Args:
        lat: Query latitude
        lng: Query longitude
        radius_km: Radius in kilometres
        locations: id -> (lat, lng) for every candidate
        candidates: ids to test (defaults to all of ``locations``)

    Returns:
        ids within the radius
    """
    ids = [i for i in (candidates if candidates is not None else locations) if i in locations]
    if not ids:
        return set()

    coords = np.array([locations[i] for i in ids], dtype=float)
    distances = haversine_km(lat, lng, coords[:, 0], coords[:, 1])
    return {i for i, d in zip(ids, distances) if d <= radius_km}
