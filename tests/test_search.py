"""
Tests for Search Structures.

Tests the grid spatial index, prefix trie, bloom filter and priority queue
used by listing search and ranking.
"""

import random
import string
import threading

import numpy as np
import pytest

from nyumba.cache.exceptions import CacheConfigError

from nyumba.search.spatial import (
    SpatialIndex,
    filter_by_distance,
    haversine_km,
)

from nyumba.search.trie import (
    PropertyDocument,
    SearchTrie,
)

from nyumba.search.bloom import BloomFilter, rolling_hash

from nyumba.search.priority_queue import PriorityQueue


# ==============================================================================
# Spatial Index Tests
# ==============================================================================


class TestSpatialIndex:
    """Tests for SpatialIndex."""

    @pytest.fixture
    def index(self):
        """Create index with the default 0.01 degree grid."""
        return SpatialIndex()

    def test_add_find_remove(self, index):
        """An added id is found nearby until it is removed."""
        index.add_property("a", 0, 0)
        assert "a" in index.find_nearby(0, 0, 0.5)

        assert index.remove_property("a", 0, 0) is True
        assert "a" not in index.find_nearby(0, 0, 0.5)
        assert index.bucket_count() == 0

    def test_remove_wrong_cell(self, index):
        """Removing with other coordinates leaves the id in place."""
        index.add_property("a", 0, 0)
        assert index.remove_property("a", 5, 5) is False
        assert index.remove_property("b", 0, 0) is False
        assert len(index) == 1

    def test_grid_key_floors_negatives(self, index):
        """Negative coordinates floor toward negative infinity."""
        assert index.grid_key(-0.001, 0.001) == (-1, 0)
        assert index.grid_key(-6.7924, 39.2083) == (-680, 3920)

    def test_cell_radius(self, index):
        """Radius converts to whole cells at 111 km per degree."""
        assert index.cell_radius(0) == 0
        assert index.cell_radius(0.5) == 1
        assert index.cell_radius(2.0) == 2
        assert index.cell_radius(-3) == 0
        assert index.cell_radius(float("-inf")) == 0

    @pytest.mark.parametrize("lat,lng", [
        (float("nan"), 0.0),
        (0.0, float("nan")),
        (float("inf"), 0.0),
        (0.0, float("-inf")),
    ])
    def test_non_finite_coordinates_rejected(self, index, lat, lng):
        """NaN or infinite coordinates raise a config error, not a math error."""
        with pytest.raises(CacheConfigError):
            index.add_property("a", lat, lng)
        with pytest.raises(CacheConfigError):
            index.find_nearby(lat, lng, 1.0)
        assert len(index) == 0

    @pytest.mark.parametrize("radius", [float("nan"), float("inf")])
    def test_non_finite_radius_rejected(self, index, radius):
        """A NaN or infinite radius raises a config error."""
        with pytest.raises(CacheConfigError):
            index.find_nearby(0, 0, radius)

    def test_zero_radius_scans_center_cell(self, index):
        """Radius 0 returns only the center cell."""
        index.add_property("here", 0.005, 0.005)
        index.add_property("next", 0.015, 0.005)

        assert index.find_nearby(0.001, 0.001, 0) == {"here"}

    def test_radius_reaches_neighbours(self, index):
        """Listings a few cells away are found with a larger radius."""
        index.add_property("dar", -6.7924, 39.2083)
        index.add_property("near", -6.7950, 39.2100)
        index.add_property("dodoma", -6.1630, 35.7516)

        result = index.find_nearby(-6.7924, 39.2083, 2)
        assert result == {"dar", "near"}

    def test_same_cell_deduplicated(self, index):
        """Multiple ids share a cell; the result is a set."""
        for i in range(5):
            index.add_property(f"p{i}", 0.001 * i, 0.001)
        assert index.find_nearby(0, 0, 0) == {f"p{i}" for i in range(5)}
        assert index.bucket_count() == 1
        assert len(index) == 5

    def test_custom_grid_size(self):
        """Coarser grids bucket more together."""
        index = SpatialIndex(grid_size=1.0)
        index.add_property("a", 0.1, 0.1)
        index.add_property("b", 0.9, 0.9)
        assert index.bucket_count() == 1

    def test_invalid_grid_size(self):
        """Non-positive grid size is rejected."""
        with pytest.raises(CacheConfigError):
            SpatialIndex(grid_size=0)

    def test_clear(self, index):
        """Test clear."""
        index.add_property("a", 1, 1)
        index.clear()
        assert len(index) == 0

    def test_concurrent_adds(self, index):
        """Concurrent inserts are all recorded."""

        def add_range(offset):
            for i in range(250):
                index.add_property(f"{offset}-{i}", 0.0001 * i, 0.0001 * offset)

        threads = [threading.Thread(target=add_range, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(index) == 1000


class TestDistanceFilter:
    """Tests for haversine_km and filter_by_distance."""

    def test_haversine_known_distance(self):
        """One degree of latitude is about 111 km."""
        assert haversine_km(0, 0, 1, 0) == pytest.approx(111.19, rel=1e-3)
        assert haversine_km(-6.8, 39.2, -6.8, 39.2) == pytest.approx(0.0)

    def test_haversine_vectorised(self):
        """Arrays broadcast against a scalar origin."""
        distances = haversine_km(0, 0, np.array([0, 1, 2]), np.array([0, 0, 0]))
        assert distances.shape == (3,)
        assert distances[0] == pytest.approx(0.0)
        assert distances[2] == pytest.approx(2 * distances[1], rel=1e-6)

    def test_filter_drops_far_candidates(self):
        """Grid candidates outside the true circle are removed."""
        index = SpatialIndex()
        locations = {"inside": (0.001, 0.001), "corner": (0.019, 0.019)}
        for pid, (lat, lng) in locations.items():
            index.add_property(pid, lat, lng)

        candidates = index.find_nearby(0, 0, 1.0)
        assert candidates == {"inside", "corner"}
        assert filter_by_distance(0, 0, 1.0, locations, candidates) == {"inside"}

    def test_filter_defaults_to_all_locations(self):
        """Without candidates every location is checked."""
        locations = {"a": (0.0, 0.0), "b": (1.0, 1.0)}
        assert filter_by_distance(0, 0, 5, locations) == {"a"}

    def test_filter_unknown_candidates(self):
        """Candidates with no location are dropped."""
        assert filter_by_distance(0, 0, 5, {}, ["ghost"]) == set()


# ==============================================================================
# Trie Tests
# ==============================================================================


class TestPropertyDocument:
    """Tests for PropertyDocument."""

    def test_tokens(self):
        """Tokens come from title words, the city and amenities."""
        doc = PropertyDocument("p1", "Modern House", "Dar es Salaam", ["Swimming Pool"])
        assert doc.tokens() == ["modern", "house", "dar es salaam", "swimming pool"]

    def test_from_dict_nested_city(self):
        """City may be nested under location."""
        doc = PropertyDocument.from_dict(
            {"id": 7, "title": "Flat", "location": {"city": "Arusha"}}
        )
        assert doc.id == "7"
        assert doc.city == "Arusha"
        assert doc.amenities == []


class TestSearchTrie:
    """Tests for SearchTrie."""

    @pytest.fixture
    def trie(self):
        """Create trie with one listing."""
        trie = SearchTrie()
        trie.add_property(
            {"id": "p1", "title": "Modern House", "city": "Mbeya", "amenities": ["Parking"]}
        )
        return trie

    def test_prefix_search(self, trie):
        """Prefixes of indexed words match; others do not."""
        assert "p1" in trie.search("mod")
        assert trie.search("xy") == set()
        assert trie.search("m") == set()

    def test_case_insensitive(self, trie):
        """Queries are lower-cased."""
        assert trie.search("MOD") == {"p1"}
        assert trie.search("PaRk") == {"p1"}

    def test_every_field_indexed(self, trie):
        """Title words, city and amenities are all searchable."""
        assert trie.search("hou") == {"p1"}
        assert trie.search("mbe") == {"p1"}
        assert trie.search("parking") == {"p1"}
        assert trie.search("parkings") == set()

    def test_short_words_not_indexed(self):
        """Words shorter than three characters are skipped."""
        trie = SearchTrie()
        trie.add_property({"id": "p1", "title": "A big ok house", "city": "Moshi"})
        assert trie.search("ok") == set()
        assert trie.search("bi") == {"p1"}

    def test_multiple_listings(self, trie, sample_listings):
        """Shared prefixes collect every matching id."""
        for listing in sample_listings:
            trie.add_property(listing)

        assert trie.search("mod") == {"p1", "p3"}
        assert trie.search("dar") == {"p2", "p4"}
        assert trie.search("dod") == {"p3"}
        assert len(trie) == 5

    def test_search_returns_copy(self, trie):
        """Mutating a result does not change the index."""
        result = trie.search("mod")
        result.add("intruder")
        assert trie.search("mod") == {"p1"}

    def test_suggestions(self, trie):
        """Every node carrying ids is a suggestion, prefix included."""
        assert trie.get_suggestions("mb") == ["mb", "mbe", "mbey", "mbeya"]

    def test_suggestions_depth_first_order(self, trie):
        """Children are visited in insertion order."""
        trie.add_property({"id": "p2", "title": "Modest", "city": "Moshi"})
        suggestions = trie.get_suggestions("mo", limit=20)

        assert suggestions[0] == "mo"
        assert suggestions.index("modern") < suggestions.index("modest")
        assert suggestions.index("modest") < suggestions.index("mos")
        assert "moshi" in suggestions

    def test_suggestion_limit(self, trie):
        """At most limit suggestions are returned."""
        assert len(trie.get_suggestions("mo", limit=2)) == 2
        assert trie.get_suggestions("mo", limit=0) == []
        assert trie.get_suggestions("m") == []
        assert trie.get_suggestions("zz") == []


# ==============================================================================
# Bloom Filter Tests
# ==============================================================================


class TestBloomFilter:
    """Tests for BloomFilter."""

    def test_sizing(self):
        """Size and hash count follow the standard formulas."""
        bloom = BloomFilter(1000, 0.01)
        assert bloom.size == 9586
        assert bloom.hash_functions == 7

    def test_invalid_parameters(self):
        """Out-of-range parameters are rejected."""
        with pytest.raises(CacheConfigError):
            BloomFilter(0)
        with pytest.raises(CacheConfigError):
            BloomFilter(10, 0)
        with pytest.raises(CacheConfigError):
            BloomFilter(10, 1.5)

    def test_rolling_hash_wraps_to_int32(self):
        """The hash stays within [0, size) for long inputs."""
        units = [ord(c) for c in "x" * 500]
        for seed in range(5):
            assert 0 <= rolling_hash(units, seed, 97) < 97

    def test_rolling_hash_known_values(self):
        """h = h * 33 + c from the seed, then abs modulo size."""
        assert rolling_hash([97], 0, 1000) == 97
        assert rolling_hash([97, 98], 1, 1_000_000) == (1 * 33 + 97) * 33 + 98

    def test_no_false_negatives(self):
        """Every added item is reported as possibly present."""
        rng = random.Random(42)
        items = [
            "".join(rng.choices(string.ascii_letters + string.digits, k=rng.randint(1, 20)))
            for _ in range(10_000)
        ]
        bloom = BloomFilter(10_000, 0.01)
        for item in items:
            bloom.add(item)

        assert all(bloom.might_contain(item) for item in items)
        assert bloom.count == 10_000
        assert not bloom.saturated

    def test_absent_items_mostly_rejected(self):
        """Unseen ids are usually rejected."""
        bloom = BloomFilter(100, 0.01)
        for i in range(100):
            bloom.add(f"listing-{i}")

        false_positives = sum(bloom.might_contain(f"other-{i}") for i in range(1000))
        assert false_positives < 500
        assert "listing-5" in bloom
        assert 0 < bloom.fill_ratio() < 1

    def test_non_ascii_items(self):
        """Characters outside the BMP are hashed as UTF-16 code units."""
        bloom = BloomFilter(10)
        bloom.add("nyumba \U0001F3E0")
        assert bloom.might_contain("nyumba \U0001F3E0")

    def test_saturation(self):
        """Adding more than expected marks the filter saturated."""
        bloom = BloomFilter(2)
        for item in ["a", "b", "c"]:
            bloom.add(item)
        assert bloom.saturated


# ==============================================================================
# Priority Queue Tests
# ==============================================================================


class TestPriorityQueue:
    """Tests for PriorityQueue."""

    def test_dequeue_non_increasing(self):
        """A shuffled 1..100 comes out in descending priority order."""
        priorities = list(range(1, 101))
        random.Random(7).shuffle(priorities)

        queue = PriorityQueue()
        for p in priorities:
            queue.enqueue(f"item-{p}", p)

        results = [queue.dequeue() for _ in range(100)]
        assert results == [f"item-{p}" for p in range(100, 0, -1)]
        assert queue.is_empty()

    def test_random_float_priorities(self):
        """Float priorities with duplicates dequeue non-increasing."""
        rng = random.Random(3)
        queue = PriorityQueue()
        for i in range(500):
            priority = round(rng.uniform(0, 10), 1)
            queue.enqueue(i, priority)

        popped = []
        while queue:
            popped.append(queue.peek_priority())
            queue.dequeue()
        assert all(a >= b for a, b in zip(popped, popped[1:]))
        assert len(popped) == 500

    def test_empty_queue(self):
        """Empty queues return the default."""
        queue = PriorityQueue()
        assert queue.dequeue() is None
        assert queue.peek("nothing") == "nothing"
        assert queue.peek_priority() is None
        assert not queue

    def test_peek_does_not_remove(self):
        """Test peek and size."""
        queue = PriorityQueue()
        queue.enqueue("low", 1)
        queue.enqueue("high", 9)

        assert queue.peek() == "high"
        assert queue.size() == 2
        assert len(queue) == 2
        assert queue.dequeue() == "high"
        assert queue.dequeue() == "low"
