"""
Search structures for Nyumba listings.

Independent in-memory structures used by the listing search and ranking
code:

- SpatialIndex: uniform-grid index for radius queries
- SearchTrie: prefix trie for text search and autocomplete
- BloomFilter: probabilistic "have we seen this id" check
- PriorityQueue: max-heap for ranking results by score

Example usage:
    from nyumba.search import SearchTrie, SpatialIndex

    trie = SearchTrie()
    trie.add_property({"id": "p1", "title": "Modern House", "city": "Mbeya",
                       "amenities": ["Parking"]})
    trie.search("mod")              # {"p1"}
    trie.get_suggestions("mb")      # ["mb", "mbe", "mbey", "mbeya"]

    index = SpatialIndex()
    index.add_property("p1", -8.9094, 33.4608)
    index.find_nearby(-8.91, 33.46, radius_km=2)
"""

from nyumba.search.bloom import BloomFilter

from nyumba.search.priority_queue import PriorityQueue

from nyumba.search.spatial import (
    SpatialIndex,
    filter_by_distance,
    haversine_km,
)

from nyumba.search.trie import (
    PropertyDocument,
    SearchTrie,
    TrieNode,
)

__all__ = [
    "BloomFilter",
    "PriorityQueue",
    "SpatialIndex",
    "filter_by_distance",
    "haversine_km",
    "PropertyDocument",
    "SearchTrie",
    "TrieNode",
]
