"""
Nyumba client-side caching and search structures.

Subpackages:
    nyumba.cache   - LRU, key/value stores, multi-level TTL cache
    nyumba.search  - spatial grid index, prefix trie, bloom filter, priority queue
    nyumba.cli     - `nyumba` command-line tool
"""

__version__ = "0.1.0"
