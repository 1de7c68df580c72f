"""
Prefix Trie for listing text search and autocomplete.

Indexes listing titles, cities and amenities. Every node on a word's path
records the listing id, so a prefix lookup is a single descent.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Set, Union

logger = logging.getLogger(__name__)

MIN_TOKEN_LENGTH = 3  # Shorter tokens are not indexed
MIN_PREFIX_LENGTH = 2  # Shorter prefixes return nothing


@dataclass
class PropertyDocument:
    """
    Searchable text fields of a listing.

    Attributes:
        id: Listing id
        title: Listing title, split on whitespace
        city: City name, indexed as a single token
        amenities: Amenity names, each indexed as a single token
    """

    id: str
    title: str
    city: str
    amenities: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PropertyDocument":
        """Create from a listing mapping (nested ``location.city`` accepted)."""
        city = data.get("city")
        if city is None and isinstance(data.get("location"), Mapping):
            city = data["location"].get("city")
        return cls(
            id=str(data["id"]),
            title=data.get("title", ""),
            city=city or "",
            amenities=list(data.get("amenities", [])),
        )

    def tokens(self) -> List[str]:
        """Lower-cased tokens in title, city, amenity order."""
        words = self.title.lower().split()
        words.append(self.city.lower())
        words.extend(a.lower() for a in self.amenities)
        return words


class TrieNode:
    """Children by character plus ids of words passing through."""

    __slots__ = ("children", "property_ids")

    def __init__(self):
        self.children: Dict[str, "TrieNode"] = {}
        self.property_ids: Set[str] = set()


class SearchTrie:
    """
    Prefix trie over listing tokens.

    Suggestions come back in depth-first, insertion order of children; they
    are not ranked.
    """

    def __init__(self):
        self._root = TrieNode()
        self._lock = threading.RLock()
        self._documents = 0

    def add_property(self, doc: Union[PropertyDocument, Mapping[str, Any]]) -> None:
        """
        Index a listing's title words, city and amenities.

        Args:
            doc: PropertyDocument or mapping with id/title/city/amenities
        """
        if not isinstance(doc, PropertyDocument):
            doc = PropertyDocument.from_dict(doc)

        with self._lock:
            for word in doc.tokens():
                if len(word) >= MIN_TOKEN_LENGTH:
                    self._insert_word(word, doc.id)
            self._documents += 1

        logger.debug(f"Indexed listing {doc.id}")

    def _insert_word(self, word: str, property_id: str) -> None:
        current = self._root
        for char in word:
            current = current.children.setdefault(char, TrieNode())
            current.property_ids.add(property_id)

    def _find_node(self, prefix: str):
        """Descend to the node for a lower-cased prefix, or None."""
        current = self._root
        for char in prefix:
            current = current.children.get(char)
            if current is None:
                return None
        return current

    def search(self, prefix: str) -> Set[str]:
        """
        Ids of listings with a token starting with ``prefix``.

        Case-insensitive. Prefixes shorter than two characters match nothing.
        """
        if len(prefix) < MIN_PREFIX_LENGTH:
            return set()

        with self._lock:
            node = self._find_node(prefix.lower())
            if node is None:
                return set()
            return set(node.property_ids)

    def get_suggestions(self, prefix: str, limit: int = 10) -> List[str]:
        """
        Up to ``limit`` completions reachable from ``prefix``.

        Every node carrying an id counts as a completion, the prefix node
        itself included.
        """
        if len(prefix) < MIN_PREFIX_LENGTH or limit <= 0:
            return []

        lower_prefix = prefix.lower()
        suggestions: List[str] = []
        with self._lock:
            node = self._find_node(lower_prefix)
            if node is None:
                return []
            self._collect_words(node, lower_prefix, suggestions, limit)
        return suggestions

    def _collect_words(
        self, node: TrieNode, prefix: str, suggestions: List[str], limit: int
    ) -> None:
        # Iterative DFS in child insertion order
        stack = [(node, prefix)]
        while stack and len(suggestions) < limit:
            current, word = stack.pop()
            if current.property_ids:
                suggestions.append(word)
            for char, child in reversed(list(current.children.items())):
                stack.append((child, word + char))

    def __len__(self) -> int:
        """Number of documents indexed."""
        return self._documents
