"""
Max-priority queue for ranking search results.

Binary heap keyed by a numeric priority. Ties are not kept in insertion
order; add a secondary component to the priority (an insertion sequence,
for example) when a stable order is needed.
"""

import threading
from typing import Any, Generic, List, NamedTuple, TypeVar

T = TypeVar("T")


class _HeapEntry(NamedTuple):
    item: Any
    priority: float


class PriorityQueue(Generic[T]):
    """Binary max-heap with O(log n) enqueue and dequeue."""

    def __init__(self):
        self._heap: List[_HeapEntry] = []
        self._lock = threading.RLock()

    @staticmethod
    def _parent(index: int) -> int:
        return (index - 1) // 2

    def _sift_up(self, index: int) -> None:
        heap = self._heap
        while index > 0:
            parent = self._parent(index)
            if heap[parent].priority >= heap[index].priority:
                break
            heap[parent], heap[index] = heap[index], heap[parent]
            index = parent

    def _sift_down(self, index: int) -> None:
        heap = self._heap
        size = len(heap)
        while 2 * index + 1 < size:
            left = 2 * index + 1
            right = left + 1
            largest = left
            if right < size and heap[right].priority > heap[left].priority:
                largest = right
            if heap[index].priority >= heap[largest].priority:
                break
            heap[index], heap[largest] = heap[largest], heap[index]
            index = largest

    def enqueue(self, item: T, priority: float) -> None:
        """Add an item."""
        with self._lock:
            self._heap.append(_HeapEntry(item, priority))
            self._sift_up(len(self._heap) - 1)

    def dequeue(self, default: Any = None) -> Any:
        """
        Remove and return the highest-priority item.

        Args:
            default: Returned when the queue is empty

        Returns:
            Item with the largest priority, or ``default``
        """
        with self._lock:
            if not self._heap:
                return default
            last = self._heap.pop()
            if not self._heap:
                return last.item
            top = self._heap[0]
            self._heap[0] = last
            self._sift_down(0)
            return top.item

    def peek(self, default: Any = None) -> Any:
        """Highest-priority item without removing it, or ``default``."""
        with self._lock:
            return self._heap[0].item if self._heap else default

    def peek_priority(self, default: Any = None) -> Any:
        """Priority of the top item, or ``default``."""
        with self._lock:
            return self._heap[0].priority if self._heap else default

    def size(self) -> int:
        with self._lock:
            return len(self._heap)

    def is_empty(self) -> bool:
        return self.size() == 0

    def __len__(self) -> int:
        return self.size()

    def __bool__(self) -> bool:
        return not self.is_empty()
