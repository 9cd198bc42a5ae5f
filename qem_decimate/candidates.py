"""
Edge Collapse Candidates
========================

Candidate edges and the ordered store driving the greedy collapse loop.

The store keeps every live candidate in a dictionary keyed by the
unordered position pair, plus a small sorted window holding the best
known candidates. The window is rebuilt from the full set only when it
runs out, which avoids keeping the whole candidate set sorted while
positions keep changing around each collapse.
"""

import heapq
from typing import Callable, Dict, Iterator, Optional, Tuple

import numpy as np
from sortedcontainers import SortedList

from .edge_types import EdgeType

PairKey = Tuple[int, int]
SortKey = Tuple[float, int, int]


def pair_key(pos_a: int, pos_b: int) -> PairKey:
    """Order independent identity of an edge."""
    return (pos_a, pos_b) if pos_a < pos_b else (pos_b, pos_a)


class EdgeCollapse:
    """
    Collapse candidate for the edge between two positions.

    Equality and hashing ignore the endpoint order. Candidates order by
    error, then by the sorted position pair so that equal errors always
    resolve the same way.
    """

    __slots__ = ("pos_a", "pos_b", "result", "error", "edge_type")

    def __init__(self, pos_a: int, pos_b: int, result: Optional[np.ndarray] = None,
                 error: float = 0.0, edge_type: Optional[EdgeType] = None):
        self.pos_a = pos_a
        self.pos_b = pos_b
        self.result = result
        self.error = error
        self.edge_type = edge_type

    @property
    def key(self) -> PairKey:
        return pair_key(self.pos_a, self.pos_b)

    @property
    def sort_key(self) -> SortKey:
        low, high = self.key
        return (self.error, low, high)

    def touches(self, position: int) -> bool:
        return position == self.pos_a or position == self.pos_b

    def __eq__(self, other) -> bool:
        if not isinstance(other, EdgeCollapse):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)

    def __lt__(self, other: "EdgeCollapse") -> bool:
        return self.sort_key < other.sort_key

    def __repr__(self) -> str:
        return (f"EdgeCollapse({self.pos_a}, {self.pos_b}, error={self.error:.6g}, "
                f"type={self.edge_type})")


class CandidateStore:
    """
    All live collapse candidates plus an ordered window of the best ones.

    The window holds sort keys of candidates also present in ``pairs``.
    Its nominal size is ``clamp(window_fraction * face_count + window_base,
    0, len(pairs))``; it is refilled from scratch once exhausted. New
    candidates only enter the window when they sort before its current
    last element.
    """

    def __init__(self, window_fraction: float = 0.01, window_base: int = 100):
        self.window_fraction = window_fraction
        self.window_base = window_base
        self.pairs: Dict[PairKey, EdgeCollapse] = {}
        self._mins = SortedList()

    def __len__(self) -> int:
        return len(self.pairs)

    def __contains__(self, item) -> bool:
        if isinstance(item, EdgeCollapse):
            return item.key in self.pairs
        return pair_key(*item) in self.pairs

    def __iter__(self) -> Iterator[EdgeCollapse]:
        return iter(self.pairs.values())

    def get(self, pos_a: int, pos_b: int) -> Optional[EdgeCollapse]:
        return self.pairs.get(pair_key(pos_a, pos_b))

    @property
    def window_count(self) -> int:
        return len(self._mins)

    def iter_window(self) -> Iterator[EdgeCollapse]:
        """Window candidates, best first."""
        for _, low, high in list(self._mins):
            yield self.pairs[(low, high)]

    def clear(self):
        self.pairs.clear()
        self._mins.clear()

    def add(self, candidate: EdgeCollapse) -> bool:
        """
        Register a candidate in the full set.

        Returns:
            False if an equivalent candidate was already registered
        """
        if candidate.key in self.pairs:
            return False
        self.pairs[candidate.key] = candidate
        return True

    def remove(self, pos_a: int, pos_b: int) -> Optional[EdgeCollapse]:
        """Remove a candidate from both the full set and the window."""
        candidate = self.pairs.pop(pair_key(pos_a, pos_b), None)
        if candidate is not None:
            self._mins.discard(candidate.sort_key)
        return candidate

    def window_size(self, face_count: int) -> int:
        size = int(self.window_fraction * face_count + self.window_base)
        return max(0, min(size, len(self.pairs)))

    def compute_window(self, face_count: int):
        """Rebuild the window with the best ``window_size`` candidates."""
        best = heapq.nsmallest(self.window_size(face_count),
                               (c.sort_key for c in self.pairs.values()))
        self._mins = SortedList(best)

    def insert_in_window(self, candidate: EdgeCollapse) -> bool:
        """
        Insert a registered candidate in order if it beats the window's last entry.

        Returns:
            True if the candidate entered the window
        """
        assert candidate.key in self.pairs
        sort_key = candidate.sort_key
        if not self._mins or not sort_key < self._mins[-1]:
            return False
        self._mins.add(sort_key)
        return True

    def minimum(self, face_count: int) -> Optional[EdgeCollapse]:
        """Best candidate regardless of validity."""
        if not self.pairs:
            return None
        if not self._mins:
            self.compute_window(face_count)
        _, low, high = self._mins[0]
        return self.pairs[(low, high)]

    def first_valid(self, face_count: int,
                    is_valid: Callable[[EdgeCollapse], bool]) -> Optional[EdgeCollapse]:
        """
        Best candidate accepted by ``is_valid``.

        Rejected candidates stay in the store. The window is walked first;
        once exhausted it is rebuilt and walked again, then the whole set
        is scanned in order.

        Returns:
            The candidate, or None if no candidate is valid
        """
        if not self.pairs:
            return None

        if not self._mins:
            self.compute_window(face_count)

        rejected = set()
        for candidate in self.iter_window():
            if is_valid(candidate):
                return candidate
            rejected.add(candidate.key)

        self.compute_window(face_count)
        for candidate in self.iter_window():
            if candidate.key in rejected:
                continue
            if is_valid(candidate):
                return candidate
            rejected.add(candidate.key)

        for candidate in sorted(self.pairs.values()):
            if candidate.key in rejected:
                continue
            if is_valid(candidate):
                return candidate

        return None

    def check(self) -> bool:
        """Check that every window entry refers to a registered, up to date candidate."""
        for sort_key in self._mins:
            candidate = self.pairs.get(sort_key[1:])
            if candidate is None or candidate.sort_key != sort_key:
                return False
        return True
