"""
Candidate ordering and window management tests.
"""

import pytest

from qem_decimate.candidates import CandidateStore, EdgeCollapse, pair_key


def make_store(errors, window_base=3):
    """Store with one candidate (i, i + 100) per error and a fixed window size."""
    store = CandidateStore(window_fraction=0.0, window_base=window_base)
    for i, error in enumerate(errors):
        store.add(EdgeCollapse(i, i + 100, error=error))
    return store


class TestEdgeCollapse:
    """Identity and ordering of a single candidate."""

    def test_order_independent_identity(self):
        assert EdgeCollapse(1, 2) == EdgeCollapse(2, 1)
        assert hash(EdgeCollapse(1, 2)) == hash(EdgeCollapse(2, 1))
        assert pair_key(7, 3) == (3, 7)

    def test_orders_by_error(self):
        assert EdgeCollapse(5, 6, error=0.1) < EdgeCollapse(0, 1, error=0.2)

    def test_ties_break_on_positions(self):
        a = EdgeCollapse(3, 1, error=0.5)
        b = EdgeCollapse(2, 0, error=0.5)
        assert b < a
        assert sorted([a, b]) == [b, a]

    def test_touches(self):
        pair = EdgeCollapse(4, 9)
        assert pair.touches(4) and pair.touches(9)
        assert not pair.touches(5)


class TestCandidateStore:
    """Full set plus best-candidates window."""

    def test_add_and_lookup(self):
        store = CandidateStore()
        assert store.add(EdgeCollapse(1, 2))
        assert not store.add(EdgeCollapse(2, 1))
        assert len(store) == 1
        assert (2, 1) in store
        assert store.get(2, 1) is store.get(1, 2)

    def test_window_size_is_clamped(self):
        assert make_store(range(5), window_base=100).window_size(0) == 5

        store = CandidateStore(window_fraction=0.01, window_base=0)
        for i in range(50):
            store.add(EdgeCollapse(i, i + 100))
        assert store.window_size(1000) == 10

    def test_compute_window_keeps_best(self):
        store = make_store([5, 3, 9, 0, 7, 1])
        store.compute_window(face_count=0)

        assert store.window_count == 3
        assert [c.error for c in store.iter_window()] == [0, 1, 3]
        assert store.check()

    def test_insert_in_window(self):
        store = make_store([5, 3, 9, 0, 7, 1])
        store.compute_window(face_count=0)

        better = EdgeCollapse(50, 51, error=2)
        store.add(better)
        assert store.insert_in_window(better)
        assert store.window_count == 4

        worse = EdgeCollapse(60, 61, error=8)
        store.add(worse)
        assert not store.insert_in_window(worse)
        assert worse in store
        assert store.check()

    def test_insert_in_empty_window(self):
        store = make_store([1])
        candidate = EdgeCollapse(10, 11, error=0)
        store.add(candidate)
        assert not store.insert_in_window(candidate)

    def test_remove(self):
        store = make_store([5, 3, 9, 0, 7, 1])
        assert store.minimum(face_count=0).error == 0

        removed = store.remove(103, 3)
        assert removed.error == 0
        assert (3, 103) not in store
        assert store.minimum(face_count=0).error == 1
        assert store.remove(3, 103) is None
        assert store.check()

    def test_window_refills_when_exhausted(self):
        store = make_store([5, 3, 9, 0, 7, 1])
        store.compute_window(face_count=0)
        for candidate in list(store.iter_window()):
            store.remove(candidate.pos_a, candidate.pos_b)

        assert store.window_count == 0
        assert store.minimum(face_count=0).error == 5
        assert store.window_count == 3

    def test_first_valid_skips_rejected(self):
        store = make_store([5, 3, 9, 0, 7, 1])
        best = store.first_valid(0, lambda c: c.error >= 3)
        assert best.error == 3
        # Rejected candidates stay registered
        assert len(store) == 6

    def test_first_valid_scans_beyond_window(self):
        store = make_store([5, 3, 9, 0, 7, 1])
        best = store.first_valid(0, lambda c: c.error == 9)
        assert best.error == 9

    def test_first_valid_none(self):
        store = make_store([5, 3, 9])
        assert store.first_valid(0, lambda c: False) is None
        assert CandidateStore().first_valid(0, lambda c: True) is None

    def test_check_detects_stale_window(self):
        store = make_store([5, 3, 9, 0])
        store.compute_window(face_count=0)
        store.get(3, 103).error = 42
        assert not store.check()

    def test_clear(self):
        store = make_store([1, 2])
        store.compute_window(face_count=0)
        store.clear()
        assert len(store) == 0
        assert store.window_count == 0
