# Unit tests for:
#   - verify   (rejection score, self-match, NO_COMPARISON, cleanup)
#   - search   (count = min(k, m), ordering, ties, empty gallery, k < 0)
#   - rank / SearchResult helpers
#
# StubEngine only - no models.

from __future__ import annotations

from typing import List
from unittest.mock import patch

import numpy as np
import pytest

from conftest import make_record_set, unit_signature
from core.errors import CorruptTemplateError, EngineError, UnknownError
from core.gallery.enrollment import enroll, flatten_gallery
from core.gallery.gallery import FaceIdCounter, Gallery
from core.matching.search import SearchResult, rank, search
from core.matching.verification import REJECTION_SCORE, verify
from core.template.codec import flatten_template
from core.template.template import Template


def _template(*signatures) -> Template:
    t = Template()
    t.append(make_record_set(list(signatures)))
    return t


def _flat(engine, *signatures) -> bytes:
    return flatten_template(engine, _template(*signatures))


def _flat_gallery(engine, subjects) -> bytes:
    """subjects: list of (subject_id, signature) pairs."""
    gallery = Gallery()
    counter = FaceIdCounter()
    for subject_id, sig in subjects:
        enroll(engine, _template(sig), subject_id, gallery, counter)
    return flatten_gallery(engine, gallery)


@pytest.fixture
def tracked_galleries(stub_engine, monkeypatch) -> List[Gallery]:
    """Record every gallery the engine hands out."""
    created: List[Gallery] = []
    original = stub_engine.create_gallery

    def create_gallery():
        g = original()
        created.append(g)
        return g

    monkeypatch.setattr(stub_engine, "create_gallery", create_gallery)
    return created


class TestVerify:

    def test_rejection_score_constant(self):
        assert REJECTION_SCORE == -1.5

    def test_both_empty(self, stub_engine):
        assert verify(stub_engine, b"", b"") == REJECTION_SCORE

    def test_one_side_without_signature(self, stub_engine):
        a = _flat(stub_engine, unit_signature(1))
        b = _flat(stub_engine, None)
        assert verify(stub_engine, a, b) == REJECTION_SCORE
        assert verify(stub_engine, b, a) == REJECTION_SCORE

    def test_self_match_is_one(self, stub_engine):
        a = _flat(stub_engine, unit_signature(1))
        assert verify(stub_engine, a, a) == pytest.approx(1.0, abs=1e-6)

    def test_self_match_reproducible(self, stub_engine):
        a = _flat(stub_engine, unit_signature(3))
        assert verify(stub_engine, a, a) == verify(stub_engine, a, a)

    def test_different_identities_score_lower(self, stub_engine):
        a = _flat(stub_engine, unit_signature(1))
        b = _flat(stub_engine, unit_signature(2))
        score = verify(stub_engine, a, b)
        assert -1.0 <= score < 0.99

    def test_symmetric(self, stub_engine):
        a = _flat(stub_engine, unit_signature(1), unit_signature(4))
        b = _flat(stub_engine, unit_signature(2))
        assert verify(stub_engine, a, b) == pytest.approx(verify(stub_engine, b, a))

    def test_best_pair_wins(self, stub_engine):
        a = _flat(stub_engine, unit_signature(1), unit_signature(2))
        b = _flat(stub_engine, unit_signature(2))
        assert verify(stub_engine, a, b) == pytest.approx(1.0, abs=1e-6)

    def test_no_comparison_raises(self, stub_engine):
        zero = np.zeros(16, dtype=np.float32)
        a = _flat(stub_engine, zero)
        b = _flat(stub_engine, unit_signature(1))
        with pytest.raises(UnknownError):
            verify(stub_engine, a, b)

    def test_corrupt_template(self, stub_engine):
        a = _flat(stub_engine, unit_signature(1))
        with pytest.raises(CorruptTemplateError):
            verify(stub_engine, a + b"\x00", a)

    def test_byte_counts(self, stub_engine):
        a = _flat(stub_engine, unit_signature(1))
        assert verify(stub_engine, a, a, a_bytes=0) == REJECTION_SCORE

    def test_galleries_released(self, stub_engine, tracked_galleries):
        a = _flat(stub_engine, unit_signature(1))
        verify(stub_engine, a, a)
        assert len(tracked_galleries) == 2
        assert all(g.is_released for g in tracked_galleries)

    def test_galleries_released_on_rejection(self, stub_engine, tracked_galleries):
        verify(stub_engine, b"", b"")
        assert all(g.is_released for g in tracked_galleries)

    def test_galleries_released_on_error(self, stub_engine, tracked_galleries):
        with pytest.raises(CorruptTemplateError):
            verify(stub_engine, b"\x01", b"")
        assert tracked_galleries
        assert all(g.is_released for g in tracked_galleries)


class TestRank:

    def test_descending(self):
        assert rank([(1, 0.2), (2, 0.9), (3, 0.5)], 3) == [(2, 0.9), (3, 0.5), (1, 0.2)]

    def test_ties_keep_input_order(self):
        assert rank([(7, 0.5), (3, 0.5), (9, 0.5)], 3) == [(7, 0.5), (3, 0.5), (9, 0.5)]

    def test_k_larger_than_candidates(self):
        assert len(rank([(1, 0.1)], 10)) == 1

    def test_k_zero(self):
        assert rank([(1, 0.1)], 0) == []

    def test_negative_k(self):
        with pytest.raises(ValueError):
            rank([], -1)


class TestSearchResult:

    def test_empty(self):
        r = SearchResult()
        assert r.count == 0
        assert r.best is None
        assert len(r) == 0

    def test_iteration(self):
        r = SearchResult(ids=[4, 2], scores=[0.9, 0.1], num_candidates=2)
        assert list(r) == [(4, 0.9), (2, 0.1)]
        assert r.best == (4, 0.9)
        assert "count=2" in repr(r)


class TestSearch:

    @pytest.fixture
    def flat_gallery(self, stub_engine) -> bytes:
        return _flat_gallery(
            stub_engine,
            [(100, unit_signature(1)), (200, unit_signature(2)), (300, unit_signature(3))],
        )

    @pytest.mark.parametrize("k, expected", [(0, 0), (1, 1), (2, 2), (3, 3), (10, 3)])
    def test_count_is_min_k_m(self, stub_engine, flat_gallery, k, expected):
        probe = _flat(stub_engine, unit_signature(2))
        result = search(stub_engine, probe, flat_gallery, k)
        assert result.count == expected
        assert len(result.ids) == len(result.scores) == expected

    def test_best_match_first(self, stub_engine, flat_gallery):
        probe = _flat(stub_engine, unit_signature(2))
        result = search(stub_engine, probe, flat_gallery, 3)
        assert result.ids[0] == 200
        assert result.scores[0] == pytest.approx(1.0, abs=1e-6)

    def test_scores_non_increasing(self, stub_engine, flat_gallery):
        probe = _flat(stub_engine, unit_signature(3))
        scores = search(stub_engine, probe, flat_gallery, 3).scores
        assert all(a >= b for a, b in zip(scores, scores[1:]))

    def test_one_entry_per_subject(self, stub_engine):
        gallery = _flat_gallery(
            stub_engine,
            [(1, unit_signature(1)), (1, unit_signature(2)), (2, unit_signature(3))],
        )
        result = search(stub_engine, _flat(stub_engine, unit_signature(2)), gallery, 10)
        assert sorted(result.ids) == [1, 2]
        assert result.num_candidates == 2
        assert result.ids[0] == 1

    def test_ties_keep_enrollment_order(self, stub_engine):
        sig = unit_signature(5)
        gallery = _flat_gallery(stub_engine, [(9, sig), (3, sig), (6, sig)])
        result = search(stub_engine, _flat(stub_engine, sig), gallery, 3)
        assert result.ids == [9, 3, 6]

    def test_empty_gallery(self, stub_engine):
        gallery = flatten_gallery(stub_engine, Gallery())
        result = search(stub_engine, _flat(stub_engine, unit_signature(1)), gallery, 5)
        assert result.count == 0
        assert result.ids == []
        assert result.scores == []

    def test_negative_k(self, stub_engine, flat_gallery):
        with pytest.raises(ValueError):
            search(stub_engine, _flat(stub_engine, unit_signature(1)), flat_gallery, -1)

    def test_no_comparison_ranks_last(self, stub_engine):
        zero = np.zeros(16, dtype=np.float32)
        probe_sig = unit_signature(1)
        gallery = _flat_gallery(stub_engine, [(1, zero), (2, -probe_sig)])
        result = search(stub_engine, _flat(stub_engine, probe_sig), gallery, 2)
        assert result.ids == [2, 1]
        assert result.scores[0] == pytest.approx(-1.0, abs=1e-6)
        assert result.scores[1] == REJECTION_SCORE

    def test_probe_without_signature(self, stub_engine, flat_gallery):
        result = search(stub_engine, _flat(stub_engine, None), flat_gallery, 3)
        assert result.ids == [100, 200, 300]
        assert result.scores == [REJECTION_SCORE] * 3

    def test_corrupt_probe(self, stub_engine, flat_gallery):
        with pytest.raises(CorruptTemplateError):
            search(stub_engine, b"\x00\x01", flat_gallery, 3)

    def test_corrupt_gallery(self, stub_engine):
        with pytest.raises(EngineError):
            search(stub_engine, _flat(stub_engine, unit_signature(1)), b"garbage", 3)

    def test_flat_template_is_not_a_gallery(self, stub_engine):
        probe = _flat(stub_engine, unit_signature(1))
        with pytest.raises(EngineError):
            search(stub_engine, probe, probe, 1)

    def test_ephemerals_released(self, stub_engine, flat_gallery, tracked_galleries):
        search(stub_engine, _flat(stub_engine, unit_signature(1)), flat_gallery, 3)
        assert tracked_galleries
        assert all(g.is_released for g in tracked_galleries)

    def test_reports_elapsed_time(self, stub_engine, flat_gallery):
        with patch.object(stub_engine, "_timer", side_effect=AssertionError("engine timer used")):
            result = search(stub_engine, _flat(stub_engine, unit_signature(1)), flat_gallery, 3)
        assert result.search_time_ms >= 0.0
