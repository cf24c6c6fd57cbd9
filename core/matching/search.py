# ============================================================
# Biometric Template Adapter
# core/matching/search.py
# ============================================================
# 1:N search of a flat probe template against a flat gallery.
#
#   probe  ──unflatten(subject 0)──► probe gallery ─┐
#                                                   ├─ compare ─► row 0
#   flat gallery ──load──────────► target gallery ──┘
#
# Ranking:
#   - one candidate per distinct target subject id
#   - count = min(k, number of subjects)
#   - stable sort by score, descending; ties keep the gallery's
#     subject enumeration order (implementation-defined)
#   - NO_COMPARISON cells rank last with REJECTION_SCORE
# ============================================================

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Tuple

from loguru import logger

from core.engine.base_engine import BaseRecognitionEngine
from core.engine.similarity import Score
from core.gallery.enrollment import load_gallery
from core.matching.verification import REJECTION_SCORE
from core.template.codec import unflatten_template

_PROBE_SUBJECT = 0


@dataclass
class SearchResult:
    """
    Ranked output of a 1:N search.

    Attributes:
        ids:            Subject ids, best match first.
        scores:         Scores aligned with *ids* (non-increasing).
        num_candidates: Distinct subjects in the searched gallery.
        search_time_ms: Wall-clock search time in milliseconds.
    """

    ids: List[int] = field(default_factory=list)
    scores: List[float] = field(default_factory=list)
    num_candidates: int = 0
    search_time_ms: float = 0.0

    @property
    def count(self) -> int:
        """Number of ranked entries returned."""
        return len(self.ids)

    @property
    def best(self) -> Optional[Tuple[int, float]]:
        if not self.ids:
            return None
        return self.ids[0], self.scores[0]

    def __iter__(self) -> Iterator[Tuple[int, float]]:
        return iter(zip(self.ids, self.scores))

    def __len__(self) -> int:
        return self.count

    def __repr__(self) -> str:
        best = f"{self.ids[0]}@{self.scores[0]:.4f}" if self.ids else "none"
        return (
            f"SearchResult("
            f"count={self.count}, "
            f"candidates={self.num_candidates}, "
            f"best={best}, "
            f"time={self.search_time_ms:.1f}ms)"
        )


def rank(candidates: List[Tuple[int, float]], k: int) -> List[Tuple[int, float]]:
    """
    Keep the *k* best (subject_id, score) pairs, highest score first.

    Python's sort is stable, so equal scores stay in input order.
    """
    if k < 0:
        raise ValueError(f"k must be non-negative, got {k}.")
    ranked = sorted(candidates, key=lambda c: c[1], reverse=True)
    return ranked[:min(k, len(ranked))]


def search(
    engine: BaseRecognitionEngine,
    probe: bytes,
    gallery: bytes,
    k: int,
    probe_bytes: Optional[int] = None,
) -> SearchResult:
    """
    Rank every subject of a flat gallery against a flat probe template.

    Args:
        engine:      Engine used to decode and compare.
        probe:       Flat probe template.
        gallery:     Flat gallery (``flatten_gallery`` output).
        k:           Maximum number of ranked entries to return.
        probe_bytes: Optional byte count of *probe* to decode.

    Returns:
        SearchResult with ``count == min(k, number of subjects)``.

    Raises:
        ValueError:           If *k* is negative.
        CorruptTemplateError: If the probe is misaligned.
        EngineError:          If the gallery blob is corrupt.
    """
    if k < 0:
        raise ValueError(f"k must be non-negative, got {k}.")

    t0 = time.perf_counter()
    probe_gallery = engine.create_gallery()
    target_gallery = None
    matrix = None
    try:
        unflatten_template(engine, probe, probe_gallery, _PROBE_SUBJECT, byte_count=probe_bytes)
        target_gallery = load_gallery(engine, gallery)

        matrix = engine.compare(probe_gallery, target_gallery)

        candidates: List[Tuple[int, float]] = []
        for subject_id in target_gallery.subject_ids():
            cell = matrix.score(_PROBE_SUBJECT, subject_id)
            score = cell.value if isinstance(cell, Score) else REJECTION_SCORE
            candidates.append((subject_id, score))

        top = rank(candidates, k)
        result = SearchResult(
            ids=[sid for sid, _ in top],
            scores=[score for _, score in top],
            num_candidates=len(candidates),
            search_time_ms=(time.perf_counter() - t0) * 1000.0,
        )
    finally:
        probe_gallery.release()
        if target_gallery is not None:
            target_gallery.release()
        if matrix is not None:
            matrix.release()

    logger.debug(
        f"Search: k={k}, candidates={result.num_candidates}, "
        f"returned={result.count}, time={result.search_time_ms:.1f}ms"
    )
    return result
