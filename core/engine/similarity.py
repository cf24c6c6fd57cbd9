# ============================================================
# Biometric Template Adapter
# core/engine/similarity.py
# ============================================================
# Subject-level similarity matrix produced by comparing two
# galleries.  Cells hold either a Score or NO_COMPARISON; no
# NaN ever leaves this module.
# ============================================================

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Tuple, Union

import numpy as np

from core.gallery.gallery import Gallery


@dataclass(frozen=True)
class Score:
    """A valid similarity value (higher = more similar)."""

    value: float


class _NoComparison:
    """Marker for a cell where no signature pair could be compared."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NO_COMPARISON"


NO_COMPARISON = _NoComparison()

Comparison = Union[Score, _NoComparison]


def cosine_similarity_matrix(queries: np.ndarray, targets: np.ndarray) -> np.ndarray:
    """
    Cosine similarity between every row of *queries* and *targets*.

    Rows with zero norm (or non-finite values) yield NaN cells rather
    than an epsilon-smoothed 0.0; callers decide what NaN means.

    Args:
        queries: (N, D) float array.
        targets: (M, D) float array.

    Returns:
        (N, M) float64 matrix clipped to [-1.0, 1.0] (NaN preserved).

    Raises:
        ValueError: If the embedding dimensions differ.
    """
    if queries.ndim == 1:
        queries = queries[np.newaxis, :]
    if targets.ndim == 1:
        targets = targets[np.newaxis, :]

    if queries.shape[1] != targets.shape[1]:
        raise ValueError(
            f"Signature dimension mismatch: "
            f"queries={queries.shape[1]}, targets={targets.shape[1]}"
        )

    q = queries.astype(np.float64)
    t = targets.astype(np.float64)
    with np.errstate(invalid="ignore", divide="ignore"):
        q = q / np.linalg.norm(q, axis=1, keepdims=True)
        t = t / np.linalg.norm(t, axis=1, keepdims=True)
        sims = q @ t.T
    return np.clip(sims, -1.0, 1.0)


def _mean_signature(signatures: np.ndarray) -> np.ndarray:
    mean = signatures.astype(np.float64).mean(axis=0)
    return mean[np.newaxis, :]


def score_subjects(
    probe_signatures: np.ndarray,
    target_signatures: np.ndarray,
    strategy: str = "best",
) -> Comparison:
    """
    Score one probe subject against one target subject.

    Args:
        probe_signatures:  (N, D) signatures of the probe subject.
        target_signatures: (M, D) signatures of the target subject.
        strategy:          'best' (max over all pairs) or 'mean'
                           (cosine of mean signatures).

    Returns:
        Score, or NO_COMPARISON if either side is empty or no pair
        produced a finite cosine.
    """
    if len(probe_signatures) == 0 or len(target_signatures) == 0:
        return NO_COMPARISON

    if strategy == "mean":
        sims = cosine_similarity_matrix(
            _mean_signature(probe_signatures),
            _mean_signature(target_signatures),
        )
    elif strategy == "best":
        sims = cosine_similarity_matrix(probe_signatures, target_signatures)
    else:
        raise ValueError(f"strategy must be 'best' or 'mean', got {strategy!r}.")

    finite = sims[np.isfinite(sims)]
    if finite.size == 0:
        return NO_COMPARISON
    return Score(float(finite.max()))


@dataclass
class SimilarityMatrix:
    """
    Every probe subject scored against every target subject.

    Attributes:
        probe_ids:  Probe subject ids, in the probe gallery's order.
        target_ids: Target subject ids, in the target gallery's order.
        cells:      (probe_id, target_id) → Score | NO_COMPARISON.
    """

    probe_ids: List[int]
    target_ids: List[int]
    cells: Dict[Tuple[int, int], Comparison] = field(default_factory=dict, repr=False)

    def score(self, probe_id: int, target_id: int) -> Comparison:
        """Return the cell for the pair, NO_COMPARISON if absent."""
        return self.cells.get((int(probe_id), int(target_id)), NO_COMPARISON)

    def row(self, probe_id: int) -> List[Tuple[int, Comparison]]:
        """Return (target_id, cell) for every target subject, in order."""
        return [(tid, self.score(probe_id, tid)) for tid in self.target_ids]

    def release(self) -> None:
        self.cells.clear()

    @classmethod
    def from_galleries(
        cls,
        probe: Gallery,
        target: Gallery,
        strategy: str = "best",
    ) -> "SimilarityMatrix":
        """
        Compare every subject in *probe* against every subject in *target*.

        Raises:
            ValueError: If the galleries hold signatures of different
                        dimensions.
        """
        if probe.dim and target.dim and probe.dim != target.dim:
            raise ValueError(
                f"Signature dimension mismatch: probe={probe.dim}, target={target.dim}"
            )

        probe_ids = probe.subject_ids()
        target_ids = target.subject_ids()
        matrix = cls(probe_ids=probe_ids, target_ids=target_ids)

        target_sigs = {tid: target.signatures_for(tid) for tid in target_ids}
        for pid in probe_ids:
            probe_sigs = probe.signatures_for(pid)
            for tid in target_ids:
                matrix.cells[(pid, tid)] = score_subjects(
                    probe_sigs, target_sigs[tid], strategy=strategy
                )
        return matrix

    def __repr__(self) -> str:
        return (
            f"SimilarityMatrix("
            f"probes={len(self.probe_ids)}, "
            f"targets={len(self.target_ids)})"
        )
