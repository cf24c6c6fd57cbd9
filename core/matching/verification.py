# ============================================================
# Biometric Template Adapter
# core/matching/verification.py
# ============================================================
# 1:1 verification of two flat templates.
#
#   flat A ──unflatten(subject 0)──► gallery A ─┐
#                                               ├─ compare ─► cell (0, 0)
#   flat B ──unflatten(subject 0)──► gallery B ─┘
#
# Result:
#   - either side without a signature  → REJECTION_SCORE (-1.5)
#   - cell is NO_COMPARISON            → UnknownError
#   - otherwise                        → the score
#
# Both ephemeral galleries are released on every exit path, and
# the shared enrollment counter is never touched.
# ============================================================

from __future__ import annotations

from typing import Optional

from loguru import logger

from core.engine.base_engine import BaseRecognitionEngine
from core.engine.similarity import Score
from core.errors import UnknownError
from core.template.codec import unflatten_template

REJECTION_SCORE = -1.5

_SUBJECT = 0


def verify(
    engine: BaseRecognitionEngine,
    template_a: bytes,
    template_b: bytes,
    a_bytes: Optional[int] = None,
    b_bytes: Optional[int] = None,
) -> float:
    """
    Compare two flat templates and return their similarity.

    Args:
        engine:     Engine used to decode and compare.
        template_a: First flat template.
        template_b: Second flat template.
        a_bytes:    Optional byte count of *template_a* to decode.
        b_bytes:    Optional byte count of *template_b* to decode.

    Returns:
        Similarity score (higher = more similar), or REJECTION_SCORE if
        either template yields no usable signature.

    Raises:
        UnknownError:         If the engine could not compare the two
                              signature sets.
        CorruptTemplateError: If either flat template is misaligned.
    """
    similarity = REJECTION_SCORE

    gallery_a = engine.create_gallery()
    gallery_b = engine.create_gallery()
    matrix = None
    try:
        n_a = unflatten_template(engine, template_a, gallery_a, _SUBJECT, byte_count=a_bytes)
        n_b = unflatten_template(engine, template_b, gallery_b, _SUBJECT, byte_count=b_bytes)
        if n_a == 0 or n_b == 0:
            logger.debug(
                f"Verify: no usable signature (a={n_a}, b={n_b}), rejecting"
            )
            return similarity

        matrix = engine.compare(gallery_a, gallery_b)
        cell = matrix.score(_SUBJECT, _SUBJECT)
        if not isinstance(cell, Score):
            raise UnknownError("Similarity is undefined for these templates.")

        similarity = cell.value
        logger.debug(f"Verify: {n_a} vs {n_b} signature(s) → {similarity:.4f}")
        return similarity
    finally:
        gallery_a.release()
        gallery_b.release()
        if matrix is not None:
            matrix.release()
