# ============================================================
# Biometric Template Adapter
# core/template/template.py
# ============================================================
# Template container: the face record sets gathered for one
# subject-in-progress, one set per augment() call.
#
#   image ──detect──► FaceRecordSet ──extract (in place)──►
#         appended whole to Template.record_sets
#
# Records the engine cannot extract a signature for are kept;
# only extraction is skipped.
# ============================================================

from __future__ import annotations

from typing import Iterator, List, Union

import numpy as np
from loguru import logger

from core.engine.base_engine import BaseRecognitionEngine
from core.engine.records import FaceRecordSet
from utils.image_utils import BiometricImage, to_engine_image


class Template:
    """
    Ordered sequence of FaceRecordSets for one subject.

    Insertion order is augmentation order; it fixes the byte layout of
    the flattened template but has no effect on matching.
    """

    def __init__(self) -> None:
        self._record_sets: List[FaceRecordSet] = []
        self._released = False

    def append(self, record_set: FaceRecordSet) -> None:
        self._require_live()
        self._record_sets.append(record_set)

    @property
    def record_sets(self) -> List[FaceRecordSet]:
        self._require_live()
        return list(self._record_sets)

    @property
    def num_record_sets(self) -> int:
        return len(self._record_sets)

    @property
    def num_faces(self) -> int:
        return sum(s.num_faces for s in self._record_sets)

    @property
    def num_signatures(self) -> int:
        return sum(s.num_signatures for s in self._record_sets)

    @property
    def is_released(self) -> bool:
        return self._released

    def release(self) -> None:
        """Drop every record set. Later calls are no-ops."""
        if self._released:
            return
        self._record_sets.clear()
        self._released = True

    def _require_live(self) -> None:
        if self._released:
            raise RuntimeError("Template has been released.")

    def __iter__(self) -> Iterator[FaceRecordSet]:
        return iter(self.record_sets)

    def __len__(self) -> int:
        return self.num_record_sets

    def __repr__(self) -> str:
        if self._released:
            return "Template(released)"
        return (
            f"Template("
            f"record_sets={self.num_record_sets}, "
            f"faces={self.num_faces}, "
            f"signatures={self.num_signatures})"
        )


def augment(
    engine: BaseRecognitionEngine,
    image: Union[BiometricImage, np.ndarray],
    template: Template,
) -> FaceRecordSet:
    """
    Detect faces in *image*, extract what can be extracted, and append
    the resulting set to *template*.

    Exactly one record set is appended per call, even when no face is
    found.

    Returns:
        The appended FaceRecordSet.

    Raises:
        EngineError:  For unreadable images or engine failures.
        RuntimeError: If *template* was released.
    """
    template._require_live()
    frame = to_engine_image(image)

    record_set = engine.detect(frame)
    for record in record_set.records:
        if not engine.is_extractable(record):
            continue
        engine.extract(frame, record)

    template.append(record_set)
    logger.debug(
        f"Augmented template: +{record_set.num_faces} face(s), "
        f"{record_set.num_signatures} with signature "
        f"(now {template.num_record_sets} set(s))"
    )
    return record_set
