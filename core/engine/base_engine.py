# ============================================================
# Biometric Template Adapter
# core/engine/base_engine.py
# ============================================================
# Capability contract that every recognition engine implements.
#
# Hierarchy:
#   BaseRecognitionEngine  (abstract)
#       └── InsightFaceEngine
#       └── <any future engine>
#
# Capabilities:
#   detect / is_extractable / extract / has_signature
#       - subclasses supply detection + extraction
#   create_gallery / add_face / compare
#   serialize_record_set / deserialize_record_set
#   serialize_gallery / deserialize_gallery
#       - implemented here once, shared by every engine
#
# The template codec and the matching code only talk to this
# interface, so engines can be swapped without touching them.
# ============================================================

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import numpy as np

from core.engine import record_format
from core.engine.records import FaceRecord, FaceRecordSet
from core.engine.similarity import SimilarityMatrix
from core.errors import EngineError, EngineStatus
from core.gallery.gallery import Gallery

MODELS_SUBDIR = "models"


class BaseRecognitionEngine(ABC):
    """
    Abstract base class for recognition engines.

    Subclasses must implement:
        - ``load_model(sdk_path)``   - load weights into memory
        - ``detect(image)``          - one detection pass → FaceRecordSet
        - ``extract(image, record)`` - set ``record.signature`` in place

    Optional overrides:
        - ``is_extractable(record)`` - stricter extraction gate
        - ``release()``              - free model memory

    Usage::

        engine = InsightFaceEngine()
        engine.load_model("/opt/sdk")

        record_set = engine.detect(image)
        for record in record_set:
            if engine.is_extractable(record):
                engine.extract(image, record)
    """

    def __init__(
        self,
        strategy: str = "best",
        min_extractable_size: int = 4,
    ) -> None:
        """
        Args:
            strategy:             Subject-pair scoring for ``compare()``:
                                  'best' (max over signature pairs) or
                                  'mean' (cosine of mean signatures).
            min_extractable_size: Faces narrower or shorter than this
                                  (pixels) are never given a signature.
        """
        if strategy not in ("best", "mean"):
            raise ValueError(f"strategy must be 'best' or 'mean', got {strategy!r}.")
        self.strategy = strategy
        self.min_extractable_size = int(min_extractable_size)

        self.models_path: Optional[Path] = None
        self._model = None
        self._is_loaded: bool = False

    # ------------------------------------------------------------------
    # Abstract interface - subclasses MUST implement these
    # ------------------------------------------------------------------

    @abstractmethod
    def load_model(self, sdk_path: str) -> None:
        """
        Load the engine's models from ``<sdk_path>/models/``.

        Must:
          - Populate ``self._model``
          - Set ``self._is_loaded = True``
          - Raise ``EngineError`` (NULL_MODELS_PATH / INVALID_MODELS_PATH /
            MODEL_LOAD_FAILED) on failure.
        """

    @abstractmethod
    def detect(self, image: np.ndarray) -> FaceRecordSet:
        """
        Run one detection pass over a BGR uint8 image.

        Returns:
            FaceRecordSet (possibly empty). Records carry no signature yet.

        Raises:
            EngineError: NOT_LOADED, NULL_IMAGE, INVALID_RAW_IMAGE or
                         INFERENCE_FAILED.
        """

    @abstractmethod
    def extract(self, image: np.ndarray, record: FaceRecord) -> None:
        """
        Extract a signature for *record* from *image*, in place.

        Raises:
            EngineError: NOT_LOADED or INFERENCE_FAILED.
        """

    # ------------------------------------------------------------------
    # Concrete capabilities
    # ------------------------------------------------------------------

    def is_extractable(self, record: FaceRecord) -> bool:
        """True if the face is large enough to carry a signature."""
        return (
            record.width >= self.min_extractable_size
            and record.height >= self.min_extractable_size
        )

    @staticmethod
    def has_signature(record: FaceRecord) -> bool:
        return record.has_signature

    def create_gallery(self) -> Gallery:
        return Gallery()

    def add_face(
        self,
        gallery: Gallery,
        record: FaceRecord,
        subject_id: int,
        face_id: int,
    ) -> None:
        """
        Add the signature of *record* to *gallery*.

        Raises:
            EngineError: CORRUPT_DATA if the record has no signature,
                         DIMENSION_MISMATCH if its size differs from the
                         gallery's.
        """
        if not record.has_signature:
            raise EngineError(EngineStatus.CORRUPT_DATA, "Face record has no signature.")
        try:
            gallery.add(subject_id, face_id, record.signature)
        except ValueError as exc:
            raise EngineError(EngineStatus.DIMENSION_MISMATCH, str(exc)) from exc

    def compare(self, probe: Gallery, target: Gallery) -> SimilarityMatrix:
        """
        Score every subject of *probe* against every subject of *target*.

        Raises:
            EngineError: DIMENSION_MISMATCH for incompatible galleries.
        """
        try:
            return SimilarityMatrix.from_galleries(probe, target, strategy=self.strategy)
        except ValueError as exc:
            raise EngineError(EngineStatus.DIMENSION_MISMATCH, str(exc)) from exc

    def serialize_record_set(self, record_set: FaceRecordSet) -> bytes:
        return record_format.encode_record_set(record_set)

    def deserialize_record_set(self, blob: bytes) -> FaceRecordSet:
        return record_format.decode_record_set(blob)

    def serialize_gallery(self, gallery: Gallery) -> bytes:
        return record_format.encode_gallery(gallery)

    def deserialize_gallery(self, blob: bytes) -> Gallery:
        return record_format.decode_gallery(blob)

    def release(self) -> None:
        """
        Release model resources.

        Subclasses should call ``super().release()`` after their own
        cleanup.
        """
        self._model = None
        self._is_loaded = False

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def is_loaded(self) -> bool:
        return self._is_loaded

    @property
    def engine_name(self) -> str:
        return self.__class__.__name__

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_loaded(self) -> None:
        if not self._is_loaded:
            raise EngineError(
                EngineStatus.NOT_LOADED,
                f"{self.engine_name} is not loaded. Call load_model() first.",
            )

    @staticmethod
    def resolve_models_path(sdk_path: Optional[str]) -> Path:
        """
        Return ``<sdk_path>/models`` after checking it exists.

        Raises:
            EngineError: NULL_MODELS_PATH if *sdk_path* is empty,
                         INVALID_MODELS_PATH if the directory is missing.
        """
        if sdk_path is None or not str(sdk_path).strip():
            raise EngineError(EngineStatus.NULL_MODELS_PATH, "SDK path is empty.")
        models_path = Path(sdk_path) / MODELS_SUBDIR
        if not models_path.is_dir():
            raise EngineError(
                EngineStatus.INVALID_MODELS_PATH,
                f"Models directory not found: {models_path}",
            )
        return models_path

    @staticmethod
    def _validate_image(image: np.ndarray) -> None:
        """Raise EngineError for images the engine cannot read."""
        if image is None:
            raise EngineError(EngineStatus.NULL_IMAGE, "Image is None.")
        if not isinstance(image, np.ndarray):
            raise EngineError(
                EngineStatus.INVALID_RAW_IMAGE,
                f"Expected numpy ndarray, got {type(image).__name__}.",
            )
        if image.ndim != 3 or image.shape[2] != 3 or image.dtype != np.uint8:
            raise EngineError(
                EngineStatus.INVALID_RAW_IMAGE,
                f"Expected (H, W, 3) uint8 BGR image, got {image.shape} {image.dtype}.",
            )
        if image.size == 0:
            raise EngineError(EngineStatus.INVALID_RAW_IMAGE, "Image array is empty.")

    @staticmethod
    def _timer() -> float:
        """Return current time in milliseconds."""
        return time.perf_counter() * 1000.0

    def __repr__(self) -> str:
        status = "loaded" if self._is_loaded else "not loaded"
        return (
            f"{self.engine_name}("
            f"strategy={self.strategy!r}, "
            f"status={status})"
        )
