# InsightFace-backed recognition engine.
#
# Detection:   RetinaFace (``det_model`` of the FaceAnalysis pack)
# Extraction:  ArcFace (``models["recognition"]``) on a 5-point
#              aligned crop
#
# Models are resolved as <sdk_path>/models/<model_pack>, which is
# exactly where FaceAnalysis looks when given root=<sdk_path>.
#
# Detection and extraction share one ONNX session per model and are
# not re-entrant; callers serialise them (BiometricContext does).

from __future__ import annotations

import threading
from typing import List, Optional, Tuple

import numpy as np
from loguru import logger

from core.engine.base_engine import BaseRecognitionEngine
from core.engine.records import FaceRecord, FaceRecordSet, face_record_from_xyxy
from core.errors import EngineError, EngineStatus
from utils.face_align import norm_crop


class InsightFaceEngine(BaseRecognitionEngine):
    """
    Recognition engine wrapping an InsightFace ``FaceAnalysis`` pack.

    Quick usage::

        engine = InsightFaceEngine(model_pack="buffalo_l")
        engine.load_model("/opt/sdk")      # reads /opt/sdk/models/buffalo_l

        record_set = engine.detect(bgr)
        engine.extract(bgr, record_set.records[0])
    """

    def __init__(
        self,
        model_pack: str = "buffalo_l",
        det_size: Tuple[int, int] = (640, 640),
        det_threshold: float = 0.5,
        detect_best_face_only: bool = True,
        min_extractable_size: int = 4,
        providers: Optional[List[str]] = None,
        ctx_id: int = 0,
        strategy: str = "best",
    ) -> None:
        """
        Args:
            model_pack:            InsightFace model pack name.
            det_size:              (width, height) detector input size.
            det_threshold:         Minimum detection confidence.
            detect_best_face_only: Keep only the most confident face.
            min_extractable_size:  Minimum face side for extraction.
            providers:             ONNX Runtime providers, in priority order.
            ctx_id:                GPU index; -1 = CPU.
            strategy:              Subject scoring strategy for compare().
        """
        super().__init__(strategy=strategy, min_extractable_size=min_extractable_size)

        self.model_pack = model_pack
        self.det_size = tuple(det_size)
        self.det_threshold = float(det_threshold)
        self.detect_best_face_only = bool(detect_best_face_only)
        self.providers = providers or [
            "CUDAExecutionProvider",
            "CPUExecutionProvider",
        ]
        self.ctx_id = ctx_id

        self._load_lock = threading.Lock()
        self._app = None
        self._rec_model = None

    @classmethod
    def from_settings(cls, engine_settings, matching_settings) -> "InsightFaceEngine":
        """Build an engine from ``EngineSettings`` / ``MatchingSettings``."""
        return cls(
            model_pack=engine_settings.model_pack,
            det_size=engine_settings.det_size,
            det_threshold=engine_settings.det_threshold,
            detect_best_face_only=engine_settings.detect_best_face_only,
            min_extractable_size=engine_settings.min_extractable_size,
            providers=list(engine_settings.providers),
            ctx_id=engine_settings.ctx_id,
            strategy=matching_settings.strategy,
        )

    # ------------------------------------------------------------------
    # Model loading
    # ------------------------------------------------------------------

    def load_model(self, sdk_path: str) -> None:
        """
        Load the detection and recognition models of the pack.

        Raises:
            EngineError: NULL_MODELS_PATH / INVALID_MODELS_PATH for a bad
                         *sdk_path*, MODEL_LOAD_FAILED otherwise.
        """
        with self._load_lock:
            if self._is_loaded:
                logger.debug(f"{self.engine_name} already loaded, skipping.")
                return

            self.models_path = self.resolve_models_path(sdk_path)
            providers = self._resolve_providers()

            logger.info(
                f"Loading InsightFace engine | "
                f"pack={self.model_pack} | "
                f"root={sdk_path} | "
                f"providers={providers}"
            )
            t0 = self._timer()

            try:
                from insightface.app import FaceAnalysis  # noqa: PLC0415

                app = FaceAnalysis(
                    name=self.model_pack,
                    root=str(sdk_path),
                    providers=providers,
                    allowed_modules=["detection", "recognition"],
                )
                app.prepare(
                    ctx_id=self._resolve_ctx_id(providers),
                    det_thresh=self.det_threshold,
                    det_size=self.det_size,
                )
            except ImportError as exc:
                raise EngineError(
                    EngineStatus.MODEL_LOAD_FAILED,
                    "insightface is not installed. Run: pip install insightface",
                ) from exc
            except Exception as exc:
                raise EngineError(
                    EngineStatus.MODEL_LOAD_FAILED,
                    f"Failed to load InsightFace pack '{self.model_pack}': {exc}",
                ) from exc

            self._attach(app)

            elapsed = self._timer() - t0
            logger.success(
                f"InsightFace engine ready in {elapsed:.0f} ms | pack={self.model_pack}"
            )

    def _attach(self, app) -> None:
        """Adopt a prepared FaceAnalysis instance."""
        rec_model = getattr(app, "models", {}).get("recognition")
        if getattr(app, "det_model", None) is None or rec_model is None:
            raise EngineError(
                EngineStatus.MODEL_LOAD_FAILED,
                f"Model pack '{self.model_pack}' lacks a detection or recognition model.",
            )
        self._app = app
        self._rec_model = rec_model
        self._model = app
        self._is_loaded = True

    # ------------------------------------------------------------------
    # Detection / extraction
    # ------------------------------------------------------------------

    def detect(self, image: np.ndarray) -> FaceRecordSet:
        self._require_loaded()
        self._validate_image(image)

        h, w = image.shape[:2]
        max_num = 1 if self.detect_best_face_only else 0

        try:
            bboxes, kpss = self._app.det_model.detect(image, max_num=max_num, metric="default")
        except Exception as exc:
            raise EngineError(EngineStatus.INFERENCE_FAILED, f"Face detection failed: {exc}") from exc

        if bboxes is None or len(bboxes) == 0:
            logger.debug("No faces detected.")
            return FaceRecordSet(records=[], image_width=w, image_height=h)

        order = np.argsort(-bboxes[:, 4], kind="stable")
        records: List[FaceRecord] = []
        for face_index, i in enumerate(order):
            x1, y1, x2, y2, score = bboxes[i][:5]
            landmarks = kpss[i] if kpss is not None else None
            records.append(
                face_record_from_xyxy(
                    x1, y1, x2, y2, score,
                    face_index=face_index,
                    landmarks=landmarks,
                )
            )

        logger.debug(f"Detected {len(records)} face(s) in {w}×{h} image.")
        return FaceRecordSet(records=records, image_width=w, image_height=h)

    def is_extractable(self, record: FaceRecord) -> bool:
        # ArcFace needs the 5 keypoints for alignment
        return record.has_landmarks and super().is_extractable(record)

    def extract(self, image: np.ndarray, record: FaceRecord) -> None:
        self._require_loaded()

        output_size = int(getattr(self._rec_model, "input_size", (112, 112))[0])
        aligned, _ = norm_crop(image, record.landmarks, output_size=output_size)
        if aligned is None:
            logger.warning(f"Alignment failed for face {record.face_index}, no signature.")
            return

        try:
            feat = self._rec_model.get_feat(aligned)
        except Exception as exc:
            raise EngineError(EngineStatus.INFERENCE_FAILED, f"Signature extraction failed: {exc}") from exc

        vec = np.asarray(feat, dtype=np.float32).flatten()
        norm = np.linalg.norm(vec)
        if not np.isfinite(norm) or norm < 1e-10:
            logger.warning("Signature norm near zero, degenerate extraction.")
            return
        record.signature = vec / norm

    # ------------------------------------------------------------------
    # Resource management
    # ------------------------------------------------------------------

    def release(self) -> None:
        self._app = None
        self._rec_model = None
        super().release()
        logger.info("InsightFaceEngine released.")

    def get_model_info(self) -> dict:
        return {
            "model_pack":            self.model_pack,
            "models_path":           str(self.models_path) if self.models_path else None,
            "det_size":              self.det_size,
            "det_threshold":         self.det_threshold,
            "detect_best_face_only": self.detect_best_face_only,
            "providers":             self.providers,
            "ctx_id":                self.ctx_id,
            "strategy":              self.strategy,
            "is_loaded":             self._is_loaded,
        }

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _resolve_providers(self) -> List[str]:
        """Keep only the requested providers ONNX Runtime actually offers."""
        import onnxruntime as ort  # noqa: PLC0415

        available = ort.get_available_providers()
        resolved = [p for p in self.providers if p in available]
        if not resolved:
            resolved = ["CPUExecutionProvider"]
        logger.debug(f"ONNX providers resolved: {resolved}")
        return resolved

    def _resolve_ctx_id(self, providers: List[str]) -> int:
        if "CUDAExecutionProvider" not in providers:
            return -1
        return self.ctx_id

    def __repr__(self) -> str:
        status = "loaded" if self._is_loaded else "not loaded"
        return (
            f"InsightFaceEngine("
            f"pack={self.model_pack!r}, "
            f"det_size={self.det_size}, "
            f"strategy={self.strategy!r}, "
            f"status={status})"
        )
