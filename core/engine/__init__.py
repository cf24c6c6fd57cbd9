# ============================================================
# Biometric Template Adapter
# core/engine/__init__.py
# ============================================================

from core.engine.base_engine import BaseRecognitionEngine
from core.engine.insightface_engine import InsightFaceEngine
from core.engine.records import FaceRecord, FaceRecordSet, face_record_from_xyxy
from core.engine.similarity import (
    NO_COMPARISON,
    Score,
    SimilarityMatrix,
    cosine_similarity_matrix,
)

__all__ = [
    "BaseRecognitionEngine",
    "InsightFaceEngine",
    "FaceRecord",
    "FaceRecordSet",
    "face_record_from_xyxy",
    "NO_COMPARISON",
    "Score",
    "SimilarityMatrix",
    "cosine_similarity_matrix",
]
