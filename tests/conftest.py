"""Shared pytest fixtures for all test modules."""

from __future__ import annotations

from typing import Callable, List, Optional

import numpy as np
import pytest

from config.settings import Settings
from core.context import BiometricContext, initialize
from core.engine.base_engine import BaseRecognitionEngine
from core.engine.records import FaceRecord, FaceRecordSet

STUB_DIM = 16


def unit_signature(seed: int, dim: int = STUB_DIM) -> np.ndarray:
    """Deterministic unit-norm float32 signature for *seed*."""
    rng = np.random.default_rng(seed)
    v = rng.standard_normal(dim).astype(np.float32)
    return v / np.linalg.norm(v)


class StubEngine(BaseRecognitionEngine):
    """
    Deterministic engine reading its "faces" from the image itself.

    Pixel (0, 0) encodes the scene:
        B = identity seed, G = number of faces, R = face side in pixels.

    Face *i* is placed at x = i * side; every face of an identity gets
    the same signature, so a template compared against itself scores 1.0.
    """

    def __init__(self, dim: int = STUB_DIM, **kwargs) -> None:
        super().__init__(**kwargs)
        self.dim = dim
        self.detect_calls = 0
        self.extract_calls = 0

    def load_model(self, sdk_path: str) -> None:
        self.models_path = self.resolve_models_path(sdk_path)
        self._model = object()
        self._is_loaded = True

    def detect(self, image: np.ndarray) -> FaceRecordSet:
        self._require_loaded()
        self._validate_image(image)
        self.detect_calls += 1

        identity, count, side = (int(v) for v in image[0, 0])
        h, w = image.shape[:2]
        records = [
            FaceRecord(
                x1=i * side, y1=0, x2=i * side + side, y2=side,
                confidence=0.99 - 0.01 * i,
                face_index=i,
            )
            for i in range(count)
        ]
        return FaceRecordSet(records=records, image_width=w, image_height=h)

    def extract(self, image: np.ndarray, record: FaceRecord) -> None:
        self._require_loaded()
        self.extract_calls += 1
        record.signature = unit_signature(int(image[0, 0, 0]), self.dim)


def make_scene(identity: int, faces: int = 1, side: int = 32, size: int = 96) -> np.ndarray:
    """Build a BGR image StubEngine reads as *faces* faces of *identity*."""
    image = np.zeros((size, size, 3), dtype=np.uint8)
    image[0, 0] = (identity, faces, side)
    return image


def make_record(
    signature: Optional[np.ndarray] = None,
    face_index: int = 0,
    with_landmarks: bool = False,
) -> FaceRecord:
    landmarks = None
    if with_landmarks:
        landmarks = np.array(
            [[30.0, 35.0], [70.0, 35.0], [50.0, 55.0], [35.0, 75.0], [65.0, 75.0]],
            dtype=np.float32,
        )
    return FaceRecord(
        x1=10, y1=20, x2=110, y2=140,
        confidence=0.87,
        face_index=face_index,
        landmarks=landmarks,
        signature=signature,
    )


def make_record_set(signatures: List[Optional[np.ndarray]]) -> FaceRecordSet:
    """One record per entry; None entries carry no signature."""
    return FaceRecordSet(
        records=[make_record(sig, face_index=i) for i, sig in enumerate(signatures)],
        image_width=640,
        image_height=480,
    )


@pytest.fixture
def sdk_dir(tmp_path):
    """An SDK root with the expected models/ subdirectory."""
    (tmp_path / "models").mkdir()
    return tmp_path


@pytest.fixture
def stub_engine(sdk_dir) -> StubEngine:
    engine = StubEngine()
    engine.load_model(str(sdk_dir))
    return engine


@pytest.fixture
def test_settings() -> Settings:
    return Settings()


@pytest.fixture
def context(sdk_dir, test_settings) -> BiometricContext:
    ctx = initialize(str(sdk_dir), settings=test_settings, engine=StubEngine())
    yield ctx
    ctx.finalize()


@pytest.fixture
def scene() -> Callable[..., np.ndarray]:
    return make_scene


@pytest.fixture
def blank_image() -> np.ndarray:
    return np.zeros((480, 640, 3), dtype=np.uint8)


@pytest.fixture
def random_image() -> np.ndarray:
    rng = np.random.default_rng(42)
    return rng.integers(0, 256, (480, 640, 3), dtype=np.uint8)
