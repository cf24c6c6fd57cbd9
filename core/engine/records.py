# Face records produced by an engine's detection pass.
#
#   FaceRecordSet   - every face found by one detect() call
#       └── FaceRecord  - one face: box, confidence, landmarks,
#                         optional extracted signature

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Tuple

import numpy as np


@dataclass
class FaceRecord:
    """
    A single detected face, optionally carrying a biometric signature.

    All coordinates are in absolute pixel space of the source image.

    Attributes:
        x1:          Left edge of the bounding box (pixels).
        y1:          Top edge of the bounding box (pixels).
        x2:          Right edge of the bounding box (pixels).
        y2:          Bottom edge of the bounding box (pixels).
        confidence:  Detection confidence score in [0.0, 1.0].
        face_index:  Zero-based index of this face within its record set.
        landmarks:   Optional (5, 2) float32 array of facial keypoints
                     [left_eye, right_eye, nose, left_mouth, right_mouth].
        signature:   Optional 1-D float32 signature, set in place by
                     the engine's ``extract()``.
    """

    x1: int
    y1: int
    x2: int
    y2: int
    confidence: float
    face_index: int = 0
    landmarks: Optional[np.ndarray] = field(default=None, repr=False)
    signature: Optional[np.ndarray] = field(default=None, repr=False)

    @property
    def width(self) -> int:
        return max(0, self.x2 - self.x1)

    @property
    def height(self) -> int:
        return max(0, self.y2 - self.y1)

    @property
    def as_tuple(self) -> Tuple[int, int, int, int]:
        """Return (x1, y1, x2, y2) as a plain tuple."""
        return self.x1, self.y1, self.x2, self.y2

    @property
    def has_landmarks(self) -> bool:
        """True if 5-point landmark data is available."""
        return self.landmarks is not None and np.asarray(self.landmarks).shape == (5, 2)

    @property
    def has_signature(self) -> bool:
        """True once a non-empty signature has been extracted."""
        return self.signature is not None and np.asarray(self.signature).size > 0

    def __repr__(self) -> str:
        return (
            f"FaceRecord(idx={self.face_index}, "
            f"bbox=[{self.x1},{self.y1},{self.x2},{self.y2}], "
            f"conf={self.confidence:.3f}, "
            f"signature={'yes' if self.has_signature else 'no'})"
        )


def face_record_from_xyxy(
    x1: float,
    y1: float,
    x2: float,
    y2: float,
    confidence: float,
    face_index: int = 0,
    landmarks: Optional[np.ndarray] = None,
) -> FaceRecord:
    """Create a FaceRecord from float detector output, rounding to int."""
    return FaceRecord(
        x1=int(round(x1)),
        y1=int(round(y1)),
        x2=int(round(x2)),
        y2=int(round(y2)),
        confidence=float(confidence),
        face_index=face_index,
        landmarks=None if landmarks is None else np.asarray(landmarks, dtype=np.float32).reshape(5, 2),
    )


@dataclass
class FaceRecordSet:
    """
    The faces found by one detection pass over one image.

    Attributes:
        records:      FaceRecords, most confident first.
        image_width:  Width of the source image in pixels.
        image_height: Height of the source image in pixels.
    """

    records: List[FaceRecord] = field(default_factory=list)
    image_width: int = 0
    image_height: int = 0

    @property
    def num_faces(self) -> int:
        return len(self.records)

    @property
    def is_empty(self) -> bool:
        return not self.records

    @property
    def num_signatures(self) -> int:
        """Number of records that carry a signature."""
        return sum(1 for r in self.records if r.has_signature)

    def with_signatures(self) -> List[FaceRecord]:
        """Records that carry a signature, in order."""
        return [r for r in self.records if r.has_signature]

    def __iter__(self) -> Iterator[FaceRecord]:
        return iter(self.records)

    def __len__(self) -> int:
        return len(self.records)

    def __repr__(self) -> str:
        return (
            f"FaceRecordSet("
            f"faces={self.num_faces}, "
            f"signatures={self.num_signatures}, "
            f"image={self.image_width}×{self.image_height})"
        )
