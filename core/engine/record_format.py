"""Engine-native binary layouts for face record sets and galleries.

Record set blob::

    "<4sIIII"   magic b"FRS1", version, image width, image height, count
    per record:
      "<iiiifiBB" x1, y1, x2, y2, confidence, face index,
                  has landmarks, has signature
      10 x "<f4"  landmarks            (only if has landmarks)
      "<I" + dim x "<f4" signature     (only if has signature)

Gallery blob::

    "<4sIII"    magic b"FGL1", version, entry count, signature dim
    count x "<i8"        subject ids
    count x "<i8"        face ids
    count*dim x "<f4"    signatures, row-major

Both decoders demand that the blob is consumed exactly.
"""

from __future__ import annotations

import struct
from typing import List, Optional

import numpy as np

from core.engine.records import FaceRecord, FaceRecordSet
from core.errors import EngineError, EngineStatus
from core.gallery.gallery import Gallery

RECORD_SET_MAGIC = b"FRS1"
GALLERY_MAGIC = b"FGL1"
FORMAT_VERSION = 1

_SET_HEADER = struct.Struct("<4sIIII")
_RECORD = struct.Struct("<iiiifiBB")
_DIM = struct.Struct("<I")
_GALLERY_HEADER = struct.Struct("<4sIII")
_LANDMARK_VALUES = 10


class _Reader:
    """Bounds-checked cursor over a bytes-like blob."""

    def __init__(self, data: bytes, what: str) -> None:
        self._view = memoryview(data)
        self._pos = 0
        self._what = what

    def take(self, n: int) -> memoryview:
        if n < 0 or self._pos + n > len(self._view):
            raise EngineError(
                EngineStatus.CORRUPT_DATA,
                f"{self._what} truncated at byte {self._pos} (need {n} more).",
            )
        chunk = self._view[self._pos:self._pos + n]
        self._pos += n
        return chunk

    def unpack(self, fmt: struct.Struct) -> tuple:
        return fmt.unpack(self.take(fmt.size))

    def floats(self, count: int) -> np.ndarray:
        return np.frombuffer(self.take(4 * count), dtype="<f4").astype(np.float32)

    def int64s(self, count: int) -> np.ndarray:
        return np.frombuffer(self.take(8 * count), dtype="<i8").astype(np.int64)

    def finish(self) -> None:
        if self._pos != len(self._view):
            raise EngineError(
                EngineStatus.CORRUPT_DATA,
                f"{self._what} has {len(self._view) - self._pos} trailing bytes.",
            )


# ============================================================
# Face record sets
# ============================================================

def encode_record_set(record_set: FaceRecordSet) -> bytes:
    parts: List[bytes] = [
        _SET_HEADER.pack(
            RECORD_SET_MAGIC,
            FORMAT_VERSION,
            record_set.image_width,
            record_set.image_height,
            len(record_set.records),
        )
    ]
    for rec in record_set.records:
        has_lm = rec.has_landmarks
        has_sig = rec.has_signature
        parts.append(
            _RECORD.pack(
                rec.x1, rec.y1, rec.x2, rec.y2,
                float(rec.confidence), rec.face_index,
                int(has_lm), int(has_sig),
            )
        )
        if has_lm:
            parts.append(np.asarray(rec.landmarks, dtype="<f4").reshape(-1).tobytes())
        if has_sig:
            sig = np.asarray(rec.signature, dtype="<f4").reshape(-1)
            parts.append(_DIM.pack(sig.shape[0]))
            parts.append(sig.tobytes())
    return b"".join(parts)


def decode_record_set(blob: bytes) -> FaceRecordSet:
    """
    Rebuild a FaceRecordSet from :func:`encode_record_set` output.

    Raises:
        EngineError: CORRUPT_DATA on bad magic, unknown version,
                     truncation or trailing bytes.
    """
    reader = _Reader(blob, "Face record set")
    magic, version, width, height, count = reader.unpack(_SET_HEADER)
    _check_header(magic, RECORD_SET_MAGIC, version, "face record set")

    records: List[FaceRecord] = []
    for _ in range(count):
        x1, y1, x2, y2, conf, face_index, has_lm, has_sig = reader.unpack(_RECORD)
        landmarks: Optional[np.ndarray] = None
        signature: Optional[np.ndarray] = None
        if has_lm:
            landmarks = reader.floats(_LANDMARK_VALUES).reshape(5, 2)
        if has_sig:
            (dim,) = reader.unpack(_DIM)
            signature = reader.floats(dim)
        records.append(
            FaceRecord(
                x1=x1, y1=y1, x2=x2, y2=y2,
                confidence=conf,
                face_index=face_index,
                landmarks=landmarks,
                signature=signature,
            )
        )
    reader.finish()
    return FaceRecordSet(records=records, image_width=width, image_height=height)


# ============================================================
# Galleries
# ============================================================

def encode_gallery(gallery: Gallery) -> bytes:
    entries = list(gallery.entries())
    dim = gallery.dim or 0
    header = _GALLERY_HEADER.pack(GALLERY_MAGIC, FORMAT_VERSION, len(entries), dim)
    if not entries:
        return header

    subject_ids = np.array([e.subject_id for e in entries], dtype="<i8")
    face_ids = np.array([e.face_id for e in entries], dtype="<i8")
    signatures = np.stack([e.signature for e in entries], axis=0).astype("<f4")
    return b"".join([header, subject_ids.tobytes(), face_ids.tobytes(), signatures.tobytes()])


def decode_gallery(blob: bytes) -> Gallery:
    """
    Rebuild a Gallery from :func:`encode_gallery` output.

    Raises:
        EngineError: CORRUPT_DATA on bad magic, unknown version,
                     truncation or trailing bytes.
    """
    reader = _Reader(blob, "Gallery")
    magic, version, count, dim = reader.unpack(_GALLERY_HEADER)
    _check_header(magic, GALLERY_MAGIC, version, "gallery")
    if count and not dim:
        raise EngineError(EngineStatus.CORRUPT_DATA, "Gallery declares entries with dim 0.")

    subject_ids = reader.int64s(count)
    face_ids = reader.int64s(count)
    signatures = reader.floats(count * dim).reshape(count, dim) if count else None
    reader.finish()

    gallery = Gallery()
    for i in range(count):
        gallery.add(int(subject_ids[i]), int(face_ids[i]), signatures[i])
    return gallery


def _check_header(magic: bytes, expected: bytes, version: int, what: str) -> None:
    if magic != expected:
        raise EngineError(EngineStatus.CORRUPT_DATA, f"Not a {what} blob (magic={magic!r}).")
    if version != FORMAT_VERSION:
        raise EngineError(
            EngineStatus.CORRUPT_DATA,
            f"Unsupported {what} format version {version}.",
        )
