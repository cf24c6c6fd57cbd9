# ============================================================
# Biometric Template Adapter
# core/template/codec.py
# ============================================================
# Flat template wire format:
#
#   repeat until the buffer is consumed:
#       length : u64, little-endian
#       blob   : <length> bytes, engine-native FaceRecordSet
#
# Contract:
#   - flatten never fails on size: once the next chunk would push
#     the output past MAX_TEMPLATE_SIZE it stops and returns what
#     it has (never a partial chunk).
#   - flatten keeps every record, signature or not.
#   - unflatten adds only records that carry a signature; the face
#     ids it assigns restart at 0 on every call.
#   - a buffer that does not end exactly on a chunk boundary is a
#     CorruptTemplateError, and nothing from it is added. The same
#     holds for undecodable blobs and mismatched signature sizes.
# ============================================================

from __future__ import annotations

import struct
from typing import List, Optional

import numpy as np
from loguru import logger

from core.engine.base_engine import BaseRecognitionEngine
from core.engine.records import FaceRecordSet
from core.errors import CorruptTemplateError, EngineError, EngineStatus
from core.gallery.gallery import Gallery
from core.template.template import Template

MAX_TEMPLATE_SIZE = 33_554_432  # 32 MiB

_LENGTH = struct.Struct("<Q")
CHUNK_HEADER_SIZE = _LENGTH.size


def max_template_size() -> int:
    """Upper bound, in bytes, of any flat template."""
    return MAX_TEMPLATE_SIZE


def flatten_template(
    engine: BaseRecognitionEngine,
    template: Template,
    max_size: int = MAX_TEMPLATE_SIZE,
) -> bytes:
    """
    Serialize *template* into the chunked flat format.

    Args:
        engine:   Engine providing the record set serialization.
        template: Template to flatten (insertion order is kept).
        max_size: Byte cap; trailing record sets that do not fit are
                  dropped.

    Returns:
        The flat template (``b""`` for an empty template).
    """
    out = bytearray()
    record_sets = template.record_sets

    for i, record_set in enumerate(record_sets):
        blob = engine.serialize_record_set(record_set)
        if len(out) + CHUNK_HEADER_SIZE + len(blob) > max_size:
            logger.warning(
                f"Flat template truncated at {len(out)} bytes: "
                f"dropped {len(record_sets) - i} of {len(record_sets)} record set(s)"
            )
            break
        out += _LENGTH.pack(len(blob))
        out += blob

    return bytes(out)


def split_chunks(data: bytes, byte_count: Optional[int] = None) -> List[bytes]:
    """
    Split a flat template into its record set blobs.

    Args:
        data:       The flat template.
        byte_count: Number of leading bytes of *data* to decode.
                    Defaults to ``len(data)``.

    Raises:
        CorruptTemplateError: If the chunks do not line up exactly with
                              *byte_count*.
    """
    view = memoryview(data)
    end = len(view) if byte_count is None else int(byte_count)
    if end < 0 or end > len(view):
        raise CorruptTemplateError(
            f"byte_count {end} is outside the {len(view)}-byte buffer."
        )

    chunks: List[bytes] = []
    pos = 0
    while pos < end:
        if end - pos < CHUNK_HEADER_SIZE:
            raise CorruptTemplateError(
                f"Flat template has {end - pos} trailing byte(s) at offset {pos}; "
                f"a chunk header needs {CHUNK_HEADER_SIZE}."
            )
        (length,) = _LENGTH.unpack(view[pos:pos + CHUNK_HEADER_SIZE])
        pos += CHUNK_HEADER_SIZE
        if length > end - pos:
            raise CorruptTemplateError(
                f"Chunk at offset {pos - CHUNK_HEADER_SIZE} declares {length} bytes "
                f"but only {end - pos} remain."
            )
        chunks.append(bytes(view[pos:pos + length]))
        pos += length
    return chunks


def decode_record_sets(
    engine: BaseRecognitionEngine,
    data: bytes,
    byte_count: Optional[int] = None,
) -> List[FaceRecordSet]:
    """Decode every record set of a flat template, signatures or not."""
    return [engine.deserialize_record_set(chunk) for chunk in split_chunks(data, byte_count)]


def unflatten_template(
    engine: BaseRecognitionEngine,
    data: bytes,
    gallery: Gallery,
    subject_id: int = 0,
    byte_count: Optional[int] = None,
) -> int:
    """
    Decode a flat template into *gallery* under *subject_id*.

    Records without a signature are discarded. Surviving records get
    face ids 0, 1, 2, … local to this call. Every chunk is decoded and
    every signature size checked before the first one is added.

    Returns:
        Number of signatures added.

    Raises:
        CorruptTemplateError: On misaligned framing.
        EngineError:          If a blob cannot be deserialized, or the
                              signature sizes disagree with each other
                              or with *gallery*.
    """
    record_sets = decode_record_sets(engine, data, byte_count)
    signed = [
        record
        for record_set in record_sets
        for record in record_set.records
        if engine.has_signature(record)
    ]

    dims = {int(np.asarray(record.signature).size) for record in signed}
    if gallery.dim is not None:
        dims.add(gallery.dim)
    if len(dims) > 1:
        raise EngineError(
            EngineStatus.DIMENSION_MISMATCH,
            f"Flat template mixes signature sizes {sorted(dims)}.",
        )

    for face_id, record in enumerate(signed):
        engine.add_face(gallery, record, subject_id, face_id)

    logger.debug(
        f"Unflattened {len(record_sets)} record set(s) → "
        f"{len(signed)} signature(s) for subject {subject_id}"
    )
    return len(signed)
