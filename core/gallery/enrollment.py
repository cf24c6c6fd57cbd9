# Enrollment of templates into galleries, and the flat gallery format.
#
# Face ids handed out by enroll() come from a FaceIdCounter that the
# caller's context owns and never resets, unlike the call-local ids
# of unflatten_template().
#
# A flat gallery is one opaque engine blob with no chunk framing; it
# is not interchangeable with a flat template.

from __future__ import annotations

from loguru import logger

from core.engine.base_engine import BaseRecognitionEngine
from core.gallery.gallery import FaceIdCounter, Gallery, validate_subject_id
from core.template.template import Template


def enroll(
    engine: BaseRecognitionEngine,
    template: Template,
    subject_id: int,
    gallery: Gallery,
    face_ids: FaceIdCounter,
) -> int:
    """
    Add every signature-bearing record of *template* to *gallery*.

    Args:
        engine:     Engine used to add faces.
        template:   Source template (not consumed; still caller-owned).
        subject_id: External id the signatures are filed under.
        gallery:    Destination gallery.
        face_ids:   Shared face id source.

    Returns:
        Number of signatures enrolled.
    """
    subject_id = validate_subject_id(subject_id)

    added = 0
    for record_set in template.record_sets:
        for record in record_set.records:
            if not engine.has_signature(record):
                continue
            engine.add_face(gallery, record, subject_id, face_ids.next_id())
            added += 1

    logger.info(
        f"Enrolled subject {subject_id}: {added} signature(s) "
        f"(gallery now {gallery.num_subjects} subject(s))"
    )
    return added


def flatten_gallery(engine: BaseRecognitionEngine, gallery: Gallery) -> bytes:
    """Serialize the whole gallery into one flat gallery blob."""
    blob = engine.serialize_gallery(gallery)
    logger.debug(f"Flattened gallery: {gallery.num_signatures} signature(s), {len(blob)} bytes")
    return blob


def load_gallery(engine: BaseRecognitionEngine, data: bytes) -> Gallery:
    """
    Rebuild a Gallery from a flat gallery blob.

    Raises:
        EngineError: CORRUPT_DATA if *data* is not a valid flat gallery.
    """
    return engine.deserialize_gallery(bytes(data))
