# ============================================================
# Biometric Template Adapter
# core/api.py
# ============================================================
# Public operations of the adapter.
#
#   initialize / finalize          context lifecycle
#   allocate_template / _gallery   caller-owned handles
#   augment                        image → template
#   flatten_template               template → flat bytes
#   enroll                         template → gallery
#   flatten_gallery / load_gallery gallery ⇄ flat bytes
#   verify                         1:1
#   search                         1:N
#   free_template / free_gallery   handle teardown
#   track / detect_attributes      not implemented
#
# Engine failures leave this module as BiometricError subclasses
# (see core.errors); every engine call holds the context lock.
# ============================================================

from __future__ import annotations

from typing import Any, Union

import numpy as np

from core.context import BiometricContext, finalize, initialize
from core.engine.records import FaceRecordSet
from core.errors import NotImplementedFeatureError, engine_errors
from core.gallery import enrollment
from core.gallery.gallery import Gallery
from core.matching.search import SearchResult, search as _search
from core.matching.verification import verify as _verify
from core.template import codec
from core.template import template as _template
from core.template.template import Template
from utils.image_utils import BiometricImage

__all__ = [
    "initialize",
    "finalize",
    "allocate_template",
    "allocate_gallery",
    "augment",
    "flatten_template",
    "flatten_gallery",
    "load_gallery",
    "verify",
    "enroll",
    "search",
    "free_template",
    "free_gallery",
    "max_template_size",
    "track",
    "detect_attributes",
]


# ============================================================
# Handles
# ============================================================

def allocate_template() -> Template:
    """Return a new, empty template."""
    return Template()


def allocate_gallery(context: BiometricContext) -> Gallery:
    """Return a new, empty gallery bound to *context*'s engine."""
    context.require_active()
    return context.engine.create_gallery()


def free_template(template: Template) -> None:
    template.release()


def free_gallery(gallery: Gallery) -> None:
    gallery.release()


def max_template_size() -> int:
    """Largest flat template flatten_template() will ever produce."""
    return codec.max_template_size()


# ============================================================
# Templates
# ============================================================

def augment(
    context: BiometricContext,
    image: Union[BiometricImage, np.ndarray],
    template: Template,
) -> FaceRecordSet:
    """
    Add the faces found in *image* to *template*.

    Raises:
        InvalidImageError: For missing or malformed image buffers.
        UnknownError:      For any other engine failure.
    """
    context.require_active()
    with context.engine_lock, engine_errors():
        return _template.augment(context.engine, image, template)


def flatten_template(context: BiometricContext, template: Template) -> bytes:
    """Serialize *template*; silently truncated at max_template_size()."""
    context.require_active()
    with context.engine_lock, engine_errors():
        return codec.flatten_template(context.engine, template)


# ============================================================
# Galleries
# ============================================================

def enroll(
    context: BiometricContext,
    template: Template,
    subject_id: int,
    gallery: Gallery,
) -> int:
    """
    Enroll every signature of *template* under *subject_id*.

    Returns:
        Number of signatures added to *gallery*.
    """
    context.require_active()
    with context.engine_lock, engine_errors():
        return enrollment.enroll(
            context.engine, template, subject_id, gallery, context.face_ids
        )


def flatten_gallery(context: BiometricContext, gallery: Gallery) -> bytes:
    context.require_active()
    with context.engine_lock, engine_errors():
        return enrollment.flatten_gallery(context.engine, gallery)


def load_gallery(context: BiometricContext, data: bytes) -> Gallery:
    """Rebuild a caller-owned Gallery from flatten_gallery() output."""
    context.require_active()
    with context.engine_lock, engine_errors():
        return enrollment.load_gallery(context.engine, data)


# ============================================================
# Matching
# ============================================================

def verify(context: BiometricContext, template_a: bytes, template_b: bytes) -> float:
    """
    Similarity of two flat templates.

    Returns:
        The score, or -1.5 if either template has no signature.

    Raises:
        UnknownError: If the engine could not compare the templates or a
                      template is corrupt.
    """
    context.require_active()
    with context.engine_lock, engine_errors():
        return _verify(context.engine, template_a, template_b)


def search(
    context: BiometricContext,
    probe: bytes,
    gallery: bytes,
    k: int,
) -> SearchResult:
    """
    Rank the subjects of a flat gallery against a flat probe template.

    Raises:
        ValueError:   If *k* is negative.
        UnknownError: For corrupt inputs or engine failures.
    """
    context.require_active()
    with context.engine_lock, engine_errors():
        return _search(context.engine, probe, gallery, k)


# ============================================================
# Unsupported operations
# ============================================================

def track(context: BiometricContext, *frames: Any) -> None:
    """Face tracking across video frames is not supported."""
    raise NotImplementedFeatureError("Face tracking is not implemented.")


def detect_attributes(context: BiometricContext, *args: Any) -> None:
    """Demographic / attribute estimation is not supported."""
    raise NotImplementedFeatureError("Attribute detection is not implemented.")
