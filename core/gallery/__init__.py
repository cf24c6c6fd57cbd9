# ============================================================
# Biometric Template Adapter - Core Gallery Module
# ============================================================
# enrollment is not re-exported here: it depends on core.engine,
# which itself imports core.gallery.gallery.

from core.gallery.gallery import FaceIdCounter, Gallery, GalleryEntry

__all__ = [
    "FaceIdCounter",
    "Gallery",
    "GalleryEntry",
]
