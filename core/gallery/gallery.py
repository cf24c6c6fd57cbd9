# ============================================================
# Biometric Template Adapter
# core/gallery/gallery.py
# ============================================================
# Enrolled (subject id, face id, signature) store.
#
#   - Subject ids are external 64-bit integers, not checked for
#     uniqueness; one subject may hold many signatures.
#   - Face ids are process-local disambiguators.
#   - Subjects are enumerated in first-insertion order.
#   - Thread-safe add / read.
#
# Also home of FaceIdCounter, the lock-guarded face-id source
# shared by every enroll call on one context.
# ============================================================

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional

import numpy as np
from loguru import logger

INT64_MIN = -(2 ** 63)
INT64_MAX = 2 ** 63 - 1


@dataclass(frozen=True)
class GalleryEntry:
    """One enrolled signature."""

    subject_id: int
    face_id: int
    signature: np.ndarray

    def __repr__(self) -> str:
        return (
            f"GalleryEntry(subject={self.subject_id}, "
            f"face={self.face_id}, dim={self.signature.shape[0]})"
        )


def validate_subject_id(subject_id: int) -> int:
    """Return *subject_id* as int, raising if it does not fit in int64."""
    if isinstance(subject_id, bool) or not isinstance(subject_id, (int, np.integer)):
        raise TypeError(f"Subject id must be an integer, got {type(subject_id).__name__}.")
    value = int(subject_id)
    if not INT64_MIN <= value <= INT64_MAX:
        raise ValueError(f"Subject id {value} does not fit in a signed 64-bit integer.")
    return value


class Gallery:
    """
    Searchable collection of enrolled signatures.

    Usage::

        gallery = Gallery()
        gallery.add(subject_id=42, face_id=0, signature=vec)
        gallery.subject_ids()        # [42]
        gallery.signatures_for(42)   # (1, D) float32
    """

    def __init__(self) -> None:
        self._entries: List[GalleryEntry] = []
        self._by_subject: Dict[int, List[int]] = {}
        self._dim: Optional[int] = None
        self._released = False
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add(self, subject_id: int, face_id: int, signature: np.ndarray) -> GalleryEntry:
        """
        Store *signature* under (subject_id, face_id).

        Raises:
            RuntimeError: If the gallery was released.
            ValueError:   If the signature is not a non-empty 1-D vector
                          or its dimension differs from earlier entries.
        """
        subject_id = validate_subject_id(subject_id)
        vector = np.asarray(signature, dtype=np.float32).flatten()
        if vector.size == 0:
            raise ValueError("Signature vector is empty.")

        with self._lock:
            self._require_live()
            if self._dim is None:
                self._dim = int(vector.shape[0])
            elif vector.shape[0] != self._dim:
                raise ValueError(
                    f"Signature dimension {vector.shape[0]} does not match "
                    f"gallery dimension {self._dim}."
                )

            entry = GalleryEntry(subject_id=subject_id, face_id=int(face_id), signature=vector)
            self._by_subject.setdefault(subject_id, []).append(len(self._entries))
            self._entries.append(entry)
        return entry

    def release(self) -> None:
        """Drop every stored signature. Safe to call more than once."""
        with self._lock:
            if self._released:
                return
            count = len(self._entries)
            self._entries.clear()
            self._by_subject.clear()
            self._released = True
        logger.debug(f"Gallery released ({count} signatures dropped).")

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    def subject_ids(self) -> List[int]:
        """Distinct subject ids in first-insertion order."""
        with self._lock:
            self._require_live()
            return list(self._by_subject.keys())

    def signatures_for(self, subject_id: int) -> np.ndarray:
        """
        Return the (N, D) float32 signatures stored for *subject_id*.

        An unknown subject yields an empty (0, D) array.
        """
        with self._lock:
            self._require_live()
            indices = self._by_subject.get(int(subject_id), [])
            if not indices:
                return np.zeros((0, self._dim or 0), dtype=np.float32)
            return np.stack([self._entries[i].signature for i in indices], axis=0)

    def entries(self) -> Iterator[GalleryEntry]:
        """Iterate over a snapshot of all entries, in insertion order."""
        with self._lock:
            self._require_live()
            snapshot = list(self._entries)
        return iter(snapshot)

    @property
    def dim(self) -> Optional[int]:
        """Signature dimension, or None while the gallery is empty."""
        return self._dim

    @property
    def num_signatures(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def num_subjects(self) -> int:
        with self._lock:
            return len(self._by_subject)

    @property
    def is_empty(self) -> bool:
        return self.num_signatures == 0

    @property
    def is_released(self) -> bool:
        return self._released

    def _require_live(self) -> None:
        if self._released:
            raise RuntimeError("Gallery has been released.")

    # ------------------------------------------------------------------
    # Dunder helpers
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return self.num_signatures

    def __contains__(self, subject_id: int) -> bool:
        with self._lock:
            return int(subject_id) in self._by_subject

    def __repr__(self) -> str:
        return (
            f"Gallery("
            f"subjects={self.num_subjects}, "
            f"signatures={self.num_signatures}, "
            f"dim={self._dim})"
        )


class FaceIdCounter:
    """
    Thread-safe, never-resetting face id source.

    One instance is owned by each BiometricContext and shared by all
    enroll calls made on it.
    """

    def __init__(self, start: int = 0) -> None:
        self._next = int(start)
        self._lock = threading.Lock()

    def next_id(self) -> int:
        """Return the current value and advance by one."""
        with self._lock:
            value = self._next
            self._next += 1
            return value

    @property
    def peek(self) -> int:
        """The id the next call will return."""
        with self._lock:
            return self._next

    def __repr__(self) -> str:
        return f"FaceIdCounter(next={self.peek})"
