from __future__ import annotations

from typing import Optional, Tuple

import cv2
import numpy as np

# ArcFace canonical 5-point layout for a 112 × 112 crop
_ARCFACE_REF_112 = np.array(
    [
        [38.2946, 51.6963],
        [73.5318, 51.5014],
        [56.0252, 71.7366],
        [41.5493, 92.3655],
        [70.7299, 92.2041],
    ],
    dtype=np.float32,
)


def get_reference_points(output_size: int = 112) -> np.ndarray:
    """
    Return the ArcFace reference landmarks scaled to *output_size*.

    Args:
        output_size: Target square crop resolution in pixels.

    Returns:
        (5, 2) float32 array of reference landmark positions.
    """
    scale = output_size / 112.0
    return (_ARCFACE_REF_112 * scale).astype(np.float32)


def estimate_norm(landmarks: np.ndarray, output_size: int = 112) -> Optional[np.ndarray]:
    """
    Compute the 2 × 3 similarity transform mapping *landmarks* onto the
    ArcFace reference grid.

    Returns:
        (2, 3) affine matrix, or None if estimation fails.
    """
    ref = get_reference_points(output_size)
    src = np.asarray(landmarks, dtype=np.float32).reshape(5, 2)
    M, _ = cv2.estimateAffinePartial2D(src, ref, method=cv2.LMEDS)
    return M


def norm_crop(
    image: np.ndarray,
    landmarks: np.ndarray,
    output_size: int = 112,
) -> Tuple[Optional[np.ndarray], Optional[np.ndarray]]:
    """
    Affine-align a face to the canonical *output_size* square crop used
    for signature extraction.

    Returns:
        (aligned_crop, affine_matrix). Both None if estimation failed.
    """
    M = estimate_norm(landmarks, output_size)
    if M is None:
        return None, None

    aligned = cv2.warpAffine(
        image,
        M,
        (output_size, output_size),
        flags=cv2.INTER_LINEAR,
        borderMode=cv2.BORDER_REPLICATE,
    )
    return aligned, M
