from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Union

import cv2
import numpy as np

from core.errors import EngineError, EngineStatus

# All frames handed to an engine are np.ndarray in BGR uint8 (OpenCV convention)
Frame = np.ndarray  # shape (H, W, 3)  dtype=uint8


class ColorSpace(Enum):
    BGR24 = "bgr24"
    GRAY8 = "gray8"

    @property
    def channels(self) -> int:
        return 3 if self is ColorSpace.BGR24 else 1


@dataclass
class BiometricImage:
    """
    A raw, caller-supplied image buffer.

    Attributes:
        data:        Packed pixel rows, either bytes or a uint8 ndarray.
        width:       Width in pixels.
        height:      Height in pixels.
        color_space: BGR24 (3 bytes per pixel) or GRAY8 (1 byte).
    """

    data: Union[bytes, bytearray, memoryview, np.ndarray]
    width: int
    height: int
    color_space: ColorSpace = ColorSpace.BGR24

    @property
    def bytes_per_line(self) -> int:
        return self.color_space.channels * self.width

    @classmethod
    def from_array(cls, array: np.ndarray) -> "BiometricImage":
        """Wrap an (H, W) gray or (H, W, 3) BGR uint8 array."""
        if array.ndim == 2:
            space = ColorSpace.GRAY8
        elif array.ndim == 3 and array.shape[2] == 3:
            space = ColorSpace.BGR24
        else:
            raise ValueError(f"Unsupported image shape: {array.shape}")
        return cls(
            data=np.ascontiguousarray(array, dtype=np.uint8),
            width=int(array.shape[1]),
            height=int(array.shape[0]),
            color_space=space,
        )

    def __repr__(self) -> str:
        return f"BiometricImage({self.width}×{self.height}, {self.color_space.value})"


def to_engine_image(image: Union[BiometricImage, np.ndarray, None]) -> Frame:
    """
    Convert a caller image into the (H, W, 3) BGR uint8 frame engines read.

    Raises:
        EngineError: NULL_IMAGE for None, INVALID_RAW_IMAGE for unreadable
                     buffers, INCONSISTENT_IMAGE_DIMENSIONS when the buffer
                     size does not match width × height × channels.
    """
    if image is None:
        raise EngineError(EngineStatus.NULL_IMAGE, "Image is None.")

    if isinstance(image, np.ndarray):
        if image.size == 0:
            raise EngineError(EngineStatus.INVALID_RAW_IMAGE, "Image array is empty.")
        if image.dtype != np.uint8:
            raise EngineError(
                EngineStatus.INVALID_RAW_IMAGE,
                f"Expected uint8 pixels, got {image.dtype}.",
            )
        try:
            return np.ascontiguousarray(normalise_channels(image))
        except ValueError as exc:
            raise EngineError(EngineStatus.INVALID_RAW_IMAGE, str(exc)) from exc

    if not isinstance(image, BiometricImage):
        raise EngineError(
            EngineStatus.INVALID_RAW_IMAGE,
            f"Unsupported image type: {type(image).__name__}.",
        )

    if image.data is None:
        raise EngineError(EngineStatus.NULL_IMAGE, "Image buffer is None.")
    if image.width <= 0 or image.height <= 0:
        raise EngineError(
            EngineStatus.INVALID_RAW_IMAGE,
            f"Invalid image size {image.width}×{image.height}.",
        )

    pixels = np.frombuffer(
        image.data.tobytes() if isinstance(image.data, np.ndarray) else bytes(image.data),
        dtype=np.uint8,
    )
    expected = image.bytes_per_line * image.height
    if pixels.size != expected:
        raise EngineError(
            EngineStatus.INCONSISTENT_IMAGE_DIMENSIONS,
            f"Buffer holds {pixels.size} bytes, expected {expected} for "
            f"{image.width}×{image.height} {image.color_space.value}.",
        )

    if image.color_space is ColorSpace.GRAY8:
        gray = pixels.reshape(image.height, image.width)
        return cv2.cvtColor(gray, cv2.COLOR_GRAY2BGR)
    return pixels.reshape(image.height, image.width, 3).copy()


def load_image(source: Union[str, Path, bytes]) -> BiometricImage:
    """
    Decode an encoded image (file path or bytes) into a BGR24 BiometricImage.

    Raises:
        FileNotFoundError: If a path does not exist.
        ValueError:        If OpenCV cannot decode the data.
    """
    if isinstance(source, (str, Path)):
        path = Path(source)
        if not path.exists():
            raise FileNotFoundError(f"Image file not found: {path}")
        img = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
        if img is None:
            raise ValueError(f"OpenCV could not decode image: {path}")
    elif isinstance(source, (bytes, bytearray)):
        arr = np.frombuffer(bytes(source), dtype=np.uint8)
        img = cv2.imdecode(arr, cv2.IMREAD_UNCHANGED)
        if img is None:
            raise ValueError("OpenCV could not decode image from bytes.")
    else:
        raise TypeError(f"Unsupported source type: {type(source)}")

    return BiometricImage.from_array(normalise_channels(img))


def normalise_channels(image: np.ndarray) -> Frame:
    """
    Ensure the image has exactly 3 channels (BGR).
    Converts BGRA → BGR, GRAY → BGR as needed.
    """
    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    if image.ndim == 3:
        c = image.shape[2]
        if c == 4:
            return cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)
        if c == 3:
            return image
        if c == 1:
            return cv2.cvtColor(image[:, :, 0], cv2.COLOR_GRAY2BGR)
    raise ValueError(f"Unsupported image shape: {image.shape}")
