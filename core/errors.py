# ============================================================
# Biometric Template Adapter
# core/errors.py
# ============================================================
# Engine-side status codes and the small outward error taxonomy.
#
#   EngineError(status)  ──map_engine_error()──►  BiometricError
#       rich EngineStatus                          ErrorCode:
#                                                    INVALID_SDK_PATH
#                                                    INVALID_IMAGE
#                                                    UNKNOWN_ERROR
#                                                    NOT_IMPLEMENTED
#
# Every non-success engine status is logged with its native
# message before it is mapped.
# ============================================================

from __future__ import annotations

from contextlib import contextmanager
from enum import Enum
from typing import Iterator

from loguru import logger


class EngineStatus(Enum):
    """Status codes raised by recognition engines."""

    SUCCESS                       = "success"
    NULL_MODELS_PATH              = "null_models_path"
    INVALID_MODELS_PATH           = "invalid_models_path"
    MODEL_LOAD_FAILED             = "model_load_failed"
    NOT_LOADED                    = "not_loaded"
    NULL_IMAGE                    = "null_image"
    INVALID_RAW_IMAGE             = "invalid_raw_image"
    INCONSISTENT_IMAGE_DIMENSIONS = "inconsistent_image_dimensions"
    CORRUPT_DATA                  = "corrupt_data"
    DIMENSION_MISMATCH            = "dimension_mismatch"
    INFERENCE_FAILED              = "inference_failed"


class ErrorCode(Enum):
    """Outward error codes of the biometric API."""

    SUCCESS          = "success"
    INVALID_SDK_PATH = "invalid_sdk_path"
    INVALID_IMAGE    = "invalid_image"
    UNKNOWN_ERROR    = "unknown_error"
    NOT_IMPLEMENTED  = "not_implemented"


class EngineError(RuntimeError):
    """Raised by an engine when one of its calls does not succeed."""

    def __init__(self, status: EngineStatus, message: str = "") -> None:
        self.status = status
        self.message = message or status.value
        super().__init__(f"{status.name}: {self.message}")


# ──────────────────────────────────────────────────────────────────────────────

class BiometricError(RuntimeError):
    """Base class for every error surfaced by the biometric API."""

    code: ErrorCode = ErrorCode.UNKNOWN_ERROR


class InvalidSdkPathError(BiometricError):
    code = ErrorCode.INVALID_SDK_PATH


class InvalidImageError(BiometricError):
    code = ErrorCode.INVALID_IMAGE


class UnknownError(BiometricError):
    code = ErrorCode.UNKNOWN_ERROR


class CorruptTemplateError(UnknownError):
    """A flat template whose chunks do not line up with its length."""


class NotImplementedFeatureError(BiometricError, NotImplementedError):
    code = ErrorCode.NOT_IMPLEMENTED


_STATUS_TO_CODE = {
    EngineStatus.SUCCESS:                       ErrorCode.SUCCESS,
    EngineStatus.NULL_MODELS_PATH:              ErrorCode.INVALID_SDK_PATH,
    EngineStatus.INVALID_MODELS_PATH:           ErrorCode.INVALID_SDK_PATH,
    EngineStatus.NULL_IMAGE:                    ErrorCode.INVALID_IMAGE,
    EngineStatus.INVALID_RAW_IMAGE:             ErrorCode.INVALID_IMAGE,
    EngineStatus.INCONSISTENT_IMAGE_DIMENSIONS: ErrorCode.INVALID_IMAGE,
}

_CODE_TO_ERROR = {
    ErrorCode.INVALID_SDK_PATH: InvalidSdkPathError,
    ErrorCode.INVALID_IMAGE:    InvalidImageError,
    ErrorCode.UNKNOWN_ERROR:    UnknownError,
    ErrorCode.NOT_IMPLEMENTED:  NotImplementedFeatureError,
}


def to_error_code(status: EngineStatus) -> ErrorCode:
    """Collapse an engine status into the outward taxonomy."""
    return _STATUS_TO_CODE.get(status, ErrorCode.UNKNOWN_ERROR)


def map_engine_error(exc: EngineError) -> BiometricError:
    """
    Log *exc* with its native message and build the outward error.

    Args:
        exc: The engine error to translate.

    Returns:
        A BiometricError subclass instance matching the mapped code.
        (A SUCCESS status never reaches here; it maps to UnknownError.)
    """
    logger.error(f"Engine: {exc.message} [{exc.status.name}]")
    code = to_error_code(exc.status)
    error_cls = _CODE_TO_ERROR.get(code, UnknownError)
    return error_cls(exc.message)


@contextmanager
def engine_errors() -> Iterator[None]:
    """
    Translate any EngineError raised inside the block.

    Usage::

        with engine_errors():
            record_set = engine.detect(image)
    """
    try:
        yield
    except EngineError as exc:
        raise map_engine_error(exc) from exc
