# ============================================================
# Biometric Template Adapter
# core/context.py
# ============================================================
# Per-engine context replacing process-wide state.
#
#   initialize(sdk_path) ──► BiometricContext
#       .engine       loaded recognition engine
#       .settings     Settings snapshot used to build it
#       .face_ids     enroll face id counter (never reset)
#       .engine_lock  serialises every engine call
#   finalize(ctx)   ──► engine released (idempotent)
# ============================================================

from __future__ import annotations

import threading
from typing import Optional

from loguru import logger

from config.settings import Settings
from core.engine.base_engine import BaseRecognitionEngine
from core.engine.insightface_engine import InsightFaceEngine
from core.errors import engine_errors
from core.gallery.gallery import FaceIdCounter
from utils.logger import is_configured, setup_from_settings


class BiometricContext:
    """
    Everything one adapter instance needs between calls.

    Usage::

        with initialize("/opt/sdk") as ctx:
            template = api.allocate_template()
            api.augment(ctx, image, template)
    """

    def __init__(
        self,
        engine: BaseRecognitionEngine,
        settings: Optional[Settings] = None,
    ) -> None:
        self.engine = engine
        self.settings = settings
        self.face_ids = FaceIdCounter()
        self.engine_lock = threading.RLock()
        self._finalized = False

    @property
    def is_finalized(self) -> bool:
        return self._finalized

    def require_active(self) -> None:
        if self._finalized:
            raise RuntimeError("BiometricContext has been finalized.")

    def finalize(self) -> None:
        """Release the engine. Later calls are no-ops."""
        with self.engine_lock:
            if self._finalized:
                return
            self._finalized = True
            with engine_errors():
                self.engine.release()
        logger.info(f"Biometric context finalized ({self.engine.engine_name}).")

    def __enter__(self) -> "BiometricContext":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.finalize()

    def __repr__(self) -> str:
        status = "finalized" if self._finalized else "active"
        return (
            f"BiometricContext("
            f"engine={self.engine.engine_name}, "
            f"next_face_id={self.face_ids.peek}, "
            f"status={status})"
        )


def initialize(
    sdk_path: str,
    settings: Optional[Settings] = None,
    engine: Optional[BaseRecognitionEngine] = None,
) -> BiometricContext:
    """
    Load the engine from ``<sdk_path>/models/`` and return a context.

    Args:
        sdk_path: SDK root directory.
        settings: Settings to build the engine from. Defaults to the
                  module-level ``config.settings.settings``. Its logging
                  section is applied unless logging is already configured.
        engine:   Pre-built engine to load instead of an InsightFaceEngine.

    Raises:
        InvalidSdkPathError: If the SDK path is empty or has no models/ directory.
        UnknownError:        If the models are present but fail to load.
    """
    if settings is None:
        from config.settings import settings as default_settings  # noqa: PLC0415
        settings = default_settings

    if not is_configured():
        setup_from_settings(settings)

    if engine is None:
        engine = InsightFaceEngine.from_settings(settings.engine, settings.matching)

    with engine_errors():
        engine.load_model(sdk_path)

    logger.info(f"Biometric context ready | engine={engine.engine_name} | sdk={sdk_path}")
    return BiometricContext(engine=engine, settings=settings)


def finalize(context: BiometricContext) -> None:
    """Tear down *context*. Safe to call more than once."""
    context.finalize()
