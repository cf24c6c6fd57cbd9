from __future__ import annotations

from pathlib import Path
from typing import List, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Project root: two levels up from this file (config/settings.py)
ROOT_DIR: Path = Path(__file__).resolve().parent.parent


class EngineSettings(BaseSettings):
    """Recognition engine settings (InsightFace detection + ArcFace extraction)."""

    model_config = SettingsConfigDict(env_prefix="ENGINE_", extra="ignore")

    # InsightFace model pack looked up under <sdk_path>/models/
    model_pack: str = Field(
        default="buffalo_l",
        description="InsightFace model pack name (e.g. buffalo_l, buffalo_s).",
    )
    # Detector input resolution
    det_size: tuple[int, int] = Field(
        default=(640, 640),
        description="Detection input resolution (width, height).",
    )
    # Detector confidence floor
    det_threshold: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Minimum detection confidence to keep a face.",
    )
    # Keep only the most confident face per image
    detect_best_face_only: bool = Field(
        default=True,
        description="Return at most one face (the most confident) per detection pass.",
    )
    # Faces smaller than this get no signature
    min_extractable_size: int = Field(
        default=4,
        ge=1,
        description="Minimum face width/height in pixels for signature extraction.",
    )
    providers: List[str] = Field(
        default=["CUDAExecutionProvider", "CPUExecutionProvider"],
        description="ONNX Runtime execution providers in priority order.",
    )
    # GPU index, -1 = CPU
    ctx_id: int = Field(
        default=0,
        description="InsightFace device index. -1 forces CPU.",
    )


class MatchingSettings(BaseSettings):
    """Signature comparison settings."""

    model_config = SettingsConfigDict(env_prefix="MATCH_", extra="ignore")

    strategy: Literal["best", "mean"] = Field(
        default="best",
        description=(
            "How a subject pair is scored: 'best' = max cosine over all "
            "signature pairs, 'mean' = cosine of mean signatures."
        ),
    )


class LoggingSettings(BaseSettings):
    """Logging settings (Loguru-based)."""

    model_config = SettingsConfigDict(env_prefix="LOG_", extra="ignore")

    level: Literal["TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Minimum log level to emit.",
    )
    # Log file path (None = stdout only)
    file_path: Optional[Path] = Field(
        default=None,
        description="Path to log file. Leave empty to log to stdout only.",
    )
    rotation: str = Field(
        default="10 MB",
        description="Loguru rotation threshold (e.g. '10 MB', '1 day').",
    )
    retention: str = Field(
        default="7 days",
        description="How long to retain rotated log files.",
    )
    json_logs: bool = Field(
        default=False,
        description="Emit logs as JSON objects (for log aggregation pipelines).",
    )

    @field_validator("file_path", mode="before")
    @classmethod
    def empty_path_is_none(cls, v):
        if v in ("", None):
            return None
        return v


class Settings(BaseSettings):
    """
    Master settings object.

    Priority (highest → lowest):
      1. Environment variables  (e.g. ENGINE_DET_THRESHOLD=0.6)
      2. .env file              (loaded from project root)
      3. Default values below
    """

    model_config = SettingsConfigDict(
        env_file=str(ROOT_DIR / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment.",
    )

    engine: EngineSettings = Field(default_factory=EngineSettings)
    matching: MatchingSettings = Field(default_factory=MatchingSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


settings = Settings()
