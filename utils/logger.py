"""
Loguru configuration for the adapter.

``core.context.initialize`` calls :func:`setup_from_settings` the first
time a context is built, unless the host application has already called
:func:`setup_logger` itself.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Dict, Optional

from loguru import logger as _logger

# Re-export the loguru logger so the rest of the adapter imports from here
logger = _logger

_configured = False

_CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <9}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <9} | {name}:{function}:{line} | {message}"


def _console_handler(level: str, json_logs: bool, colorize: bool) -> Dict[str, Any]:
    handler: Dict[str, Any] = {
        "sink": sys.stdout,
        "level": level,
        "backtrace": True,
        "enqueue": True,
    }
    if json_logs:
        handler.update(serialize=True, diagnose=False)
    else:
        handler.update(
            format=_CONSOLE_FORMAT,
            colorize=colorize,
            diagnose=level in ("DEBUG", "TRACE"),
        )
    return handler


def _file_handler(
    path: Path,
    level: str,
    json_logs: bool,
    rotation: str,
    retention: str,
    compression: str,
) -> Dict[str, Any]:
    path.parent.mkdir(parents=True, exist_ok=True)
    return {
        "sink": str(path),
        "level": level,
        "format": "{message}" if json_logs else _FILE_FORMAT,
        "serialize": json_logs,
        "rotation": rotation,
        "retention": retention,
        "compression": compression,
        "backtrace": True,
        "diagnose": False,
        "enqueue": True,
        "encoding": "utf-8",
    }


def setup_logger(
    level: str = "INFO",
    file_path: Optional[Path | str] = None,
    rotation: str = "10 MB",
    retention: str = "7 days",
    compression: str = "zip",
    json_logs: bool = False,
    colorize: bool = True,
) -> None:
    """
    Replace every Loguru handler with the adapter's console handler and,
    when *file_path* is set, a rotating file handler.

    Engine errors are logged with their native message before they are
    mapped to outward error codes, so keep the level at ERROR or below.

    Args:
        level:       Minimum log level.
        file_path:   Optional log file. None = stdout only.
        rotation:    Loguru rotation rule (e.g. "10 MB", "1 day").
        retention:   How long to keep rotated files.
        compression: Archive format for rotated files.
        json_logs:   Serialise records as JSON.
        colorize:    ANSI colours on the console handler.
    """
    global _configured

    handlers = [_console_handler(level, json_logs, colorize)]
    if file_path:
        handlers.append(
            _file_handler(Path(file_path), level, json_logs, rotation, retention, compression)
        )
    _logger.configure(handlers=handlers)

    _configured = True
    _logger.debug(
        "Logger initialised | level={} | file={} | json={}",
        level,
        file_path or "stdout only",
        json_logs,
    )


def setup_from_settings(app_settings=None) -> None:
    """Configure logging from ``app_settings.logging`` (default: global settings)."""
    if app_settings is None:
        from config.settings import settings as app_settings  # noqa: PLC0415

    log_cfg = app_settings.logging
    setup_logger(
        level=log_cfg.level,
        file_path=log_cfg.file_path,
        rotation=log_cfg.rotation,
        retention=log_cfg.retention,
        json_logs=log_cfg.json_logs,
        colorize=not app_settings.is_production,
    )


def is_configured() -> bool:
    return _configured
