from __future__ import annotations

import logging
from typing import Optional

from bikeledger.config.models import LoggingSettings


PACKAGE_LOGGER = "bikeledger"


def configure_logging(settings: LoggingSettings, *, force: bool = False) -> logging.Logger:
    """
    Configure root handlers once and pin the package logger to the configured level.

    `logging.basicConfig(...)` is a no-op when handlers already exist (uvicorn, pytest),
    so the package logger level is set explicitly as well. Pass `force=True` to replace
    existing root handlers.
    """

    level = getattr(logging, settings.level.upper(), None)
    if not isinstance(level, int):
        raise ValueError(f"Invalid log level: {settings.level}")

    handlers: Optional[list[logging.Handler]] = None
    if settings.file is not None:
        settings.file.parent.mkdir(parents=True, exist_ok=True)
        handlers = [logging.FileHandler(settings.file, encoding="utf-8"), logging.StreamHandler()]

    logging.basicConfig(level=level, format=settings.format, handlers=handlers, force=force)

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(level)
    return package_logger
