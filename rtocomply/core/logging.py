from __future__ import annotations

import logging

from rtocomply.core.config import get_settings


_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging() -> None:
    # Configure the root logger once; repeated app factory calls must not stack handlers.
    settings = get_settings()
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    root = logging.getLogger()
    if not any(getattr(handler, "_rtocomply", False) for handler in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        handler._rtocomply = True  # type: ignore[attr-defined]
        root.addHandler(handler)
    root.setLevel(level)
    # Keep third-party client chatter out of request logs.
    logging.getLogger("httpx").setLevel(logging.WARNING)
