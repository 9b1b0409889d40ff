from __future__ import annotations

import logging
from threading import Lock

from chatsync.core.config import get_settings

ROOT_LOGGER_NAME = "chatsync"

_configure_lock = Lock()
_is_configured = False


def configure_logging(*, force: bool = False) -> logging.Logger:
    global _is_configured
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if _is_configured and not force:
        return root

    with _configure_lock:
        if _is_configured and not force:
            return root
        settings = get_settings()
        root.setLevel(settings.log_level_value)
        for handler in list(root.handlers):
            if getattr(handler, "_chatsync_handler", False):
                root.removeHandler(handler)

        handler = logging.StreamHandler()
        handler.setLevel(settings.log_level_value)
        handler.setFormatter(logging.Formatter(settings.log_format, datefmt="%Y-%m-%d %H:%M:%S"))
        handler._chatsync_handler = True  # type: ignore[attr-defined]
        root.addHandler(handler)
        _is_configured = True
        root.debug(
            "Logging configured (environment=%s, level=%s).",
            settings.environment,
            logging.getLevelName(settings.log_level_value),
        )
    return root
