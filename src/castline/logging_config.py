from __future__ import annotations

import logging
import sys

from castline.config import get_settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
# Chatty at INFO; SQL echo and revision banners would drown the job output.
LIBRARY_LOGGERS = ("sqlalchemy.engine", "alembic")

_LOG_CONFIGURED = False


def _level(name: str) -> int:
    level = logging.getLevelName(name.upper())
    if not isinstance(level, int):
        raise ValueError(f"unknown log level '{name}'")
    return level


def configure_logging(level: str | None = None) -> None:
    """Send castline logs to stderr so stdout stays clean JSON.

    ``level`` overrides ``LOG_LEVEL`` and may be applied again after the
    handlers are installed.
    """
    global _LOG_CONFIGURED
    settings = get_settings()

    if not _LOG_CONFIGURED:
        logging.basicConfig(level=logging.WARNING, format=LOG_FORMAT, stream=sys.stderr)
        _LOG_CONFIGURED = True

    logging.getLogger("castline").setLevel(_level(level or settings.log_level))
    for name in LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(_level(settings.library_log_level))
