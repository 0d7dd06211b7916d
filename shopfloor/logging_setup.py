"""Process-wide logging configuration."""

from __future__ import annotations

import logging
import sys

from shopfloor.config import Settings

_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logging(settings: Settings) -> None:
    """Configure the root logger once; module loggers inherit from it."""
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    logging.basicConfig(format=_LOG_FORMAT, stream=sys.stdout, level=log_level)

    if settings.LOG_SQL:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)
    else:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
