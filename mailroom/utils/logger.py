"""Logging setup shared by the API, the RQ worker and the scheduler."""
from __future__ import annotations

import logging
from logging.config import dictConfig

from mailroom.core.config import settings

# Library loggers that drown ours out at DEBUG.
QUIET_LOGGERS = ("sqlalchemy.engine", "botocore", "boto3", "urllib3", "multipart")


def resolve_level(level: str | None = None) -> str:
    chosen = level or settings.log_level
    if not chosen:
        chosen = "DEBUG" if settings.environment == "development" else "INFO"
    return chosen.upper()


def build_logging_config(level: str | None = None) -> dict:
    level = resolve_level(level)
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s | %(levelname)s | pid=%(process)d | %(name)s | %(message)s",
            }
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "standard",
            }
        },
        "loggers": {
            "mailroom": {"level": level},
            **{name: {"level": "WARNING"} for name in QUIET_LOGGERS},
        },
        "root": {"handlers": ["console"], "level": level},
    }


def configure_logging(level: str | None = None) -> None:
    """Apply the logging configuration. Call once per process."""

    dictConfig(build_logging_config(level))


logger = logging.getLogger("mailroom")
