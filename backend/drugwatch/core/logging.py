"""Logging configuration.

A single console handler; every module logs through
``logging.getLogger(__name__)``.
"""

import logging
import logging.config

from drugwatch.core.config import settings

LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {
            "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
            "stream": "ext://sys.stdout",
        },
    },
    "loggers": {
        "drugwatch": {
            "handlers": ["console"],
            "level": settings.LOG_LEVEL,
            "propagate": False,
        },
        "apscheduler": {
            "handlers": ["console"],
            "level": "WARNING",
            "propagate": False,
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "WARNING",
    },
}


def configure_logging(level: str | None = None) -> None:
    """Apply the logging config, optionally overriding the package level."""
    config = dict(LOGGING_CONFIG)
    if level:
        config["loggers"] = {
            **LOGGING_CONFIG["loggers"],
            "drugwatch": {**LOGGING_CONFIG["loggers"]["drugwatch"], "level": level},
        }
    logging.config.dictConfig(config)
