"""
Logging configuration.

Every module logs through ``logging.getLogger(__name__)`` so all records
land under the ``shlink_ui`` logger. The level of that logger is changed
at runtime from the ``system.log_level`` setting.
"""

import logging

ROOT_LOGGER = "shlink_ui"

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
}


def level_from_name(name: str) -> int:
    """Map a setting value to a logging level, INFO when unknown."""
    return LOG_LEVELS.get(str(name or "").strip().lower(), logging.INFO)


def configure_logging(level: str = "info") -> logging.Logger:
    logger = logging.getLogger(ROOT_LOGGER)
    if not any(getattr(h, "_shlink_ui", False) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
        )
        handler._shlink_ui = True
        logger.addHandler(handler)
    logger.setLevel(level_from_name(level))
    return logger


def set_log_level(level: str) -> int:
    resolved = level_from_name(level)
    logging.getLogger(ROOT_LOGGER).setLevel(resolved)
    return resolved
