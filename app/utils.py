"""
Shared helpers used across features.
"""
import logging

from app.core import config


LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_logger(name: str, level: str | None = None) -> logging.Logger:
    """
    Get a module logger with a console handler attached.

    Usage:
        from app.utils import get_logger

        log = get_logger(__name__)
        log.info("Role %s created", role.id)
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        logger.setLevel(level or config.LOG_LEVEL)

        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(handler)
        # Handler is attached per module, avoid duplicates through the root logger
        logger.propagate = False

    return logger
