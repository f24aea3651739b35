"""
Shared helpers.
"""
import logging

from app.core import config


_configured = False


def get_logger(name: str) -> logging.Logger:
    """
    Get a module logger.

    The root handler is configured once, at the level named by LOG_LEVEL.

    Usage:
        from app.utils import get_logger

        log = get_logger(__name__)
        log.info("Something happened")
    """
    global _configured
    if not _configured:
        logging.basicConfig(
            level=config.LOG_LEVEL,
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )
        _configured = True
    return logging.getLogger(name)
