"""
Logging helpers.

Library modules only ever call logging.getLogger(__name__); handlers are
attached here, at application level, and nowhere else.
"""

import logging
from typing import Optional

from remotepool.core.config import Config


logger = logging.getLogger("remotepool")


def configure_logging(
    level: int = logging.INFO,
    format_string: Optional[str] = None,
    handler: Optional[logging.Handler] = None,
):
    """
    Configure logging for the remotepool package.

    Call this at application startup to enable logging.

    Args:
        level: Logging level (default: INFO).
        format_string: Optional custom format string.
        handler: Optional custom handler (default: StreamHandler).

    Example:
        from remotepool.core.log import configure_logging
        configure_logging(level=logging.DEBUG)
    """
    if format_string is None:
        format_string = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

    if handler is None:
        handler = logging.StreamHandler()

    handler.setFormatter(logging.Formatter(format_string))
    logger.addHandler(handler)
    logger.setLevel(level)


def configure_from_config(config: Config):
    """Apply the logging section of a Config."""
    level = logging.getLevelName(str(config.logging.level).upper())
    if not isinstance(level, int):
        level = logging.INFO

    configure_logging(level=level)

    if config.logging.file:
        config.logging.file.parent.mkdir(parents=True, exist_ok=True)
        configure_logging(level=level, handler=logging.FileHandler(config.logging.file))
