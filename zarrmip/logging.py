"""
Library logging for zarrmip.

Every module logs through a child of the ``zarrmip`` logger obtained with
get_logger(__name__). Importing the package installs only a NullHandler, so a
pyramid build is silent until the application (or the ``zarrmip-build``
console script) calls configure_logging():

    >>> from zarrmip.logging import configure_logging
    >>> configure_logging(level="INFO")

Levels used by the library:
    INFO   one line per built level and per imported volume
    DEBUG  level creation details and every written shard key
    WARNING  unreadable group metadata that is being ignored
"""

from __future__ import annotations

import logging
import sys
from typing import IO, Optional, Union

LIBRARY_LOGGER_NAME = "zarrmip"
DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Return a logger inside the ``zarrmip`` hierarchy.

    Args:
        name: Usually ``__name__``. Names already under ``zarrmip`` are used
            as is; other names are nested below it; None gives the library
            logger itself.
    """
    if name is None:
        return logging.getLogger(LIBRARY_LOGGER_NAME)
    if name == LIBRARY_LOGGER_NAME or name.startswith(LIBRARY_LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{LIBRARY_LOGGER_NAME}.{name}")


def configure_logging(
    level: Union[int, str] = logging.INFO,
    format_string: Optional[str] = None,
    handler: Optional[logging.Handler] = None,
    stream: Optional[IO[str]] = None,
) -> logging.Logger:
    """
    Send zarrmip log records to a handler.

    Any handler installed by an earlier call is removed first, so repeated
    calls never duplicate output.

    Args:
        level: Level as a number or a case-insensitive name ("debug", "INFO")
        format_string: Record format; DEFAULT_LOG_FORMAT when None
        handler: Handler to install; a StreamHandler on ``stream`` when None
        stream: Target of the default StreamHandler (sys.stderr when None)

    Returns:
        The configured library logger
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            raise ValueError(f"Unknown logging level: {level}")

    if handler is None:
        handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    if handler.formatter is None:
        handler.setFormatter(logging.Formatter(format_string or DEFAULT_LOG_FORMAT))
    handler.setLevel(level)

    logger = logging.getLogger(LIBRARY_LOGGER_NAME)
    logger.setLevel(level)
    logger.handlers.clear()
    logger.addHandler(handler)
    return logger


# Quiet by default until configure_logging() is called
_library_logger = logging.getLogger(LIBRARY_LOGGER_NAME)
if not _library_logger.handlers:
    _library_logger.addHandler(logging.NullHandler())
