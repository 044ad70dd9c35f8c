"""Logging helpers shared by all crudkit modules."""

import logging
import sys
from typing import Optional, Union

ROOT_LOGGER_NAME = "crudkit"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger placed under the crudkit hierarchy.

    Module names that already start with ``crudkit`` are used as-is, anything
    else is nested below the root logger so one ``configure_logging`` call
    controls every message the library emits.
    """
    if name == ROOT_LOGGER_NAME or name.startswith(f"{ROOT_LOGGER_NAME}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def configure_logging(level: Union[str, int] = "INFO", stream: Optional[object] = None) -> logging.Logger:
    """
    Install a single stream handler on the crudkit root logger.

    Calling this more than once replaces the level but never stacks handlers.

    Args:
        level: Log level name or number
        stream: Output stream (defaults to stderr)

    Returns:
        The configured root logger
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    if isinstance(level, str):
        level = level.upper()
    logger.setLevel(level)

    if not any(getattr(h, "_crudkit_handler", False) for h in logger.handlers):
        handler = logging.StreamHandler(stream or sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._crudkit_handler = True  # type: ignore[attr-defined]
        logger.addHandler(handler)

    return logger
