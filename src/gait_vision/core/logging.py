"""Logging setup using Rich."""

from __future__ import annotations

import logging

from rich.logging import RichHandler

from .config import LoggingConfig

_PACKAGE_LOGGER = "gait_vision"


def setup_logging(config: LoggingConfig | None = None, level: str | None = None) -> logging.Logger:
    """
    Attach a Rich handler to the package logger.

    Args:
        config: Logging configuration (defaults to LoggingConfig())
        level: Explicit level overriding the configured one

    Returns:
        The package logger
    """
    config = config or LoggingConfig()
    logger = logging.getLogger(_PACKAGE_LOGGER)
    logger.setLevel((level or config.level).upper())

    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        handler = RichHandler(
            rich_tracebacks=config.rich_tracebacks,
            show_path=False,
            markup=False,
        )
        handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
        logger.addHandler(handler)

    logger.propagate = False
    return logger
