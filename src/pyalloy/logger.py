"""Logging configuration module.

Provides the package-wide ``LOGGER`` using Rich for console formatting. The
default level is WARNING; the CLI and ``AnalyzerConfig.logging_level``
adjust it through ``set_logging_level``.
"""

import logging

from rich.logging import RichHandler

LOGGING_LEVEL = "WARNING"
LOGGER = logging.getLogger("pyalloy")
LOGGER.setLevel(getattr(logging, LOGGING_LEVEL))
LOGGER.addHandler(RichHandler())


def set_logging_level(level: str) -> None:
    """Set the level of the package logger by name (e.g. ``"DEBUG"``)."""
    LOGGER.setLevel(getattr(logging, str(level).upper()))
