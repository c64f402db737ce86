"""Logging configuration for CLI and host processes."""

from __future__ import annotations

import logging

from rich.logging import RichHandler

from sona.config import Settings


def configure_logging(settings: Settings) -> None:
    """Route the ``sona`` logger hierarchy through a rich handler."""
    logger = logging.getLogger("sona")
    logger.setLevel(settings.log_level.upper())
    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        logger.addHandler(RichHandler(rich_tracebacks=True, show_path=False))
    logger.propagate = False
