"""Logging setup for the CLI and the test-suite."""
from __future__ import annotations

import logging
from typing import Optional

from moove_money.config import LoggingSettings


def configure(settings: Optional[LoggingSettings] = None) -> None:
    """Log ``moove_money`` at the configured level; everything else at WARNING."""
    settings = settings or LoggingSettings()
    logging.basicConfig(
        format=settings.format,
        datefmt=settings.datefmt,
        level=logging.WARNING,
        force=True,
    )
    logging.getLogger("moove_money").setLevel(settings.level.strip().upper())
