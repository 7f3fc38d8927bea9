"""Loguru sink configuration for the CLI and scripts."""

from __future__ import annotations

import sys

from loguru import logger

LOG_FORMAT = "<dim>{time:HH:mm:ss}</dim> | <level>{level: <8}</level> | {name}:{function} - {message}"


def configure_logging(level: str = "WARNING", *, sink=None) -> int:
    """
    Replace the default loguru handler with a single leveled sink.

    Library modules only ever call ``logger``; this is the one place a sink
    is installed.

    Args:
        level: Minimum level to emit
        sink: Destination (defaults to stderr)

    Returns:
        The loguru handler id
    """
    logger.remove()
    return logger.add(
        sink or sys.stderr,
        level=level.upper(),
        format=LOG_FORMAT,
    )
