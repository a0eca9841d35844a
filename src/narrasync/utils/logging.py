"""Logging utilities for narrasync."""

from __future__ import annotations

import logging
import sys
from typing import TextIO

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def get_logger(
    name: str = "narrasync",
    level: int = logging.INFO,
    stream: TextIO = sys.stderr,
) -> logging.Logger:
    """Get a configured logger for narrasync.

    Args:
        name: Logger name.
        level: Logging level.
        stream: Output stream.

    Returns:
        Configured logger instance.
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        handler = logging.StreamHandler(stream)
        handler.setLevel(level)

        formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%H:%M:%S")
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.setLevel(level)
    return logger


def log_issue_summary(logger: logging.Logger, errors: int, warnings: int) -> None:
    """Log a one-line summary of validation issue counts.

    Args:
        logger: Logger instance.
        errors: Number of error-level issues.
        warnings: Number of warning-level issues.
    """
    if errors:
        logger.error(f"Validation failed: {errors} error(s), {warnings} warning(s)")
    elif warnings:
        logger.warning(f"Validation passed with {warnings} warning(s)")
    else:
        logger.info("Validation passed")
