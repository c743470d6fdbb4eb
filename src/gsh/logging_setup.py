"""Logging setup for gsh.

Log records go to stderr so stdout carries only host output.
"""

from __future__ import annotations

import logging
import os
import sys

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def resolve_level(cli_level: str | None, default: str = "WARNING") -> str:
    """Pick the log level: command line, then $GSH_LOG_LEVEL, then default."""
    level = cli_level or os.environ.get("GSH_LOG_LEVEL") or default
    return level.upper()


def setup_logging(level: str = "WARNING") -> None:
    """Configure the root logger. Call once from the entry point."""
    root_logger = logging.getLogger()

    # Clear any existing handlers to avoid duplicate logs
    if root_logger.hasHandlers():
        root_logger.handlers.clear()

    root_logger.setLevel(level)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(handler)

    # asyncssh logs every channel at INFO
    if level != "DEBUG":
        logging.getLogger("asyncssh").setLevel(logging.WARNING)
