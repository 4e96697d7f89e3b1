"""Shared logging setup for the CLI and the control API."""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Install the stream handler used by every chromiumkeeper entry point."""
    resolved = logging.getLevelName(str(level).strip().upper() or "INFO")
    if not isinstance(resolved, int):
        resolved = logging.INFO
    logging.basicConfig(
        level=resolved,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler()],
    )
