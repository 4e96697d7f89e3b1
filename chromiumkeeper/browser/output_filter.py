"""Noise filtering for Chromium's stderr stream."""

from __future__ import annotations

import logging

logger = logging.getLogger("chromiumkeeper.browser.output")

NOISE_MARKERS = ("dbus", "DBus")


def filter_stderr_line(raw: str) -> str | None:
    """Return the trimmed line, or None when it is empty or dbus noise."""
    line = (raw or "").strip()
    if not line:
        return None
    if any(marker in line for marker in NOISE_MARKERS):
        return None
    return line


def forward_stderr_line(raw: str) -> None:
    line = filter_stderr_line(raw)
    if line is not None:
        logger.info("[chromium] %s", line)
