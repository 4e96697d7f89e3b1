"""Stale profile lock cleanup run before every Chromium launch."""

from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger("chromiumkeeper.browser.locks")

# Chromium leaves these behind after an unclean shutdown and then refuses
# to open the profile ("Opening in existing browser session").
LOCK_ARTIFACTS = ("SingletonLock", "SingletonCookie", "SingletonSocket")


def clean_stale_locks(profile_dir: Path | str) -> None:
    """Remove singleton lock artifacts from *profile_dir*, ignoring failures."""
    base = Path(profile_dir)
    for name in LOCK_ARTIFACTS:
        # unlink() never follows the link; SingletonLock is usually dangling.
        try:
            (base / name).unlink()
            logger.debug("[chromium] Removed stale lock %s", base / name)
        except OSError:
            continue
