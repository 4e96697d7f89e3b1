"""Runtime configuration for the supervised Chromium instance."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from platformdirs import user_data_dir

DEFAULT_CHROMIUM_PATH = "/usr/bin/chromium"
DEFAULT_CDP_PORT = 18800
READY_TIMEOUT_SECONDS = 10.0
READY_POLL_INTERVAL_SECONDS = 0.25
STOP_GRACE_SECONDS = 0.5

CHROMIUM_PATH_ENV = "CHROME_PATH"
CDP_PORT_ENV = "CHROMIUMKEEPER_CDP_PORT"
USER_DATA_DIR_ENV = "CHROMIUMKEEPER_USER_DATA_DIR"
LOG_LEVEL_ENV = "CHROMIUMKEEPER_LOG_LEVEL"
AUTOSTART_ENV = "CHROMIUMKEEPER_AUTOSTART"

_FALSE_VALUES = {"0", "false", "no", "off"}


def default_user_data_dir() -> Path:
    """Return the per-user profile directory handed to --user-data-dir."""
    return Path(user_data_dir("chromiumkeeper")) / "browser" / "user-data"


@dataclass(frozen=True)
class ChromiumSettings:
    """Resolved constants consumed by the lifecycle supervisor."""

    chromium_path: str = DEFAULT_CHROMIUM_PATH
    cdp_port: int = DEFAULT_CDP_PORT
    user_data_dir: Path = field(default_factory=default_user_data_dir)
    ready_timeout_seconds: float = READY_TIMEOUT_SECONDS
    poll_interval_seconds: float = READY_POLL_INTERVAL_SECONDS
    stop_grace_seconds: float = STOP_GRACE_SECONDS
    log_level: str = "INFO"
    autostart: bool = True

    def as_dict(self) -> dict[str, object]:
        return {
            "chromium_path": self.chromium_path,
            "cdp_port": self.cdp_port,
            "user_data_dir": str(self.user_data_dir),
            "ready_timeout_seconds": self.ready_timeout_seconds,
            "poll_interval_seconds": self.poll_interval_seconds,
            "stop_grace_seconds": self.stop_grace_seconds,
            "log_level": self.log_level,
            "autostart": self.autostart,
        }


def _parse_port(raw: str | None) -> int:
    if raw is None or not raw.strip():
        return DEFAULT_CDP_PORT
    try:
        port = int(raw.strip())
    except ValueError:
        raise ValueError(f"{CDP_PORT_ENV} must be an integer, got {raw!r}") from None
    if not 0 < port < 65536:
        raise ValueError(f"{CDP_PORT_ENV} out of range: {port}")
    return port


def load_settings(environ: Mapping[str, str] | None = None) -> ChromiumSettings:
    """Build settings from the process environment (or an explicit mapping)."""
    env = os.environ if environ is None else environ
    user_data = env.get(USER_DATA_DIR_ENV, "").strip()
    return ChromiumSettings(
        chromium_path=env.get(CHROMIUM_PATH_ENV, "").strip() or DEFAULT_CHROMIUM_PATH,
        cdp_port=_parse_port(env.get(CDP_PORT_ENV)),
        user_data_dir=Path(user_data).expanduser() if user_data else default_user_data_dir(),
        log_level=env.get(LOG_LEVEL_ENV, "").strip().upper() or "INFO",
        autostart=env.get(AUTOSTART_ENV, "1").strip().lower() not in _FALSE_VALUES,
    )
