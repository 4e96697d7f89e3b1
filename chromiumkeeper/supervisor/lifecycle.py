"""Lifecycle supervision for the single headless Chromium instance."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable

from chromiumkeeper.browser.launcher import ChromiumProcess, launch_process
from chromiumkeeper.browser.locks import clean_stale_locks
from chromiumkeeper.browser.output_filter import forward_stderr_line
from chromiumkeeper.browser.readiness import wait_until_ready
from chromiumkeeper.errors import LaunchError
from chromiumkeeper.settings import ChromiumSettings, load_settings

from .models import (
    REASON_BINARY_NOT_FOUND,
    REASON_EXITED,
    REASON_PROFILE_DIR,
    REASON_SPAWN_ERROR,
    REASON_TIMEOUT,
    StartResult,
)

logger = logging.getLogger("chromiumkeeper.supervisor.lifecycle")

LaunchFn = Callable[[str, list[str]], Awaitable[ChromiumProcess]]
ReadyFn = Callable[..., Awaitable[bool]]


def build_chromium_args(cdp_port: int, user_data_dir: Path | str) -> list[str]:
    """Return the fixed argument list every supervised launch uses."""
    return [
        "--headless",
        "--no-sandbox",
        "--disable-gpu",
        f"--remote-debugging-port={cdp_port}",
        "--disable-dev-shm-usage",
        f"--user-data-dir={user_data_dir}",
        "about:blank",
    ]


class ChromiumSupervisor:
    """Owns the one browser handle and exposes start/stop/status.

    ``_process`` is the only mutable state. It is set after a spawn and
    cleared by ``stop``, by a failed readiness wait, or by the exit/error
    observers registered on that same handle.
    """

    def __init__(
        self,
        settings: ChromiumSettings | None = None,
        *,
        launch_fn: LaunchFn | None = None,
        ready_fn: ReadyFn | None = None,
    ) -> None:
        self.settings = settings or load_settings()
        self._launch_fn = launch_fn or launch_process
        self._ready_fn = ready_fn or wait_until_ready
        self._process: ChromiumProcess | None = None

    @property
    def process(self) -> ChromiumProcess | None:
        return self._process

    def status(self) -> bool:
        """Return whether a handle is held; liveness is not re-checked."""
        return self._process is not None

    async def start(self) -> StartResult:
        """Launch Chromium and wait for DevTools, or report why it did not."""
        if self._process is not None:
            return StartResult(ok=True, already_running=True)

        chromium_path = self.settings.chromium_path
        if not Path(chromium_path).exists():
            logger.info(
                "[chromium] Binary not found at %s, skipping browser startup",
                chromium_path,
            )
            return StartResult(ok=False, reason=REASON_BINARY_NOT_FOUND)

        port = self.settings.cdp_port
        profile_dir = Path(self.settings.user_data_dir)
        try:
            profile_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.error("[chromium] Cannot prepare profile dir %s: %s", profile_dir, exc)
            return StartResult(ok=False, reason=REASON_PROFILE_DIR)
        clean_stale_locks(profile_dir)

        logger.info("[chromium] Starting headless on port %s...", port)
        process = await self._launch_fn(chromium_path, build_chromium_args(port, profile_dir))
        self._process = process
        process.on_stderr(forward_stderr_line)
        process.on_error(lambda exc: self._on_process_error(process, exc))
        process.on_exit(lambda code, signal_name: self._on_process_exit(process, code, signal_name))

        ready = await self._ready_fn(
            port,
            self.settings.ready_timeout_seconds,
            interval_seconds=self.settings.poll_interval_seconds,
            should_abort=process.exited.is_set,
        )
        if ready:
            logger.info("[chromium] Ready on port %s", port)
            return StartResult(ok=True)

        if isinstance(process.error, LaunchError):
            return StartResult(ok=False, reason=REASON_SPAWN_ERROR)
        if process.exited.is_set():
            logger.error("[chromium] Failed to start (exited before DevTools was ready)")
            self._release(process)
            return StartResult(ok=False, reason=REASON_EXITED)

        logger.error("[chromium] Failed to start (DevTools not responding)")
        if self._process is process:
            try:
                process.terminate()
            except OSError as exc:
                logger.debug("[chromium] terminate after timeout failed: %s", exc)
            self._process = None
        return StartResult(ok=False, reason=REASON_TIMEOUT)

    async def stop(self) -> None:
        """Signal the browser, wait out the grace period, drop the handle."""
        process = self._process
        if process is None:
            return
        try:
            process.terminate()
        except OSError as exc:
            logger.debug("[chromium] terminate failed: %s", exc)
        await asyncio.sleep(self.settings.stop_grace_seconds)
        self._process = None

    def _release(self, process: ChromiumProcess) -> None:
        if self._process is process:
            self._process = None

    def _on_process_error(self, process: ChromiumProcess, exc: BaseException) -> None:
        if isinstance(exc, LaunchError):
            logger.error("[chromium] spawn error: %s", exc)
        else:
            logger.error("[chromium] process error: %s", exc)
        self._release(process)

    def _on_process_exit(
        self, process: ChromiumProcess, code: int | None, signal_name: str | None
    ) -> None:
        logger.info("[chromium] exited code=%s signal=%s", code, signal_name)
        self._release(process)


_default_supervisor: ChromiumSupervisor | None = None


def get_supervisor() -> ChromiumSupervisor:
    """Return the process-wide supervisor, creating it on first use."""
    global _default_supervisor
    if _default_supervisor is None:
        _default_supervisor = ChromiumSupervisor()
    return _default_supervisor


async def start_chromium() -> dict:
    result = await get_supervisor().start()
    return result.to_payload()


async def stop_chromium() -> None:
    await get_supervisor().stop()


def is_chromium_running() -> bool:
    return get_supervisor().status()
