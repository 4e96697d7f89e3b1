"""Chromium child process spawning and observer plumbing."""

from __future__ import annotations

import asyncio
import logging
import signal
from asyncio import subprocess as aio_subprocess
from typing import Callable, Optional

from chromiumkeeper.errors import LaunchError

logger = logging.getLogger("chromiumkeeper.browser.launcher")

StderrObserver = Callable[[str], None]
ErrorObserver = Callable[[BaseException], None]
ExitObserver = Callable[[Optional[int], Optional[str]], None]


def describe_returncode(returncode: int) -> tuple[int | None, str | None]:
    """Split an asyncio returncode into ``(exit_code, signal_name)``."""
    if returncode >= 0:
        return returncode, None
    try:
        return None, signal.Signals(-returncode).name
    except ValueError:
        return None, f"SIG{-returncode}"


class Subscription:
    """Handle returned by observer registration; ``cancel()`` detaches it."""

    def __init__(self, observers: list, callback: Callable) -> None:
        self._observers = observers
        self._callback = callback

    @property
    def active(self) -> bool:
        return self._callback in self._observers

    def cancel(self) -> None:
        if self._callback in self._observers:
            self._observers.remove(self._callback)


class ChromiumProcess:
    """In-memory handle for the one supervised browser process.

    Background tasks drain stdout, forward stderr line by line to the
    registered stderr observers and report the exit. Observers registered
    right after :func:`launch_process` returns cannot miss an event, because
    none of those tasks runs before the caller's next ``await``.
    """

    def __init__(self, binary_path: str, process: aio_subprocess.Process | None = None) -> None:
        self.binary_path = binary_path
        self._process = process
        self._stderr_observers: list[StderrObserver] = []
        self._error_observers: list[ErrorObserver] = []
        self._exit_observers: list[ExitObserver] = []
        self._tasks: list[asyncio.Task] = []
        self.exited = asyncio.Event()
        self.returncode: int | None = None
        self.error: BaseException | None = None

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    def on_stderr(self, callback: StderrObserver) -> Subscription:
        self._stderr_observers.append(callback)
        return Subscription(self._stderr_observers, callback)

    def on_error(self, callback: ErrorObserver) -> Subscription:
        self._error_observers.append(callback)
        return Subscription(self._error_observers, callback)

    def on_exit(self, callback: ExitObserver) -> Subscription:
        self._exit_observers.append(callback)
        return Subscription(self._exit_observers, callback)

    def terminate(self) -> None:
        """Send SIGTERM if the child is still running."""
        if self._process is None or self._process.returncode is not None:
            return
        try:
            self._process.terminate()
        except ProcessLookupError:
            pass

    def kill(self) -> None:
        if self._process is None or self._process.returncode is not None:
            return
        try:
            self._process.kill()
        except ProcessLookupError:
            pass

    async def wait(self) -> int | None:
        """Wait for exit and for both output streams to be fully drained."""
        await self.exited.wait()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        return self.returncode

    def _dispatch(self, observers: list, *args) -> None:
        for callback in list(observers):
            try:
                callback(*args)
            except Exception:
                logger.exception("[chromium] Observer %r failed", callback)

    def _start_watchers(self) -> None:
        assert self._process is not None
        pid = self._process.pid
        if self._process.stdout is not None:
            self._tasks.append(
                asyncio.create_task(self._drain_stdout(), name=f"chromium-{pid}-stdout")
            )
        if self._process.stderr is not None:
            self._tasks.append(
                asyncio.create_task(self._pump_stderr(), name=f"chromium-{pid}-stderr")
            )
        self._tasks.append(asyncio.create_task(self._watch_exit(), name=f"chromium-{pid}-exit"))

    async def _drain_stdout(self) -> None:
        assert self._process is not None and self._process.stdout is not None
        try:
            while await self._process.stdout.read(65536):
                pass
        except Exception as exc:
            logger.warning("[chromium] stdout drain stopped: %s", exc)

    async def _pump_stderr(self) -> None:
        assert self._process is not None and self._process.stderr is not None
        stream = self._process.stderr
        try:
            while True:
                try:
                    raw = await stream.readuntil(b"\n")
                except asyncio.IncompleteReadError as exc:
                    if exc.partial:
                        self._dispatch_stderr(exc.partial)
                    return
                except asyncio.LimitOverrunError as exc:
                    # Over-long line: hand it on in limit-sized pieces.
                    raw = await stream.read(exc.consumed)
                    if not raw:
                        return
                self._dispatch_stderr(raw)
        except Exception as exc:
            logger.warning("[chromium] stderr reader stopped: %s", exc)

    def _dispatch_stderr(self, raw: bytes) -> None:
        self._dispatch(self._stderr_observers, raw.decode("utf-8", errors="replace"))

    async def _watch_exit(self) -> None:
        assert self._process is not None
        try:
            returncode = await self._process.wait()
        except Exception as exc:
            self._fail(exc)
            return
        self.returncode = returncode
        self.exited.set()
        code, signal_name = describe_returncode(returncode)
        self._dispatch(self._exit_observers, code, signal_name)

    def _fail(self, exc: BaseException) -> None:
        self.error = exc
        self.exited.set()
        self._dispatch(self._error_observers, exc)


async def launch_process(binary_path: str, args: list[str]) -> ChromiumProcess:
    """Spawn *binary_path* with *args* and return its observable handle.

    stdin is discarded, stdout/stderr are piped, and the child stays in our
    process group so that a supervisor shutdown reaches it. OS-level spawn
    failures do not raise: they are delivered to ``on_error`` observers as a
    :class:`LaunchError` on the next loop iteration.
    """
    logger.debug("Spawning %s with args: %s", binary_path, args)
    try:
        process = await aio_subprocess.create_subprocess_exec(
            binary_path,
            *args,
            stdin=aio_subprocess.DEVNULL,
            stdout=aio_subprocess.PIPE,
            stderr=aio_subprocess.PIPE,
            start_new_session=False,
        )
    except OSError as exc:
        handle = ChromiumProcess(binary_path)
        error = LaunchError(binary_path, f"{binary_path}: {exc}")
        error.__cause__ = exc
        asyncio.get_running_loop().call_soon(handle._fail, error)
        return handle

    handle = ChromiumProcess(binary_path, process)
    handle._start_watchers()
    return handle
