"""Tests for the Chromium lifecycle supervisor."""

from __future__ import annotations

import os
import tempfile
import time
import unittest
from pathlib import Path
from unittest import mock

import httpx

from chromiumkeeper.browser.launcher import ChromiumProcess, launch_process
from chromiumkeeper.browser.locks import LOCK_ARTIFACTS
from chromiumkeeper.browser.readiness import wait_until_ready
from chromiumkeeper.settings import ChromiumSettings
from chromiumkeeper.supervisor import lifecycle
from chromiumkeeper.supervisor.lifecycle import ChromiumSupervisor, build_chromium_args


class _FakeProcess(ChromiumProcess):
    """Process handle that never runs anything and ignores SIGTERM."""

    def __init__(self, binary_path: str) -> None:
        super().__init__(binary_path)
        self.terminate_calls = 0

    def terminate(self) -> None:
        self.terminate_calls += 1

    def fire_exit(self, code: int | None, signal_name: str | None = None) -> None:
        self.exited.set()
        self._dispatch(self._exit_observers, code, signal_name)


class _FakeLauncher:
    def __init__(self) -> None:
        self.calls: list[tuple[str, list[str]]] = []
        self.processes: list[_FakeProcess] = []

    async def __call__(self, binary_path: str, args: list[str]) -> _FakeProcess:
        self.calls.append((binary_path, args))
        process = _FakeProcess(binary_path)
        self.processes.append(process)
        return process


def _mock_ready_fn(handler):
    """Real poller wired to an in-memory DevTools endpoint."""

    async def _ready(port, timeout_seconds, **kwargs):
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await wait_until_ready(port, timeout_seconds, client=client, **kwargs)

    return _ready


def _refuse(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("connection refused", request=request)


def _ok(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"Browser": "HeadlessChrome/120.0"})


class SupervisorTests(unittest.IsolatedAsyncioTestCase):
    """Validate start/stop/status semantics and the handle lifecycle."""

    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.binary = self.root / "chromium"
        self.binary.write_text("#!/bin/sh\n", encoding="utf-8")
        self.profile = self.root / "profile" / "user-data"
        self.launcher = _FakeLauncher()

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _settings(self, **overrides) -> ChromiumSettings:
        values = {
            "chromium_path": str(self.binary),
            "cdp_port": 18800,
            "user_data_dir": self.profile,
            "ready_timeout_seconds": 0.5,
            "poll_interval_seconds": 0.25,
            "stop_grace_seconds": 0.01,
        }
        values.update(overrides)
        return ChromiumSettings(**values)

    def _supervisor(self, ready_fn=None, **overrides) -> ChromiumSupervisor:
        return ChromiumSupervisor(
            self._settings(**overrides),
            launch_fn=self.launcher,
            ready_fn=ready_fn or _mock_ready_fn(_ok),
        )

    def test_fixed_argument_set(self) -> None:
        self.assertEqual(
            build_chromium_args(18800, "/data/profile"),
            [
                "--headless",
                "--no-sandbox",
                "--disable-gpu",
                "--remote-debugging-port=18800",
                "--disable-dev-shm-usage",
                "--user-data-dir=/data/profile",
                "about:blank",
            ],
        )

    async def test_missing_binary_reports_without_side_effects(self) -> None:
        supervisor = self._supervisor(chromium_path=str(self.root / "missing-chromium"))
        with self.assertLogs("chromiumkeeper.supervisor.lifecycle", level="INFO"):
            result = await supervisor.start()
        self.assertEqual(result.to_payload(), {"ok": False, "reason": "binary not found"})
        self.assertEqual(self.launcher.calls, [])
        self.assertFalse(self.profile.exists())
        self.assertFalse(supervisor.status())

    async def test_unusable_profile_dir_is_reported(self) -> None:
        supervisor = self._supervisor(user_data_dir=self.binary / "profile")
        with self.assertLogs("chromiumkeeper.supervisor.lifecycle", level="ERROR") as logs:
            result = await supervisor.start()
        self.assertEqual(result.to_payload(), {"ok": False, "reason": "profile dir unavailable"})
        self.assertIn("Cannot prepare profile dir", "\n".join(logs.output))
        self.assertEqual(self.launcher.calls, [])
        self.assertFalse(supervisor.status())

    async def test_runtime_process_error_is_not_reported_as_spawn_error(self) -> None:
        supervisor = self._supervisor()
        result = await supervisor.start()
        self.assertTrue(result.ok)

        with self.assertLogs("chromiumkeeper.supervisor.lifecycle", level="ERROR") as logs:
            self.launcher.processes[0]._fail(RuntimeError("wait failed"))
        output = "\n".join(logs.output)
        self.assertIn("process error: wait failed", output)
        self.assertNotIn("spawn error", output)
        self.assertFalse(supervisor.status())

    async def test_ready_on_first_probe(self) -> None:
        self.profile.mkdir(parents=True)
        for name in LOCK_ARTIFACTS:
            (self.profile / name).write_text("stale", encoding="utf-8")
        supervisor = self._supervisor()

        started = time.monotonic()
        result = await supervisor.start()
        elapsed = time.monotonic() - started

        self.assertEqual(result.to_payload(), {"ok": True})
        self.assertLess(elapsed, 0.25)
        self.assertTrue(supervisor.status())
        self.assertEqual(self.launcher.processes[0].terminate_calls, 0)
        for name in LOCK_ARTIFACTS:
            self.assertFalse((self.profile / name).exists())
        binary_path, args = self.launcher.calls[0]
        self.assertEqual(binary_path, str(self.binary))
        self.assertEqual(args, build_chromium_args(18800, self.profile))

    async def test_profile_directory_is_created(self) -> None:
        supervisor = self._supervisor()
        await supervisor.start()
        self.assertTrue(self.profile.is_dir())

    async def test_second_start_is_idempotent(self) -> None:
        supervisor = self._supervisor()
        first = await supervisor.start()
        second = await supervisor.start()
        self.assertTrue(first.ok)
        self.assertEqual(second.to_payload(), {"ok": True, "alreadyRunning": True})
        self.assertEqual(len(self.launcher.calls), 1)

    async def test_readiness_timeout_terminates_and_clears(self) -> None:
        supervisor = self._supervisor(ready_fn=_mock_ready_fn(_refuse))

        started = time.monotonic()
        result = await supervisor.start()
        elapsed = time.monotonic() - started

        self.assertEqual(result.to_payload(), {"ok": False, "reason": "timeout"})
        self.assertGreaterEqual(elapsed, 0.5)
        self.assertLessEqual(elapsed, 0.5 + 0.25 + 0.15)
        self.assertEqual(self.launcher.processes[0].terminate_calls, 1)
        self.assertFalse(supervisor.status())
        self.assertIsNone(supervisor.process)

    async def test_stop_clears_handle_even_if_process_ignores_sigterm(self) -> None:
        supervisor = self._supervisor()
        await supervisor.start()
        process = self.launcher.processes[0]

        await supervisor.stop()

        self.assertEqual(process.terminate_calls, 1)
        self.assertFalse(process.exited.is_set())
        self.assertFalse(supervisor.status())

    async def test_stop_without_handle_is_noop(self) -> None:
        supervisor = self._supervisor()
        await supervisor.stop()
        self.assertFalse(supervisor.status())

    async def test_stop_swallows_signal_errors(self) -> None:
        supervisor = self._supervisor()
        await supervisor.start()
        with mock.patch.object(
            self.launcher.processes[0], "terminate", side_effect=PermissionError("EPERM")
        ):
            await supervisor.stop()
        self.assertFalse(supervisor.status())

    async def test_exit_after_ready_clears_handle(self) -> None:
        supervisor = self._supervisor()
        await supervisor.start()
        with self.assertLogs("chromiumkeeper.supervisor.lifecycle", level="INFO") as captured:
            self.launcher.processes[0].fire_exit(None, "SIGKILL")
        self.assertFalse(supervisor.status())
        self.assertIn("[chromium] exited code=None signal=SIGKILL", captured.output[-1])

    async def test_exit_during_readiness_wait_is_reported(self) -> None:
        async def _exits_then_gives_up(port, timeout_seconds, **kwargs):
            self.launcher.processes[-1].fire_exit(1)
            self.assertTrue(kwargs["should_abort"]())
            return False

        supervisor = self._supervisor(ready_fn=_exits_then_gives_up)
        result = await supervisor.start()

        self.assertEqual(result.to_payload(), {"ok": False, "reason": "exited"})
        self.assertEqual(self.launcher.processes[0].terminate_calls, 0)
        self.assertFalse(supervisor.status())

    async def test_stale_exit_does_not_clear_newer_handle(self) -> None:
        supervisor = self._supervisor()
        await supervisor.start()
        await supervisor.stop()
        await supervisor.start()
        old_process, new_process = self.launcher.processes

        old_process.fire_exit(0)

        self.assertTrue(supervisor.status())
        self.assertIs(supervisor.process, new_process)

    async def test_spawn_error_is_reported(self) -> None:
        os.chmod(self.binary, 0o644)
        supervisor = ChromiumSupervisor(
            self._settings(ready_timeout_seconds=5.0, poll_interval_seconds=0.01),
            launch_fn=launch_process,
            ready_fn=_mock_ready_fn(_refuse),
        )
        with self.assertLogs("chromiumkeeper.supervisor.lifecycle", level="ERROR") as captured:
            result = await supervisor.start()
        self.assertEqual(result.to_payload(), {"ok": False, "reason": "spawn error"})
        self.assertFalse(supervisor.status())
        self.assertTrue(any("spawn error" in line for line in captured.output))


class DefaultSupervisorTests(unittest.IsolatedAsyncioTestCase):
    """Module-level helpers operate on the shared supervisor."""

    async def test_module_level_helpers(self) -> None:
        launcher = _FakeLauncher()
        with tempfile.TemporaryDirectory() as tmpdir:
            binary = Path(tmpdir) / "chromium"
            binary.write_text("", encoding="utf-8")
            supervisor = ChromiumSupervisor(
                ChromiumSettings(
                    chromium_path=str(binary),
                    user_data_dir=Path(tmpdir) / "profile",
                    stop_grace_seconds=0.01,
                ),
                launch_fn=launcher,
                ready_fn=_mock_ready_fn(_ok),
            )
            with mock.patch.object(lifecycle, "_default_supervisor", supervisor):
                self.assertIs(lifecycle.get_supervisor(), supervisor)
                self.assertEqual(await lifecycle.start_chromium(), {"ok": True})
                self.assertTrue(lifecycle.is_chromium_running())
                await lifecycle.stop_chromium()
                self.assertFalse(lifecycle.is_chromium_running())


if __name__ == "__main__":
    unittest.main()
