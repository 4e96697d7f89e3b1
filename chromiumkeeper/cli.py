import asyncio
import json
import logging
import signal
from pathlib import Path
from typing import Optional

import typer
import uvicorn

from chromiumkeeper.browser.locks import LOCK_ARTIFACTS, clean_stale_locks
from chromiumkeeper.browser.readiness import build_version_url, probe_once
from chromiumkeeper.logs import configure_logging
from chromiumkeeper.settings import load_settings
from chromiumkeeper.supervisor.lifecycle import ChromiumSupervisor

app = typer.Typer()
logger = logging.getLogger("chromiumkeeper.cli")

CONTROL_HOST = "127.0.0.1"
CONTROL_PORT = 18801


async def _run_until_stopped(supervisor: ChromiumSupervisor) -> int:
    """Start the browser, then block until Ctrl+C/SIGTERM or browser exit."""
    result = await supervisor.start()
    typer.echo(json.dumps(result.to_payload()))
    if not result.ok:
        return 1

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            logger.warning("Signal handler for %s not supported on this platform.", sig.name)

    waiters = [asyncio.create_task(stop_event.wait())]
    exit_waiter = None
    process = supervisor.process
    if process is not None:
        exit_waiter = asyncio.create_task(process.exited.wait())
        waiters.append(exit_waiter)
    try:
        done, pending = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                pass
        await supervisor.stop()
    if exit_waiter in done and not stop_event.is_set():
        typer.echo("Browser exited unexpectedly.")
        return 1
    typer.echo("Browser stopped.")
    return 0


@app.command()
def run():
    """Run headless Chromium in the foreground until interrupted."""
    settings = load_settings()
    configure_logging(settings.log_level)
    exit_code = asyncio.run(_run_until_stopped(ChromiumSupervisor(settings)))
    if exit_code:
        raise typer.Exit(code=exit_code)


@app.command()
def serve(
    host: str = typer.Option(CONTROL_HOST, "--host", help="Control API host"),
    port: int = typer.Option(CONTROL_PORT, "--port", help="Control API port"),
):
    """Serve the start/stop/status control API (starts the browser on boot)."""
    uvicorn.run("chromiumkeeper.supervisor.app:app", host=host, port=port)


@app.command()
def probe(
    port: Optional[int] = typer.Option(None, "--port", help="Remote debugging port"),
):
    """Probe the DevTools /json/version endpoint once."""
    cdp_port = port if port is not None else load_settings().cdp_port
    ready = asyncio.run(probe_once(cdp_port))
    if ready:
        typer.echo(f"DevTools: READY ({build_version_url(cdp_port)})")
        return
    typer.echo(f"DevTools: NOT READY ({build_version_url(cdp_port)})")
    raise typer.Exit(code=1)


@app.command("clean-locks")
def clean_locks(
    profile_dir: Optional[Path] = typer.Option(None, "--profile-dir", help="Chromium user data dir"),
):
    """Remove stale Singleton* lock files from the profile directory."""
    target = profile_dir if profile_dir is not None else load_settings().user_data_dir
    clean_stale_locks(target)
    typer.echo(f"Cleaned {', '.join(LOCK_ARTIFACTS)} in {target}")


@app.command()
def config(
    json_output: bool = typer.Option(False, "--json", help="Print settings as JSON"),
):
    """Show the resolved browser settings."""
    settings = load_settings().as_dict()
    if json_output:
        typer.echo(json.dumps(settings, indent=2))
        return
    for key, value in settings.items():
        typer.echo(f"{key}: {value}")


if __name__ == "__main__":
    app()
