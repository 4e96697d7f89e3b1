"""DevTools readiness probing for the supervised Chromium instance."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

import httpx

from chromiumkeeper.settings import READY_POLL_INTERVAL_SECONDS

logger = logging.getLogger("chromiumkeeper.browser.readiness")

PROBE_TIMEOUT_SECONDS = 1.0


def build_version_url(port: int) -> str:
    """Return the loopback /json/version URL for a debugging port."""
    return f"http://127.0.0.1:{port}/json/version"


async def probe_once(
    port: int,
    *,
    client: httpx.AsyncClient | None = None,
    timeout_seconds: float = PROBE_TIMEOUT_SECONDS,
) -> bool:
    """Return True when the version endpoint answers with any 2xx status."""
    url = build_version_url(port)
    try:
        if client is not None:
            response = await client.get(url, timeout=timeout_seconds)
        else:
            async with httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds)) as owned:
                response = await owned.get(url)
    except httpx.HTTPError:
        return False
    return response.is_success


async def wait_until_ready(
    port: int,
    timeout_seconds: float,
    *,
    interval_seconds: float = READY_POLL_INTERVAL_SECONDS,
    client: httpx.AsyncClient | None = None,
    should_abort: Callable[[], bool] | None = None,
) -> bool:
    """Poll the version endpoint until it succeeds or *timeout_seconds* elapse.

    Connection errors count as "not ready yet". The loop never gives up
    before the deadline and never sleeps past it, so a negative answer
    arrives within one interval of *timeout_seconds*. ``should_abort`` is
    checked before every probe and ends the wait early when it returns True.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout_seconds

    async def _poll(active: httpx.AsyncClient) -> bool:
        while True:
            if should_abort is not None and should_abort():
                logger.debug("Readiness wait on port %s aborted", port)
                return False
            remaining = deadline - loop.time()
            if remaining <= 0:
                return False
            probe_timeout = min(PROBE_TIMEOUT_SECONDS, max(remaining, 0.01))
            if await probe_once(port, client=active, timeout_seconds=probe_timeout):
                return True
            remaining = deadline - loop.time()
            if remaining <= 0:
                return False
            await asyncio.sleep(min(interval_seconds, remaining))

    if client is not None:
        return await _poll(client)
    async with httpx.AsyncClient() as owned:
        return await _poll(owned)
