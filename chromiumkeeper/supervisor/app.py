from fastapi import FastAPI, HTTPException
import logging

from chromiumkeeper.logs import configure_logging
from chromiumkeeper.settings import load_settings
from .lifecycle import get_supervisor
from .models import BrowserStatus

configure_logging(load_settings().log_level)
logger = logging.getLogger("chromiumkeeper.supervisor")

app = FastAPI(title="chromiumkeeper")


@app.on_event("startup")
async def startup_event():
    supervisor = get_supervisor()
    if not supervisor.settings.autostart:
        logger.info("Autostart disabled; waiting for POST /browser/start")
        return
    result = await supervisor.start()
    if not result.ok:
        # The gateway keeps running without browser support.
        logger.warning("Browser startup skipped: %s", result.reason)


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Stopping browser...")
    await get_supervisor().stop()
    logger.info("Browser stopped.")


@app.get("/health")
async def health_check():
    return {"status": "ok"}


@app.get("/browser/status", response_model=BrowserStatus)
async def browser_status():
    return BrowserStatus(running=get_supervisor().status())


@app.post("/browser/start")
async def start_browser():
    try:
        result = await get_supervisor().start()
    except Exception as e:
        logger.error(f"Unexpected error starting browser: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    return result.to_payload()


@app.post("/browser/stop", response_model=BrowserStatus)
async def stop_browser():
    try:
        await get_supervisor().stop()
    except Exception as e:
        logger.error(f"Unexpected error stopping browser: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    return BrowserStatus(running=False)
