from fastapi import FastAPI
import logging

from backend.app.config import config
from backend.app.logging_config import setup_logging

setup_logging()

app = FastAPI(
    title="L4D2 Addon Manager",
    response_model_by_alias=False,
)


logger = logging.getLogger("addonmgr.core")
logger.info("Addon manager backend starting")

@app.on_event("startup")
async def startup_event() -> None:
    logger.info("Running application startup tasks")
    # Delayed imports to avoid importing the addons package at module import time.
    from .addons.api.router import router as addons_router, get_addon_manager
    from .addons.workshop import router as workshop_router, startup_workshop
    logger.info("Imported addon services and routers")

    try:
        # Mount routers early so endpoints exist even if subsequent startup steps fail
        app.include_router(addons_router)
        app.include_router(workshop_router)
        logger.info("Mounted addon routers")

        # Restore game path + activation order and reconcile with the disk
        get_addon_manager().startup()
        logger.info("Restored addon activation state")

        try:
            startup_workshop()
        except Exception:
            logger.exception("Workshop cache cleanup failed")

    except Exception:
        logger.exception("Application startup failed")
        raise


@app.get("/api/health")
def health() -> dict[str, str]:
    return {"status": "ok", "service": "L4D2 Addon Manager"}


def run() -> None:
    import uvicorn

    uvicorn.run("backend.app.main:app", host=config.host, port=config.port)
