# backend/app/addons/api/router.py
from __future__ import annotations

import logging
from pathlib import Path

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import FileResponse

from ...config import config
from ..domain.models import (
    AddonsResponse,
    MoveRequest,
    OperationResult,
    RecreateResult,
    RunningStateRequest,
    SetGamePathRequest,
)
from ..services.activation import AddonNotFoundError, GamePathNotSetError, MirrorError, StateWriteError
from ..services.discovery import DiscoveryError
from ..services.gameinfo import ConfigWriteError
from ..services.manager import AddonManager
from ..state_store import get_state_store
from ..workshop import get_workshop_cache

router = APIRouter(prefix="/api/addons", tags=["addons"])
logger = logging.getLogger("addonmgr.addons.api")

# ----------------------------
# Singleton (created on first use)
# ----------------------------

_addon_manager: AddonManager | None = None


def get_addon_manager() -> AddonManager:
    global _addon_manager
    if _addon_manager is None:
        _addon_manager = AddonManager(
            get_state_store(),
            workshop=get_workshop_cache(),
            game_subdir=config.game_subdir,
        )
    return _addon_manager


def _run_operation(mgr: AddonManager, label: str, op) -> OperationResult:
    """
    Run a toggle/move/running change and fold its errors into a result.

    MirrorError: nothing changed (failed). ConfigWriteError or
    StateWriteError: the change is live but gameinfo.txt or the saved order
    is stale (partial).
    """
    try:
        op()
    except AddonNotFoundError as e:
        raise HTTPException(status_code=404, detail=f"Addon not found: {e.args[0]}")
    except GamePathNotSetError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except MirrorError as e:
        logger.warning(f"{label} failed: {e}")
        return OperationResult(status="failed", addons=mgr.orders.entries, errors=[str(e)])
    except (ConfigWriteError, StateWriteError) as e:
        logger.warning(f"{label} applied but not fully written out: {e}")
        return OperationResult(status="partial", addons=mgr.orders.entries, errors=[str(e)])

    return OperationResult(status="ok", addons=mgr.orders.entries)


# ----------------------------
# State + game path
# ----------------------------

@router.get("", response_model=AddonsResponse)
def api_list_addons(
    titles: bool = Query(default=False, description="Resolve workshop titles"),
    mgr: AddonManager = Depends(get_addon_manager),
) -> AddonsResponse:
    return mgr.snapshot(include_titles=titles)


@router.post("/path", response_model=AddonsResponse)
def api_set_game_path(req: SetGamePathRequest, mgr: AddonManager = Depends(get_addon_manager)) -> AddonsResponse:
    logger.info(f"POST /path called with {req.path}")
    try:
        mgr.set_game_path(Path(req.path).expanduser())
    except DiscoveryError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (ConfigWriteError, StateWriteError) as e:
        mgr.last_error = str(e)
    return mgr.snapshot()


@router.delete("/path", response_model=AddonsResponse)
def api_clear_game_path(mgr: AddonManager = Depends(get_addon_manager)) -> AddonsResponse:
    logger.info("DELETE /path called")
    mgr.clear_game_path()
    return mgr.snapshot()


@router.post("/reload", response_model=AddonsResponse)
def api_reload(mgr: AddonManager = Depends(get_addon_manager)) -> AddonsResponse:
    logger.info("POST /reload called")
    try:
        mgr.reload()
    except GamePathNotSetError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except DiscoveryError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (ConfigWriteError, StateWriteError) as e:
        mgr.last_error = str(e)
    return mgr.snapshot()


# ----------------------------
# Activation
# ----------------------------

@router.post("/running", response_model=OperationResult)
def api_set_running(req: RunningStateRequest, mgr: AddonManager = Depends(get_addon_manager)) -> OperationResult:
    logger.info(f"POST /running called with running={req.running}")
    return _run_operation(mgr, "Set running state", lambda: mgr.set_running(req.running))


@router.post("/recreate", response_model=RecreateResult)
def api_recreate(mgr: AddonManager = Depends(get_addon_manager)) -> RecreateResult:
    logger.info("POST /recreate called")
    try:
        report = mgr.recreate_active()
    except GamePathNotSetError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return RecreateResult(
        status="ok" if not report.errors else "failed",
        recreated=report.recreated,
        errors=report.errors,
    )


@router.post("/{name}/toggle", response_model=OperationResult)
def api_toggle(name: str, mgr: AddonManager = Depends(get_addon_manager)) -> OperationResult:
    logger.info(f"POST /{name}/toggle called")
    return _run_operation(mgr, f"Toggle {name}", lambda: mgr.toggle(name))


@router.post("/{name}/move", response_model=OperationResult)
def api_move(name: str, req: MoveRequest, mgr: AddonManager = Depends(get_addon_manager)) -> OperationResult:
    logger.info(f"POST /{name}/move called with direction={req.direction}")
    return _run_operation(mgr, f"Move {name}", lambda: mgr.move(name, req.direction))


@router.get("/{name}/preview")
def api_preview(name: str, mgr: AddonManager = Depends(get_addon_manager)) -> FileResponse:
    path = mgr.preview_path(name)
    if path is None:
        raise HTTPException(status_code=404, detail=f"No preview image for {name}")
    return FileResponse(path, media_type="image/jpeg")
