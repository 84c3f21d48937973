from __future__ import annotations

import logging
from typing import Dict

from fastapi import APIRouter, Depends, HTTPException

from ...config import config
from ..state_store import get_state_store
from .cache import WorkshopMetadataCache
from .client import SteamWorkshopClient
from .models import CacheStats, CatalogEntry, CleanupResponse, TitlesRequest

logger = logging.getLogger("addonmgr.workshop.router")

router = APIRouter(prefix="/api/workshop", tags=["workshop"])

# ----------------------------
# Singleton (created on first use)
# ----------------------------

_workshop_cache: WorkshopMetadataCache | None = None


def get_workshop_cache() -> WorkshopMetadataCache:
    global _workshop_cache
    if _workshop_cache is None:
        client = SteamWorkshopClient(config.steam_api_url, timeout=config.steam_api_timeout)
        _workshop_cache = WorkshopMetadataCache(get_state_store(), client)
    return _workshop_cache


# ----------------------------
# Titles
# ----------------------------

@router.post("/titles", response_model=Dict[str, CatalogEntry])
def get_titles(
    req: TitlesRequest,
    cache: WorkshopMetadataCache = Depends(get_workshop_cache),
) -> Dict[str, CatalogEntry]:
    logger.info(f"POST /titles called for {len(req.filenames)} filename(s)")
    return cache.get_titles_batch(req.filenames)


@router.post("/refresh", response_model=Dict[str, CatalogEntry])
def refresh_titles(
    req: TitlesRequest,
    cache: WorkshopMetadataCache = Depends(get_workshop_cache),
) -> Dict[str, CatalogEntry]:
    logger.info(f"POST /refresh called for {len(req.filenames)} filename(s)")
    return cache.refresh_titles(req.filenames)


@router.get("/items/{workshop_id}", response_model=CatalogEntry)
def get_item(workshop_id: str, cache: WorkshopMetadataCache = Depends(get_workshop_cache)) -> CatalogEntry:
    if not workshop_id.isdigit():
        raise HTTPException(status_code=400, detail=f"Not a workshop id: {workshop_id}")
    info = cache.get_info_by_id(workshop_id)
    if info is None:
        raise HTTPException(status_code=404, detail=f"Workshop item not found: {workshop_id}")
    return info


# ----------------------------
# Cache maintenance
# ----------------------------

@router.get("/cache", response_model=CacheStats)
def get_cache_stats(cache: WorkshopMetadataCache = Depends(get_workshop_cache)) -> CacheStats:
    return cache.stats()


@router.post("/cache/cleanup", response_model=CleanupResponse)
def cleanup_cache(cache: WorkshopMetadataCache = Depends(get_workshop_cache)) -> CleanupResponse:
    logger.info("POST /cache/cleanup called")
    return CleanupResponse(evicted=cache.cleanup_expired())


@router.delete("/cache")
def clear_cache(cache: WorkshopMetadataCache = Depends(get_workshop_cache)) -> dict:
    logger.info("DELETE /cache called")
    cache.clear()
    return {"cleared": True}
