"""
Cache Warming API

Monitoring and control of the background warming service:
- Statistics and view configuration
- Last run results
- Manual trigger
- Direct reads of warmed data (never triggers a producer)
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from src.cache.registry import UnknownViewError
from src.cache.warming import CacheWarmer, get_cache_warmer


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/cache-warming", tags=["Cache Warming"])


def require_warmer() -> CacheWarmer:
    warmer = get_cache_warmer()
    if warmer is None:
        raise HTTPException(status_code=503, detail="Cache warming service not initialized")
    return warmer


@router.get("/stats")
async def get_warming_stats(warmer: CacheWarmer = Depends(require_warmer)):
    """Warming statistics plus the configured views."""
    return {
        "success": True,
        "stats": warmer.get_stats(),
        "views": warmer.registry.to_dict(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/results")
async def get_warming_results(warmer: CacheWarmer = Depends(require_warmer)):
    """Results of the last warming run (kept for a few minutes)."""
    results = await warmer.get_last_run()
    if results is None:
        return JSONResponse(
            status_code=404,
            content={"success": False, "message": "No warming results available yet"},
        )
    return {"success": True, "results": results}


@router.post("/trigger", status_code=202)
async def trigger_warming(warmer: CacheWarmer = Depends(require_warmer)):
    """Start a warming cycle in the background."""
    started = await warmer.trigger()
    if not started:
        return JSONResponse(
            status_code=409,
            content={"success": False, "message": "Cache warming already in progress"},
        )
    return {"success": True, "message": "Cache warming triggered"}


@router.get("/data/{view_name}")
async def get_warmed_view(view_name: str, warmer: CacheWarmer = Depends(require_warmer)):
    """
    Serve a view straight from the warmed cache.

    Returns 202 while nothing has been warmed yet; the client should retry.
    """
    try:
        warmed = await warmer.get_warmed_data(view_name)
    except UnknownViewError as e:
        raise HTTPException(status_code=404, detail=str(e))

    if not warmed.was_cached:
        return JSONResponse(
            status_code=202,
            content={
                "success": False,
                "message": "Data is still being prepared, please retry shortly",
                **warmed.to_dict(),
            },
        )
    return {"success": True, **warmed.to_dict()}
