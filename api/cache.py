"""
Cache Management API

Provides endpoints for cache monitoring and manual operations.

Endpoints:
- Status for monitoring (backend, TTL classes, categories)
- Full and per-category invalidation
- Single-key inspection and deletion for debugging

Operations are idempotent and report failures as ``success: false`` rather
than raising.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from src.cache.config import CacheCategory
from src.cache.facade import CacheFacade, get_cache_facade


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/cache", tags=["Cache Management"])


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# RESPONSE MODELS
# =============================================================================

class CacheStatusResponse(BaseModel):
    """Cache backend status."""
    is_redis_available: bool
    active_backend: str
    cache_ttl: Dict[str, float] = Field(..., description="TTL classes in seconds")
    cache_keys: Dict[str, str] = Field(..., description="Registered category prefixes")
    tracked_keys: Dict[str, int] = {}
    store_errors: int = 0
    redis: Optional[Dict[str, Any]] = Field(None, description="Redis hit rate, latency and traffic while Redis is active")
    timestamp: datetime = Field(default_factory=_utcnow)


class InvalidationResponse(BaseModel):
    """Cache invalidation response."""
    success: bool
    message: str
    keys_invalidated: int = 0
    duration_ms: float
    errors: List[str] = []
    timestamp: datetime = Field(default_factory=_utcnow)


class CacheKeyResponse(BaseModel):
    """Single cache key operation response."""
    success: bool
    message: str
    key: str
    value: Optional[Any] = None
    timestamp: datetime = Field(default_factory=_utcnow)


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("/status", response_model=CacheStatusResponse)
async def get_cache_status(cache: CacheFacade = Depends(get_cache_facade)):
    """
    Check cache infrastructure status.

    Use this endpoint for monitoring: reports whether Redis is the active
    backend or the in-memory fallback is serving.
    """
    stats = cache.get_stats()
    return CacheStatusResponse(
        is_redis_available=stats["backend_available"],
        active_backend=stats["active_backend"],
        cache_ttl=stats["ttl_classes"],
        cache_keys=stats["known_categories"],
        tracked_keys=stats["tracked_keys"],
        store_errors=stats.get("store_errors", 0),
        redis=stats.get("redis"),
    )


@router.post("/clear", response_model=InvalidationResponse)
async def clear_all_cache(cache: CacheFacade = Depends(get_cache_facade)):
    """
    Invalidate ALL cache data.

    CAUTION: Requests are served from Jira until the warming service
    repopulates the cache.
    """
    start = time.perf_counter()
    success = await cache.clear()
    elapsed = (time.perf_counter() - start) * 1000

    if not success:
        logger.error("Failed to clear cache")

    return InvalidationResponse(
        success=success,
        message="All cache cleared successfully" if success else "Failed to clear cache",
        duration_ms=elapsed,
        errors=[] if success else ["Cache backend rejected clear"],
    )


@router.post("/clear/{category}", response_model=InvalidationResponse)
async def clear_category_cache(category: str, cache: CacheFacade = Depends(get_cache_facade)):
    """
    Invalidate every key of one category.

    ``category`` is a category name (e.g. ``bug_areas``) or prefix
    (e.g. ``jira:bug_areas``).
    """
    start = time.perf_counter()

    resolved = CacheCategory.resolve(category)
    if resolved is None:
        return InvalidationResponse(
            success=False,
            message=f"Unknown cache category: {category}",
            duration_ms=(time.perf_counter() - start) * 1000,
            errors=[f"Known categories: {', '.join(c.name.lower() for c in CacheCategory)}"],
        )

    count = await cache.invalidate_category(resolved)
    elapsed = (time.perf_counter() - start) * 1000

    return InvalidationResponse(
        success=True,
        message=f"{resolved.name.lower()} cache cleared successfully",
        keys_invalidated=count,
        duration_ms=elapsed,
    )


@router.delete("/key/{key:path}", response_model=CacheKeyResponse)
async def clear_cache_key(key: str, cache: CacheFacade = Depends(get_cache_facade)):
    """Delete a single cache key."""
    deleted = await cache.delete(key)
    return CacheKeyResponse(
        success=deleted,
        message=f"Cache key '{key}' cleared successfully" if deleted else f"Cache key '{key}' not found",
        key=key,
    )


@router.get("/key/{key:path}", response_model=CacheKeyResponse)
async def get_cache_value(key: str, cache: CacheFacade = Depends(get_cache_facade)):
    """Inspect a single cache key."""
    value = await cache.get(key)
    if value is None:
        missing = CacheKeyResponse(
            success=False,
            message=f"Cache key '{key}' not found",
            key=key,
        )
        return JSONResponse(status_code=404, content=missing.model_dump(mode="json"))

    return CacheKeyResponse(
        success=True,
        message="Cache key found",
        key=key,
        value=value,
    )
