"""
Dashboard Data API

Jira-backed endpoints consumed by the QA reporting dashboard:
- Manual vs automated test cases (current, monthly, cumulative)
- SAT triaging bug statistics per month
- Monthly triaging counts
- Bug areas for the current release
- Batched home-page payload

PERFORMANCE OPTIMIZATIONS:
- Every endpoint is wrapped in the response cache (X-Cache: HIT/MISS)
- The warming service keeps the same payloads hot in the background
"""

import logging
from datetime import date
from typing import Any, Awaitable, Callable, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from src.cache.config import CacheCategory
from src.cache.facade import CacheFacade
from src.cache.middleware import cache_response
from src.reporting.producers import DashboardProducers
from src.reporting.views import bug_areas_route_key, bug_stats_route_key, route_key, yearly_route_key

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["Dashboard Data"])


# =============================================================================
# PRODUCERS DEPENDENCY
# =============================================================================

_producers: Optional[DashboardProducers] = None


def set_producers(producers: Optional[DashboardProducers]):
    """Install the producers used by the routes (done at startup)."""
    global _producers
    _producers = producers


def get_producers() -> DashboardProducers:
    if _producers is None:
        raise HTTPException(status_code=503, detail="Dashboard data source not initialized")
    return _producers


async def _produce(label: str, producer: Callable[..., Awaitable[Any]], *args) -> Any:
    """Run a producer, translating failures into HTTP 500."""
    try:
        return await producer(*args)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"{label} error: {e}")
        raise HTTPException(status_code=500, detail=str(e))


# =============================================================================
# CACHE KEYS
# =============================================================================
# Shared with the dashboard views so warmed payloads land on these keys.

def _key(category: CacheCategory, identifier: str) -> Callable[[Request], str]:
    return lambda request: route_key(category, identifier)


def _bug_stats_key(request: Request) -> str:
    return bug_stats_route_key(date.today().year, request.query_params.get("month"))


def _yearly_key(category: CacheCategory) -> Callable[[Request], str]:
    return lambda request: yearly_route_key(category, date.today().year)


def _bug_areas_key(request: Request) -> str:
    return bug_areas_route_key(get_producers().bug_area_version)


def _short(cache: CacheFacade):
    return cache.ttl.SHORT


def _medium(cache: CacheFacade):
    return cache.ttl.MEDIUM


def _long(cache: CacheFacade):
    return cache.ttl.LONG


def _extended(cache: CacheFacade):
    return cache.ttl.EXTENDED


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("/dashboard-batch")
@cache_response(ttl=_short, key_builder=_key(CacheCategory.DASHBOARD_BATCH, "all"))
async def get_dashboard_data(
    request: Request,
    response: Response,
    producers: DashboardProducers = Depends(get_producers),
):
    """
    All home-page data in one request.

    Bug areas are best-effort: if that query fails the batch still returns
    with empty bug areas.
    """
    return await _produce("Batch dashboard data", producers.dashboard_batch)


@router.get("/jira-data")
@cache_response(ttl=_medium, key_builder=_key(CacheCategory.TEST_CASES, "current"))
async def get_test_case_data(
    request: Request,
    response: Response,
    producers: DashboardProducers = Depends(get_producers),
):
    """Current manual vs automated test case counts."""
    return await _produce("Test case data", producers.test_cases)


@router.get("/jira-monthly-data")
@cache_response(ttl=_medium, key_builder=_key(CacheCategory.MONTHLY_DATA, "test_cases"))
async def get_monthly_test_case_data(
    request: Request,
    response: Response,
    producers: DashboardProducers = Depends(get_producers),
):
    return await _produce("Monthly test case data", producers.monthly_test_cases)


@router.get("/jira-all-data")
@cache_response(ttl=_medium, key_builder=_key(CacheCategory.TEST_CASES, "all"))
async def get_all_test_case_data(
    request: Request,
    response: Response,
    producers: DashboardProducers = Depends(get_producers),
):
    return await _produce("All test case data", producers.all_test_cases)


@router.get("/jira-cumulative-data")
@cache_response(ttl=_medium, key_builder=_key(CacheCategory.CUMULATIVE_DATA, "all"))
async def get_cumulative_test_case_data(
    request: Request,
    response: Response,
    producers: DashboardProducers = Depends(get_producers),
):
    return await _produce("Cumulative test case data", producers.cumulative_test_cases)


@router.get("/jira-cumulative-monthly-data")
@cache_response(ttl=_extended, key_builder=_yearly_key(CacheCategory.CUMULATIVE_DATA))
async def get_cumulative_monthly_data(
    request: Request,
    response: Response,
    producers: DashboardProducers = Depends(get_producers),
):
    """Cumulative test case totals at the end of each month (historical, long-lived)."""
    return await _produce("Cumulative monthly data", producers.cumulative_monthly)


@router.get("/jira-bug-stats")
@cache_response(ttl=_short, key_builder=_bug_stats_key)
async def get_bug_stats(
    request: Request,
    response: Response,
    month: Optional[str] = None,
    producers: DashboardProducers = Depends(get_producers),
):
    """
    SAT triaging statistics for a month of the current year.

    Query params:
        month: 1-12 (defaults to the current month)
    """
    selected = None
    if month is not None:
        try:
            selected = int(month)
        except ValueError:
            raise HTTPException(status_code=400, detail="Month must be between 1 and 12")
        if not 1 <= selected <= 12:
            raise HTTPException(status_code=400, detail="Month must be between 1 and 12")

    return await _produce("Bug stats", producers.bug_stats, selected)


@router.get("/jira-monthly-triaging")
@cache_response(ttl=_medium, key_builder=_yearly_key(CacheCategory.TRIAGING_DATA))
async def get_monthly_triaging_data(
    request: Request,
    response: Response,
    producers: DashboardProducers = Depends(get_producers),
):
    return await _produce("Monthly triaging", producers.monthly_triaging)


@router.get("/jira-bug-areas")
@cache_response(ttl=_long, key_builder=_bug_areas_key)
async def get_bug_areas_data(
    request: Request,
    response: Response,
    producers: DashboardProducers = Depends(get_producers),
):
    """Bug counts per area label (relatively stable, long TTL)."""
    return await _produce("Bug areas data", producers.bug_areas)
