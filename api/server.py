"""
QA Dashboard API Server

FastAPI application serving the reporting dashboard:
1. Probes Redis on startup (falls back to an in-memory cache)
2. Builds the Jira producers and the warmable view registry
3. Starts the cache warming service (one run now, then every interval)
4. Serves dashboard data, cache management and warming monitoring routes
"""

import logging
import sys
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api import cache as cache_api
from api import dashboard as dashboard_api
from api import warming as warming_api
from src import __version__
from src.cache.config import get_cache_config
from src.cache.facade import close_cache_facade, get_cache_facade
from src.cache.warming import CacheWarmer, get_cache_warmer, set_cache_warmer
from src.jira import JiraClient
from src.reporting import DashboardProducers, build_dashboard_registry
from src.utils.config import get_settings

settings = get_settings()

# Configure logging to stdout
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stdout,
    force=True,
)
logger = logging.getLogger(__name__)

# Quiet down chatty loggers
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

# Create FastAPI app
app = FastAPI(
    title="QA Dashboard Backend",
    description="Jira reporting API with proactive cache warming",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Cache", "X-Cache-Key"],
)

app.include_router(dashboard_api.router)
app.include_router(cache_api.router)
app.include_router(warming_api.router)

_jira_client: Optional[JiraClient] = None


# ============================================================================
# STARTUP / SHUTDOWN
# ============================================================================

@app.on_event("startup")
async def startup_event():
    """Initialize cache, producers and the warming service."""
    global _jira_client

    config = get_cache_config()

    logger.info("Initializing cache...")
    cache = await get_cache_facade()
    logger.info(f"Cache backend: {cache.active_backend}")

    _jira_client = JiraClient(
        base_url=settings.JIRA_BASE_URL,
        username=settings.JIRA_USERNAME or "",
        password=settings.JIRA_PASSWORD or "",
        api_version=settings.JIRA_API_VERSION,
        verify_ssl=settings.JIRA_VERIFY_SSL,
        timeout=settings.API_TIMEOUT,
    )
    producers = DashboardProducers(
        _jira_client,
        project=settings.JIRA_PROJECT,
        triagers=settings.triagers,
        reporter=settings.JIRA_AUTOMATION_REPORTER,
        bug_areas_project=settings.JIRA_BUG_AREAS_PROJECT,
        bug_area_version=settings.BUG_AREAS_VERSION,
    )
    dashboard_api.set_producers(producers)

    warmer = CacheWarmer(build_dashboard_registry(producers, config), cache, config)
    set_cache_warmer(warmer)

    if config.warming_enabled:
        await warmer.start()
    else:
        logger.warning("Cache warming disabled (CACHE_WARMING_ENABLED=false)")


@app.on_event("shutdown")
async def shutdown_event():
    """Stop warming, flush pending cache writes and close clients."""
    global _jira_client

    warmer = get_cache_warmer()
    if warmer is not None:
        await warmer.stop()
        await warmer.wait_idle()
        set_cache_warmer(None)

    for route in dashboard_api.router.routes:
        response_cache = getattr(getattr(route, "endpoint", None), "response_cache", None)
        if response_cache is not None:
            await response_cache.drain()

    dashboard_api.set_producers(None)

    if _jira_client is not None:
        await _jira_client.close()
        _jira_client = None

    await close_cache_facade()
    logger.info("Shutdown complete")


@app.get("/health")
async def health():
    """Liveness check."""
    warmer = get_cache_warmer()
    return {
        "status": "healthy",
        "version": __version__,
        "warming": warmer.is_started if warmer else False,
    }


# ============================================================================
# RUN SERVER
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api.server:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.ENVIRONMENT == "development",
    )
