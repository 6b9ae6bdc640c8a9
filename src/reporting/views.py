"""
Dashboard Views

The warmable views of the reporting dashboard and their defaults.

Each view is stored twice: under its flat ``*_warmed`` key (read by the
warming monitoring API) and under the key its dashboard route caches
responses under, so a warmed view is a cache hit for the route as well.
"""

import logging
from datetime import date
from typing import Callable, Dict, List, Optional

from src.cache.config import CacheCategory, CacheConfig, get_cache_config
from src.cache.registry import ViewDescriptor, ViewPriority, ViewRegistry
from src.reporting.producers import DashboardProducers

logger = logging.getLogger(__name__)


# =============================================================================
# ROUTE KEYS
# =============================================================================

def route_key(category: CacheCategory, identifier: str) -> str:
    """Key a dashboard route caches its response under."""
    return f"{category.value}:{identifier}"


def yearly_route_key(category: CacheCategory, year: int) -> str:
    return route_key(category, f"{year}_monthly")


def bug_stats_route_key(year: int, month: Optional[str] = None) -> str:
    return route_key(CacheCategory.BUG_STATS, f"{year}-{month or 'current'}")


def bug_areas_route_key(version: str) -> str:
    return route_key(CacheCategory.BUG_AREAS, f"v{version}")


# view name -> (today, bug area version) -> route key
ROUTE_KEYS: Dict[str, Callable[[date, str], str]] = {
    "dashboard-batch": lambda today, version: route_key(CacheCategory.DASHBOARD_BATCH, "all"),
    "test-cases": lambda today, version: route_key(CacheCategory.TEST_CASES, "current"),
    "monthly-cumulative-data": lambda today, version: yearly_route_key(CacheCategory.CUMULATIVE_DATA, today.year),
    "monthly-test-cases": lambda today, version: route_key(CacheCategory.MONTHLY_DATA, "test_cases"),
    "bug-stats": lambda today, version: bug_stats_route_key(today.year),
    "bug-areas": lambda today, version: bug_areas_route_key(version),
    "triaging-data": lambda today, version: yearly_route_key(CacheCategory.TRIAGING_DATA, today.year),
    "all-test-case-data": lambda today, version: route_key(CacheCategory.TEST_CASES, "all"),
    "cumulative-test-case-data": lambda today, version: route_key(CacheCategory.CUMULATIVE_DATA, "all"),
}


# =============================================================================
# VIEW TABLE
# =============================================================================

# (name, default priority, cache key, TTL class, producer attribute, description)
DASHBOARD_VIEWS = [
    ("dashboard-batch", ViewPriority.CRITICAL, "dashboard_batch_warmed", "short",
     "dashboard_batch", "Home page batch payload"),
    ("test-cases", ViewPriority.CRITICAL, "jira_test_cases_warmed", "medium",
     "test_cases", "Manual vs automated test cases"),
    ("monthly-cumulative-data", ViewPriority.HIGH, "jira_monthly_cumulative_warmed", "extended",
     "cumulative_monthly", "Cumulative test cases per month"),
    ("monthly-test-cases", ViewPriority.HIGH, "jira_monthly_test_cases_warmed", "medium",
     "monthly_test_cases", "Monthly manual/automated totals"),
    ("bug-stats", ViewPriority.CRITICAL, "jira_bug_stats_warmed", "short",
     "bug_stats", "SAT triaging stats for the current month"),
    ("bug-areas", ViewPriority.HIGH, "jira_bug_areas_warmed", "long",
     "bug_areas", "Bug counts per area label"),
    ("triaging-data", ViewPriority.HIGH, "jira_triaging_warmed", "medium",
     "monthly_triaging", "Triaged bugs per month"),
    ("all-test-case-data", ViewPriority.MEDIUM, "jira_all_test_cases_warmed", "medium",
     "all_test_cases", "All/manual/automated test cases"),
    ("cumulative-test-case-data", ViewPriority.MEDIUM, "jira_cumulative_test_cases_warmed", "medium",
     "cumulative_test_cases", "Cumulative test case totals"),
]


def _resolve_priority(name: str, default: ViewPriority, config: CacheConfig) -> ViewPriority:
    override = config.view_priorities.get(name)
    if not override:
        return default
    try:
        return ViewPriority(override)
    except ValueError:
        logger.warning(f"Ignoring invalid priority '{override}' for view {name}")
        return default


def _route_key_resolver(
    name: str,
    producers: DashboardProducers,
    today: Callable[[], date],
) -> Optional[Callable[[], str]]:
    build = ROUTE_KEYS.get(name)
    if build is None:
        return None
    return lambda: build(today(), producers.bug_area_version)


def build_dashboard_views(
    producers: DashboardProducers,
    config: Optional[CacheConfig] = None,
    today: Callable[[], date] = date.today,
) -> List[ViewDescriptor]:
    """
    Args:
        producers: Producers the views are bound to
        config: Cache config (TTL classes, priority overrides)
        today: Clock for the year in route keys; must match the routes' clock
    """
    config = config or get_cache_config()
    return [
        ViewDescriptor(
            name=name,
            priority=_resolve_priority(name, priority, config),
            cache_key=cache_key,
            ttl=config.ttl.for_class(ttl_class),
            producer=getattr(producers, attr),
            description=description,
            route_key=_route_key_resolver(name, producers, today),
        )
        for name, priority, cache_key, ttl_class, attr, description in DASHBOARD_VIEWS
    ]


def build_dashboard_registry(
    producers: DashboardProducers,
    config: Optional[CacheConfig] = None,
    today: Callable[[], date] = date.today,
) -> ViewRegistry:
    """Registry of the dashboard views, with priority overrides applied."""
    return ViewRegistry(build_dashboard_views(producers, config, today))
