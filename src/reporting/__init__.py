"""Dashboard reporting: Jira aggregations and the views built on them."""

from src.reporting.producers import BUG_AREA_LABELS, DashboardProducers, IssueSource
from src.reporting.views import DASHBOARD_VIEWS, build_dashboard_registry

__all__ = [
    "BUG_AREA_LABELS",
    "DashboardProducers",
    "IssueSource",
    "DASHBOARD_VIEWS",
    "build_dashboard_registry",
]
