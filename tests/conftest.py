"""
Pytest Configuration and Shared Fixtures

Provides common fixtures and configuration for all test modules.
"""

import pytest
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from src.cache.config import CacheConfig
from src.cache.facade import CacheFacade
from src.cache.registry import ViewDescriptor, ViewPriority
from src.cache.store import KeyValueStore, MemoryStore
from src.jira.client import JiraError


# ============================================================================
# Cache Fixtures
# ============================================================================

@pytest.fixture
def cache_config() -> CacheConfig:
    """Fast, Redis-free configuration for unit tests."""
    return CacheConfig(
        enabled=True,
        redis_enabled=False,
        tier_pause_seconds=0.0,
        medium_delay_seconds=0.0,
        producer_timeout_seconds=5.0,
        health_check_interval_seconds=0,
        warming_interval_seconds=60,
        view_priorities={},
    )


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def memory_facade(memory_store, cache_config) -> CacheFacade:
    """Cache facade over a plain in-memory store."""
    return CacheFacade(memory_store, cache_config)


class FailingStore(KeyValueStore):
    """Store whose every operation raises, like a Redis that went away."""

    name = "failing"

    def __init__(self):
        self.calls = 0

    async def get(self, key):
        self.calls += 1
        raise ConnectionError("store unreachable")

    async def set(self, key, value, ttl=None):
        self.calls += 1
        raise ConnectionError("store unreachable")

    async def delete(self, key):
        self.calls += 1
        raise ConnectionError("store unreachable")

    async def clear(self):
        self.calls += 1
        raise ConnectionError("store unreachable")


@pytest.fixture
def failing_store() -> FailingStore:
    return FailingStore()


def make_view(
    name: str,
    producer,
    priority: ViewPriority = ViewPriority.CRITICAL,
    ttl: timedelta = timedelta(minutes=2),
    cache_key: Optional[str] = None,
    route_key: Optional[str] = None,
) -> ViewDescriptor:
    """Build a view descriptor with sensible test defaults."""
    return ViewDescriptor(
        name=name,
        priority=priority,
        cache_key=cache_key or f"{name}_warmed",
        ttl=ttl,
        producer=producer,
        route_key=(lambda: route_key) if route_key else None,
    )


# ============================================================================
# Jira Fixtures
# ============================================================================

class FakeIssueSource:
    """
    In-memory stand-in for the Jira client.

    Rules are matched by substring against the JQL; the first match wins.

    Args:
        counts: {jql substring: total}
        issues: {jql substring: [issue, ...]}
        failing: JQL substrings that raise JiraError
    """

    def __init__(
        self,
        counts: Optional[Dict[str, int]] = None,
        issues: Optional[Dict[str, List[Dict[str, Any]]]] = None,
        failing: Optional[List[str]] = None,
    ):
        self.counts = counts or {}
        self.issues = issues or {}
        self.failing = failing or []
        self.queries: List[str] = []

    def _check(self, jql: str):
        self.queries.append(jql)
        for fragment in self.failing:
            if fragment in jql:
                raise JiraError("Error in the JQL Query", status_code=400)

    def _issues_for(self, jql: str) -> List[Dict[str, Any]]:
        for fragment, issues in self.issues.items():
            if fragment in jql:
                return issues
        return []

    async def count(self, jql: str) -> int:
        self._check(jql)
        for fragment, total in self.counts.items():
            if fragment in jql:
                return total
        return 0

    async def search(self, jql, fields=None, max_results=50, start_at=0):
        self._check(jql)
        issues = self._issues_for(jql)
        return {
            "total": len(issues),
            "startAt": start_at,
            "maxResults": max_results,
            "issues": issues[start_at:start_at + max_results],
        }

    async def search_all(self, jql, fields=None, page_size=1000):
        self._check(jql)
        issues = self._issues_for(jql)
        return {"total": len(issues), "issues": list(issues)}


def issue(key: str, created: Optional[str] = None, labels: Optional[List[str]] = None) -> Dict[str, Any]:
    """Minimal Jira issue."""
    fields: Dict[str, Any] = {}
    if created is not None:
        fields["created"] = created
    if labels is not None:
        fields["labels"] = labels
    return {"key": key, "fields": fields}


@pytest.fixture
def fixed_today() -> date:
    return date(2025, 3, 15)
