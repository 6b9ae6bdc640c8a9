"""
Cache Configuration

Centralized configuration for the caching layer.

Every value can be overridden through environment variables so that the
warming cadence, TTL classes and backing store can be tuned per deployment
without code changes.
"""

import os
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from functools import lru_cache
from typing import Dict, Optional, Tuple


def _env_seconds(name: str, default: float) -> float:
    """Read a duration in seconds from the environment."""
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class CacheCategory(str, Enum):
    """
    Registered cache key prefixes.

    Keys are built as ``{prefix}:{identifier}``. The member name (lower-cased)
    is the category name used by the management API.
    """

    TEST_CASES = "jira:test_cases"
    BUG_STATS = "jira:bug_stats"
    BUG_AREAS = "jira:bug_areas"
    MONTHLY_DATA = "jira:monthly_data"
    CUMULATIVE_DATA = "jira:cumulative_data"
    TRIAGING_DATA = "jira:triaging_data"
    DASHBOARD_BATCH = "dashboard:batch"

    @classmethod
    def resolve(cls, category: str) -> Optional["CacheCategory"]:
        """Find a category by member, name or prefix. Returns None if unknown."""
        if isinstance(category, cls):
            return category
        for member in cls:
            if category in (member.value, member.name, member.name.lower()):
                return member
        return None


# Identifiers the dashboard has historically written under the category
# prefixes. Used by best-effort prefix invalidation.
KNOWN_KEY_SUFFIXES: Tuple[str, ...] = (
    "current",
    "test_cases",
    "all",
    "batch",
    "v12.8",
    "2025_monthly",
)

# Fixed key for the last warming run snapshot
WARMING_RESULTS_KEY = "cache_warming_results"


@dataclass(frozen=True)
class CacheTTL:
    """
    Cache TTL classes.

    The classification is meaningful even when the durations coincide:
    bug statistics change often (SHORT), historical monthly series rarely
    (EXTENDED). Each class is independently configurable.
    """

    SHORT: timedelta = field(default_factory=lambda: timedelta(
        seconds=_env_seconds("CACHE_TTL_SHORT", 120)
    ))
    MEDIUM: timedelta = field(default_factory=lambda: timedelta(
        seconds=_env_seconds("CACHE_TTL_MEDIUM", 120)
    ))
    LONG: timedelta = field(default_factory=lambda: timedelta(
        seconds=_env_seconds("CACHE_TTL_LONG", 120)
    ))
    EXTENDED: timedelta = field(default_factory=lambda: timedelta(
        seconds=_env_seconds("CACHE_TTL_EXTENDED", 120)
    ))

    def for_class(self, name: str) -> timedelta:
        """Get TTL for a class name (short, medium, long, extended)."""
        mapping = {
            "short": self.SHORT,
            "medium": self.MEDIUM,
            "long": self.LONG,
            "extended": self.EXTENDED,
        }
        return mapping.get(name.lower(), self.MEDIUM)

    def as_seconds(self) -> Dict[str, float]:
        return {
            "short": self.SHORT.total_seconds(),
            "medium": self.MEDIUM.total_seconds(),
            "long": self.LONG.total_seconds(),
            "extended": self.EXTENDED.total_seconds(),
        }


def _default_redis_url() -> str:
    url = os.getenv("REDIS_URL")
    if url:
        return url
    host = os.getenv("REDIS_HOST", "localhost")
    port = os.getenv("REDIS_PORT", "6379")
    db = os.getenv("REDIS_DB", "0")
    password = os.getenv("REDIS_PASSWORD")
    auth = f":{password}@" if password else ""
    return f"redis://{auth}{host}:{port}/{db}"


def _parse_priorities(raw: str) -> Dict[str, str]:
    """Parse ``view:priority`` pairs, e.g. ``bug-areas:critical,triaging-data:medium``."""
    overrides = {}
    for pair in raw.split(","):
        if ":" not in pair:
            continue
        name, priority = pair.split(":", 1)
        if name.strip() and priority.strip():
            overrides[name.strip()] = priority.strip().lower()
    return overrides


@dataclass
class CacheConfig:
    """
    Main cache configuration.

    Settings can be overridden via environment variables:
    - CACHE_ENABLED: Enable/disable caching globally
    - REDIS_URL (or REDIS_HOST/REDIS_PORT/REDIS_DB/REDIS_PASSWORD)
    - CACHE_TTL_SHORT/MEDIUM/LONG/EXTENDED: TTL classes in seconds
    - CACHE_WARMING_*: warming cadence and throttling
    - CACHE_WARMING_PRIORITIES: per-view priority overrides
    """

    # Global cache toggle
    enabled: bool = field(default_factory=lambda: _env_bool("CACHE_ENABLED", "true"))

    # Backing store
    redis_url: str = field(default_factory=_default_redis_url)
    redis_enabled: bool = field(default_factory=lambda: _env_bool("REDIS_ENABLED", "true"))
    redis_namespace: str = field(default_factory=lambda: os.getenv(
        "CACHE_NAMESPACE",
        "qa-dashboard"
    ))
    redis_socket_timeout: float = field(default_factory=lambda: _env_seconds(
        "REDIS_SOCKET_TIMEOUT", 5.0
    ))
    redis_connect_timeout: float = field(default_factory=lambda: _env_seconds(
        "REDIS_CONNECT_TIMEOUT", 2.0
    ))
    redis_max_connections: int = 20

    # Compression of large values written to Redis
    compression_enabled: bool = field(default_factory=lambda: _env_bool(
        "CACHE_COMPRESSION_ENABLED", "true"
    ))
    compression_threshold: int = 1024  # bytes

    # TTL classes
    ttl: CacheTTL = field(default_factory=CacheTTL)

    # Warming
    warming_enabled: bool = field(default_factory=lambda: _env_bool(
        "CACHE_WARMING_ENABLED", "true"
    ))
    warming_interval_seconds: float = field(default_factory=lambda: _env_seconds(
        "CACHE_WARMING_INTERVAL", 60
    ))
    tier_pause_seconds: float = field(default_factory=lambda: _env_seconds(
        "CACHE_WARMING_TIER_PAUSE", 0.5
    ))
    medium_delay_seconds: float = field(default_factory=lambda: _env_seconds(
        "CACHE_WARMING_MEDIUM_DELAY", 0.2
    ))
    producer_timeout_seconds: float = field(default_factory=lambda: _env_seconds(
        "CACHE_PRODUCER_TIMEOUT", 120
    ))
    warming_results_ttl: timedelta = field(default_factory=lambda: timedelta(
        seconds=_env_seconds("CACHE_WARMING_RESULTS_TTL", 300)
    ))
    average_window: int = 20
    view_priorities: Dict[str, str] = field(default_factory=lambda: _parse_priorities(
        os.getenv("CACHE_WARMING_PRIORITIES", "")
    ))

    # Backend re-probe cadence (0 disables)
    health_check_interval_seconds: float = field(default_factory=lambda: _env_seconds(
        "CACHE_HEALTH_CHECK_INTERVAL", 30
    ))

    # Best-effort invalidation
    known_key_suffixes: Tuple[str, ...] = KNOWN_KEY_SUFFIXES


@lru_cache(maxsize=1)
def get_cache_config() -> CacheConfig:
    """Get singleton cache configuration."""
    return CacheConfig()
