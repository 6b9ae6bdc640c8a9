"""
QA Dashboard Caching Layer

Keeps the reporting dashboard fast despite expensive Jira aggregations:
- Layer 1: Response cache (cache-aside around each dashboard route)
- Layer 2: Cache warming (producers re-run on a timer, tiered by priority)
- Layer 3: Key-value store (Redis, with in-memory fallback)

Key components:
- CacheFacade: Key construction, TTL classes, invalidation
- ResponseCache / cache_response: HIT/MISS wrapper for request handlers
- ViewRegistry: Static table of warmable views
- CacheWarmer: Tiered warming scheduler with statistics

Usage:
    cache = await get_cache_facade()
    key = cache.generate_key(CacheCategory.BUG_AREAS, "v12.8")

    warmer = CacheWarmer(registry, cache)
    await warmer.start()
"""

from src.cache.config import (
    CacheCategory,
    CacheConfig,
    CacheTTL,
    WARMING_RESULTS_KEY,
    get_cache_config,
)
from src.cache.store import KeyValueStore, MemoryStore, FallbackStore
from src.cache.redis_cache import RedisStore
from src.cache.facade import (
    CacheFacade,
    create_cache_facade,
    get_cache_facade,
    set_cache_facade,
    close_cache_facade,
)
from src.cache.middleware import CacheStatus, ResponseCache, cache_response
from src.cache.registry import (
    ProducerError,
    UnknownViewError,
    ViewDescriptor,
    ViewPriority,
    ViewRegistry,
    ViewResult,
)
from src.cache.warming import CacheWarmer, get_cache_warmer, set_cache_warmer

__all__ = [
    # Config
    "CacheCategory",
    "CacheConfig",
    "CacheTTL",
    "WARMING_RESULTS_KEY",
    "get_cache_config",
    # Stores
    "KeyValueStore",
    "MemoryStore",
    "FallbackStore",
    "RedisStore",
    # Facade
    "CacheFacade",
    "create_cache_facade",
    "get_cache_facade",
    "set_cache_facade",
    "close_cache_facade",
    # Response cache
    "CacheStatus",
    "ResponseCache",
    "cache_response",
    # Views
    "ProducerError",
    "UnknownViewError",
    "ViewDescriptor",
    "ViewPriority",
    "ViewRegistry",
    "ViewResult",
    # Warming
    "CacheWarmer",
    "get_cache_warmer",
    "set_cache_warmer",
]
