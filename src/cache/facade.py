"""
Cache Facade

Typed helpers over the key-value store used by the dashboard routes, the
response cache and the warming scheduler:
- Key construction from registered category prefixes
- TTL classes
- get/set/delete with hit/miss logging
- Best-effort prefix invalidation and exact per-category invalidation
- Backend statistics

Usage:
    cache = await get_cache_facade()
    key = cache.generate_key(CacheCategory.BUG_STATS, "2025-3")
    await cache.set(key, payload, cache.ttl.SHORT)
"""

import asyncio
import logging
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional, Set, Union

from src.cache.config import CacheCategory, CacheConfig, CacheTTL, get_cache_config
from src.cache.redis_cache import RedisStore
from src.cache.store import FallbackStore, KeyValueStore, MemoryStore


logger = logging.getLogger(__name__)

CategoryLike = Union[CacheCategory, str]


class CacheFacade:
    """
    Shared entry point to the cache store.

    The facade serializes nothing itself; single-key atomicity is whatever the
    backing store provides.
    """

    def __init__(
        self,
        store: KeyValueStore,
        config: Optional[CacheConfig] = None,
        known_suffixes: Optional[Iterable[str]] = None,
    ):
        self.config = config or get_cache_config()
        self._store = store
        self._known_suffixes = tuple(
            known_suffixes if known_suffixes is not None
            else self.config.known_key_suffixes
        )
        # category prefix -> keys written through this facade
        self._key_registry: Dict[str, Set[str]] = {c.value: set() for c in CacheCategory}

    @property
    def store(self) -> KeyValueStore:
        return self._store

    @property
    def ttl(self) -> CacheTTL:
        return self.config.ttl

    @property
    def backend_available(self) -> bool:
        """True when the networked backend is the active store."""
        if isinstance(self._store, FallbackStore):
            return self._store.is_redis_available
        return isinstance(self._store, RedisStore)

    @property
    def active_backend(self) -> str:
        if isinstance(self._store, FallbackStore):
            return self._store.active.name
        return self._store.name

    # =========================================================================
    # Keys
    # =========================================================================

    @staticmethod
    def category_prefix(category: CategoryLike) -> str:
        """Prefix for a registered category; unknown categories pass through."""
        resolved = CacheCategory.resolve(category)
        return resolved.value if resolved else str(category)

    def generate_key(self, category: CategoryLike, identifier: Optional[str] = None) -> str:
        """Build ``{prefix}:{identifier}`` (or just the prefix)."""
        prefix = self.category_prefix(category)
        return f"{prefix}:{identifier}" if identifier else prefix

    def _category_of(self, key: str) -> Optional[str]:
        for prefix in self._key_registry:
            if key == prefix or key.startswith(f"{prefix}:"):
                return prefix
        return None

    # =========================================================================
    # Core Operations
    # =========================================================================

    async def get(self, key: str) -> Optional[Any]:
        value = await self._store.get(key)
        if value is None:
            logger.debug(f"Cache MISS for key: {key}")
        else:
            logger.debug(f"Cache HIT for key: {key}")
        return value

    async def set(self, key: str, value: Any, ttl: Optional[timedelta] = None) -> bool:
        if not self.config.enabled:
            return False

        if ttl is None:
            ttl = self.ttl.MEDIUM

        success = await self._store.set(key, value, ttl)
        if success:
            category = self._category_of(key)
            if category is not None:
                self._key_registry[category].add(key)
            logger.debug(f"Cache SET for key: {key} (TTL: {ttl.total_seconds():g}s)")
        else:
            logger.warning(f"Cache SET failed for key: {key}")
        return success

    async def delete(self, key: str) -> bool:
        deleted = await self._store.delete(key)
        category = self._category_of(key)
        if category is not None:
            self._key_registry[category].discard(key)
        if deleted:
            logger.debug(f"Cache DELETE for key: {key}")
        return deleted

    async def clear(self) -> bool:
        success = await self._store.clear()
        if success:
            for keys in self._key_registry.values():
                keys.clear()
            logger.info("Cache CLEARED all data")
        return success

    # =========================================================================
    # Invalidation
    # =========================================================================

    def _candidate_keys(self, prefixes: Iterable[str]) -> List[str]:
        candidates = []
        for prefix in prefixes:
            candidates.append(prefix)
            candidates.extend(f"{prefix}:{suffix}" for suffix in self._known_suffixes)
        return candidates

    async def invalidate_by_prefix(self, pattern: str) -> int:
        """
        Best-effort invalidation of keys containing ``pattern``.

        The store cannot enumerate keys, so only combinations of the known
        category prefixes and historically used suffixes are tried. Keys with
        any other identifier survive.
        """
        prefixes = [c.value for c in CacheCategory]
        count = 0
        for key in self._candidate_keys(prefixes):
            if pattern in key and await self.delete(key):
                count += 1

        logger.info(f"Invalidated {count} cache entries matching pattern: {pattern}")
        return count

    async def invalidate_category(self, category: CategoryLike) -> int:
        """
        Exact invalidation of every key written under a category.

        Also tries the best-effort candidates so entries written by a previous
        process (still alive in Redis) are covered.
        """
        prefix = self.category_prefix(category)
        keys = set(self._key_registry.get(prefix, set()))
        keys.update(self._candidate_keys([prefix]))

        count = 0
        for key in sorted(keys):
            if await self.delete(key):
                count += 1

        logger.info(f"Invalidated {count} cache entries for category: {prefix}")
        return count

    # =========================================================================
    # Statistics
    # =========================================================================

    def get_stats(self) -> Dict[str, Any]:
        stats = {
            "backend_available": self.backend_available,
            "active_backend": self.active_backend,
            "ttl_classes": self.ttl.as_seconds(),
            "known_categories": {c.name.lower(): c.value for c in CacheCategory},
            "tracked_keys": {
                prefix: len(keys) for prefix, keys in self._key_registry.items()
            },
        }
        if isinstance(self._store, FallbackStore):
            stats["store_errors"] = self._store.errors
            redis_stats = self._store.primary_stats()
            if redis_stats is not None:
                stats["redis"] = redis_stats
        return stats

    async def close(self):
        await self._store.close()


async def create_cache_facade(config: Optional[CacheConfig] = None) -> CacheFacade:
    """Build the facade, probing Redis and falling back to memory."""
    config = config or get_cache_config()
    primary = RedisStore(config) if config.redis_enabled else None
    store = FallbackStore(primary=primary, fallback=MemoryStore())
    await store.initialize()
    return CacheFacade(store, config)


# Singleton instance
_cache_facade: Optional[CacheFacade] = None
_cache_facade_lock = asyncio.Lock()


async def get_cache_facade() -> CacheFacade:
    """Get singleton cache facade instance."""
    global _cache_facade

    if _cache_facade is not None:
        return _cache_facade

    async with _cache_facade_lock:
        if _cache_facade is not None:
            return _cache_facade

        _cache_facade = await create_cache_facade()
        return _cache_facade


def set_cache_facade(facade: Optional[CacheFacade]):
    """Install (or reset with None) the process-wide facade."""
    global _cache_facade
    _cache_facade = facade


async def close_cache_facade():
    """Close singleton cache facade instance."""
    global _cache_facade

    if _cache_facade:
        await _cache_facade.close()
        _cache_facade = None
