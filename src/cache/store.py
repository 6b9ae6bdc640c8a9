"""
Key-Value Stores

Backing stores for the cache facade:
- KeyValueStore: async get/set/delete/clear contract with per-entry expiry
- MemoryStore: in-process store, no persistence
- FallbackStore: prefers Redis, falls back to memory when the connectivity
  probe fails, and can re-probe later to promote Redis back

Store operations never raise. Failures come back as None (get) or False
(set/delete/clear) so a broken backend can never crash a caller.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, Optional

from src.cache.compression import deserialize_value, serialize_value


logger = logging.getLogger(__name__)

PROBE_KEY = "test:connection"
PROBE_VALUE = "ok"


@dataclass
class CacheEntry:
    """A single cached value with its absolute expiry (monotonic clock)."""
    key: str
    value: Any
    expires_at: Optional[float] = None

    def is_expired(self, now: Optional[float] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now if now is not None else time.monotonic()) >= self.expires_at


class KeyValueStore(ABC):
    """Abstract async key-value store with per-entry expiration."""

    name: str = "abstract"

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Return the value, or None when absent, expired or on error."""

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: Optional[timedelta] = None) -> bool:
        """Store a value. Returns False on failure."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove a key. Returns True only if an entry was removed."""

    @abstractmethod
    async def clear(self) -> bool:
        """Remove every entry owned by this store."""

    async def close(self):
        """Release backend resources."""


class MemoryStore(KeyValueStore):
    """
    In-process store used when Redis is unreachable.

    Values are kept JSON-serialized, like RedisStore keeps them, so a hit is
    always a fresh copy and both backends return the same types. Expired
    entries are dropped lazily on access.
    """

    name = "memory"

    def __init__(self):
        self._entries: Dict[str, CacheEntry] = {}

    def _live_entry(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired():
            del self._entries[key]
            return None
        return entry

    async def get(self, key: str) -> Optional[Any]:
        entry = self._live_entry(key)
        if entry is None:
            return None
        try:
            return deserialize_value(entry.value)
        except Exception as e:
            logger.error(f"Memory cache get error for {key}: {e}")
            return None

    async def set(self, key: str, value: Any, ttl: Optional[timedelta] = None) -> bool:
        try:
            data = serialize_value(value)
        except Exception as e:
            logger.error(f"Memory cache set error for {key}: {e}")
            return False
        expires_at = None
        if ttl is not None:
            expires_at = time.monotonic() + ttl.total_seconds()
        self._entries[key] = CacheEntry(key=key, value=data, expires_at=expires_at)
        return True

    async def delete(self, key: str) -> bool:
        entry = self._live_entry(key)
        if entry is None:
            return False
        del self._entries[key]
        return True

    async def clear(self) -> bool:
        self._entries.clear()
        return True

    def __len__(self) -> int:
        now = time.monotonic()
        return sum(1 for entry in self._entries.values() if not entry.is_expired(now))


async def probe_store(store: KeyValueStore) -> bool:
    """
    Connectivity probe: write a sentinel key, read it back, compare, delete it.
    """
    try:
        if not await store.set(PROBE_KEY, PROBE_VALUE, timedelta(seconds=5)):
            return False
        value = await store.get(PROBE_KEY)
        await store.delete(PROBE_KEY)
        return value == PROBE_VALUE
    except Exception as e:
        logger.warning(f"Cache probe against {store.name} failed: {e}")
        return False


class FallbackStore(KeyValueStore):
    """
    Routes operations to Redis when it passed the probe, otherwise to memory.

    The backend decision is made by initialize() and revisited only by
    reprobe(), which the warming scheduler calls on its health-check timer.
    """

    name = "fallback"

    def __init__(
        self,
        primary: Optional[KeyValueStore] = None,
        fallback: Optional[KeyValueStore] = None,
    ):
        self._primary = primary
        self._fallback = fallback or MemoryStore()
        self._active: KeyValueStore = self._fallback
        self._redis_available = False
        self._errors = 0

    @property
    def is_redis_available(self) -> bool:
        return self._redis_available

    @property
    def active(self) -> KeyValueStore:
        return self._active

    @property
    def errors(self) -> int:
        return self._errors

    def primary_stats(self) -> Optional[Dict[str, Any]]:
        """Operation statistics of Redis while it is the active backend."""
        if not self._redis_available:
            return None
        get_stats = getattr(self._primary, "get_stats", None)
        return get_stats() if get_stats is not None else None

    async def initialize(self) -> bool:
        """Run the startup probe and pick the backend."""
        if self._primary is None:
            logger.warning("No Redis backend configured, using in-memory cache")
            return False

        if await probe_store(self._primary):
            self._use_primary()
            logger.info(f"Cache backend initialized: {self._primary.name}")
            return True

        self._use_fallback()
        logger.warning("Redis not available, falling back to in-memory cache")
        return False

    async def reprobe(self) -> bool:
        """
        Re-check the primary backend.

        Promotes Redis once it answers again; demotes to memory when it stops
        answering. Entries written to memory in the meantime are not migrated.
        """
        if self._primary is None:
            return False

        healthy = await probe_store(self._primary)
        if healthy and not self._redis_available:
            self._use_primary()
            logger.info("Redis reachable again, promoted to active cache backend")
        elif not healthy and self._redis_available:
            self._use_fallback()
            logger.warning("Redis stopped answering, demoted to in-memory cache")
        return healthy

    def _use_primary(self):
        self._active = self._primary
        self._redis_available = True

    def _use_fallback(self):
        self._active = self._fallback
        self._redis_available = False

    async def get(self, key: str) -> Optional[Any]:
        try:
            return await self._active.get(key)
        except Exception as e:
            self._errors += 1
            logger.error(f"Cache get error for {key}: {e}")
            return None

    async def set(self, key: str, value: Any, ttl: Optional[timedelta] = None) -> bool:
        try:
            return await self._active.set(key, value, ttl)
        except Exception as e:
            self._errors += 1
            logger.error(f"Cache set error for {key}: {e}")
            return False

    async def delete(self, key: str) -> bool:
        try:
            return await self._active.delete(key)
        except Exception as e:
            self._errors += 1
            logger.error(f"Cache delete error for {key}: {e}")
            return False

    async def clear(self) -> bool:
        try:
            return await self._active.clear()
        except Exception as e:
            self._errors += 1
            logger.error(f"Cache clear error: {e}")
            return False

    async def close(self):
        if self._primary is not None:
            await self._primary.close()
        await self._fallback.close()
