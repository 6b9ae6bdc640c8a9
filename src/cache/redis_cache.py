"""
Redis Cache Implementation

Redis-backed KeyValueStore with:
- Namespace isolation (clear() only touches our keys)
- Automatic compression for large values
- Millisecond-precision expiry
- Graceful degradation (returns None/False on errors)
- Statistics tracking
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional

from redis.asyncio import Redis, ConnectionPool
from redis.exceptions import RedisError

from src.cache.config import CacheConfig, get_cache_config
from src.cache.compression import (
    CacheCompressor,
    serialize_value,
    deserialize_value,
)
from src.cache.store import KeyValueStore


logger = logging.getLogger(__name__)


@dataclass
class CacheStats:
    """Cache operation statistics."""
    hits: int = 0
    misses: int = 0
    errors: int = 0
    bytes_written: int = 0
    bytes_read: int = 0
    bytes_saved_compression: int = 0
    latency_samples: List[float] = field(default_factory=list)

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    @property
    def avg_latency_ms(self) -> float:
        if not self.latency_samples:
            return 0.0
        recent = self.latency_samples[-100:]
        return sum(recent) / len(recent) * 1000

    def record_latency(self, seconds: float):
        """Record a latency sample."""
        self.latency_samples.append(seconds)
        # Keep only last 1000 samples
        if len(self.latency_samples) > 1000:
            self.latency_samples = self.latency_samples[-1000:]


class RedisStore(KeyValueStore):
    """
    Redis store for dashboard payloads.

    initialize() raises when Redis cannot be reached; the regular operations
    never do.
    """

    name = "redis"

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        client: Optional[Redis] = None,
    ):
        self.config = config or get_cache_config()
        self._pool: Optional[ConnectionPool] = None
        self._redis: Optional[Redis] = client
        self._compressor = CacheCompressor(
            enabled=self.config.compression_enabled,
            threshold=self.config.compression_threshold,
        )
        self._stats = CacheStats()
        self._initialized = client is not None
        self._lock = asyncio.Lock()

    async def initialize(self):
        """Initialize Redis connection pool."""
        if self._initialized:
            return

        async with self._lock:
            if self._initialized:
                return

            try:
                self._pool = ConnectionPool.from_url(
                    self.config.redis_url,
                    max_connections=self.config.redis_max_connections,
                    socket_timeout=self.config.redis_socket_timeout,
                    socket_connect_timeout=self.config.redis_connect_timeout,
                    decode_responses=False,  # We handle bytes directly
                )
                self._redis = Redis(connection_pool=self._pool)

                # Test connection
                await self._redis.ping()
                self._initialized = True
                logger.info(f"Redis cache initialized: {self.config.redis_url}")

            except Exception as e:
                logger.error(f"Failed to initialize Redis: {e}")
                self._initialized = False
                await self._release_connections()
                raise

    async def _release_connections(self):
        """Drop the client and pool built by a failed initialize()."""
        redis, pool = self._redis, self._pool
        self._redis = None
        self._pool = None
        try:
            if redis is not None:
                await redis.aclose()
            if pool is not None:
                await pool.disconnect()
        except Exception as e:
            logger.debug(f"Error releasing Redis connections: {e}")

    async def close(self):
        """Close Redis connection pool."""
        if self._redis:
            await self._redis.aclose()
        if self._pool:
            await self._pool.disconnect()
        self._initialized = False
        logger.info("Redis cache closed")

    def _make_key(self, key: str) -> str:
        """Create namespaced cache key."""
        return f"{self.config.redis_namespace}:{key}"

    async def _ensure_initialized(self) -> bool:
        if self._initialized:
            return True
        try:
            await self.initialize()
            return True
        except Exception:
            return False

    async def get(self, key: str) -> Optional[Any]:
        """
        Get value from cache.

        Returns None if the key doesn't exist, Redis is unavailable or
        deserialization fails.
        """
        if not await self._ensure_initialized():
            return None

        start_time = time.time()

        try:
            data = await self._redis.get(self._make_key(key))
            self._stats.record_latency(time.time() - start_time)

            if data is None:
                self._stats.misses += 1
                return None

            self._stats.hits += 1
            self._stats.bytes_read += len(data)
            return deserialize_value(self._compressor.decompress(data))

        except RedisError as e:
            self._stats.errors += 1
            logger.warning(f"Redis unavailable, returning None for {key}: {e}")
            return None
        except Exception as e:
            self._stats.errors += 1
            logger.error(f"Cache get error for {key}: {e}")
            return None

    async def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[timedelta] = None,
    ) -> bool:
        """Set value with optional TTL. Returns True on success."""
        if not await self._ensure_initialized():
            return False

        start_time = time.time()

        try:
            compressed, stats = self._compressor.compress(serialize_value(value))
            if stats:
                self._stats.bytes_saved_compression += (
                    stats.original_size - stats.compressed_size
                )

            if ttl is not None:
                # px keeps sub-second TTLs meaningful
                expire_ms = max(1, int(ttl.total_seconds() * 1000))
                await self._redis.set(self._make_key(key), compressed, px=expire_ms)
            else:
                await self._redis.set(self._make_key(key), compressed)

            self._stats.record_latency(time.time() - start_time)
            self._stats.bytes_written += len(compressed)
            return True

        except RedisError as e:
            self._stats.errors += 1
            logger.warning(f"Redis unavailable, cache set failed for {key}: {e}")
            return False
        except Exception as e:
            self._stats.errors += 1
            logger.error(f"Cache set error for {key}: {e}")
            return False

    async def delete(self, key: str) -> bool:
        """Delete a key. True if it existed."""
        if not await self._ensure_initialized():
            return False

        try:
            return await self._redis.delete(self._make_key(key)) > 0
        except Exception as e:
            self._stats.errors += 1
            logger.error(f"Cache delete error for {key}: {e}")
            return False

    async def clear(self) -> bool:
        """Delete every key in our namespace."""
        if not await self._ensure_initialized():
            return False

        try:
            keys = []
            async for key in self._redis.scan_iter(
                match=self._make_key("*"), count=100
            ):
                keys.append(key)

            if keys:
                deleted = await self._redis.delete(*keys)
                logger.info(f"Cleared {deleted} keys from namespace {self.config.redis_namespace}")
            return True

        except Exception as e:
            self._stats.errors += 1
            logger.error(f"Cache clear error: {e}")
            return False

    def get_stats(self) -> Dict:
        """Get cache statistics."""
        return {
            "initialized": self._initialized,
            "hits": self._stats.hits,
            "misses": self._stats.misses,
            "errors": self._stats.errors,
            "hit_rate_percent": round(self._stats.hit_rate * 100, 2),
            "avg_latency_ms": round(self._stats.avg_latency_ms, 2),
            "bytes_written": self._stats.bytes_written,
            "bytes_read": self._stats.bytes_read,
            "bytes_saved_compression": self._stats.bytes_saved_compression,
        }
