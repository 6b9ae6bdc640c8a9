"""
Response Cache

Makes a request handler cacheable without touching its body.

On a hit the stored payload is returned and the handler is never called. On a
miss the handler runs, its output is checked against a predicate and, if
cacheable, written to the cache in the background. The cache is never a point
of failure: any cache-layer error degrades to a plain call-through.

Usage:
    @router.get("/api/jira-bug-areas")
    @cache_response(ttl=lambda c: c.ttl.LONG, key_builder=lambda r: "jira:bug_areas:v12.8")
    async def get_bug_areas(request: Request, response: Response):
        ...
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from functools import wraps
from typing import Any, Awaitable, Callable, Optional, Set, Union

from fastapi import Request, Response

from src.cache.facade import CacheFacade, get_cache_facade
from src.cache.registry import is_empty_payload


logger = logging.getLogger(__name__)

Handler = Callable[[], Awaitable[Any]]
TTLSpec = Union[timedelta, Callable[[CacheFacade], timedelta], None]


class CacheStatus(str, Enum):
    HIT = "HIT"
    MISS = "MISS"


def default_should_cache(payload: Any, status_code: Optional[int] = None) -> bool:
    """Cache only successful, non-empty outputs."""
    if status_code is not None and not 200 <= status_code < 300:
        return False
    return not is_empty_payload(payload)


def default_key_builder(request: Request, prefix: str = "api") -> str:
    """Key derived from the request method and path."""
    return f"{prefix}:{request.method}:{request.url.path}"


@dataclass
class CachedResult:
    """Handler output annotated with how it was obtained."""
    payload: Any
    status: CacheStatus
    key: str


class ResponseCache:
    """
    Cache-aside wrapper around a single request-handling operation.

    Writes happen in background tasks; drain() waits for pending writes.
    """

    def __init__(
        self,
        ttl: TTLSpec = None,
        should_cache: Callable[..., bool] = default_should_cache,
        cache: Optional[CacheFacade] = None,
    ):
        self._ttl = ttl
        self._should_cache = should_cache
        self._cache = cache
        self._pending: Set[asyncio.Task] = set()

    async def _get_cache(self) -> CacheFacade:
        if self._cache is None:
            return await get_cache_facade()
        return self._cache

    def _resolve_ttl(self, cache: CacheFacade) -> timedelta:
        if self._ttl is None:
            return cache.ttl.MEDIUM
        if callable(self._ttl):
            return self._ttl(cache)
        return self._ttl

    async def fetch(
        self,
        key: str,
        handler: Handler,
        status_code: Callable[[], Optional[int]] = lambda: None,
    ) -> CachedResult:
        """
        Serve ``key`` from cache or run ``handler``.

        Args:
            key: Cache key for this request
            handler: Zero-argument coroutine producing the output
            status_code: Reads the handler's final status after it ran

        Exceptions raised by the handler propagate unchanged.
        """
        cache = None
        try:
            cache = await self._get_cache()
            cached = await cache.get(key)
            if cached is not None:
                return CachedResult(payload=cached, status=CacheStatus.HIT, key=key)
        except Exception as e:
            logger.error(f"Response cache lookup failed for {key}: {e}")
            cache = None

        payload = await handler()

        if cache is not None:
            try:
                if self._should_cache(payload, status_code()):
                    self._schedule_write(cache, key, payload)
            except Exception as e:
                logger.error(f"Response cache predicate failed for {key}: {e}")

        return CachedResult(payload=payload, status=CacheStatus.MISS, key=key)

    def _schedule_write(self, cache: CacheFacade, key: str, payload: Any):
        task = asyncio.create_task(self._write(cache, key, payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write(self, cache: CacheFacade, key: str, payload: Any):
        try:
            if not await cache.set(key, payload, self._resolve_ttl(cache)):
                logger.warning(f"Failed to cache response for {key}")
        except Exception as e:
            logger.error(f"Failed to cache response for {key}: {e}")

    async def drain(self):
        """Wait for in-flight cache writes."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


def _find_instance(args, kwargs, cls):
    for value in kwargs.values():
        if isinstance(value, cls):
            return value
    for value in args:
        if isinstance(value, cls):
            return value
    return None


def cache_response(
    ttl: TTLSpec = None,
    key_prefix: str = "api",
    key_builder: Optional[Callable[[Request], str]] = None,
    should_cache: Callable[..., bool] = default_should_cache,
    cache: Optional[CacheFacade] = None,
):
    """
    Decorator making a FastAPI endpoint cacheable.

    The endpoint must declare ``request: Request`` and ``response: Response``
    parameters. Sets ``X-Cache`` (HIT/MISS) and ``X-Cache-Key`` headers.

    Args:
        ttl: timedelta, or callable picking a TTL class from the facade
        key_prefix: Prefix for the default method+path key
        key_builder: Custom key function taking the request
        should_cache: Predicate on (payload, status_code)
        cache: Explicit facade (defaults to the process singleton)
    """
    def decorator(func: Callable) -> Callable:
        response_cache = ResponseCache(ttl=ttl, should_cache=should_cache, cache=cache)

        @wraps(func)
        async def wrapper(*args, **kwargs):
            request = _find_instance(args, kwargs, Request)
            response = _find_instance(args, kwargs, Response)

            if request is None:
                return await func(*args, **kwargs)

            try:
                key = key_builder(request) if key_builder else default_key_builder(request, key_prefix)
            except Exception as e:
                logger.error(f"Response cache key builder failed for {request.url.path}: {e}")
                if response is not None:
                    response.headers["X-Cache"] = CacheStatus.MISS.value
                return await func(*args, **kwargs)

            result = await response_cache.fetch(
                key,
                lambda: func(*args, **kwargs),
                status_code=lambda: response.status_code if response is not None else None,
            )

            if response is not None:
                response.headers["X-Cache"] = result.status.value
                response.headers["X-Cache-Key"] = key

            return result.payload

        wrapper.response_cache = response_cache
        return wrapper

    return decorator
