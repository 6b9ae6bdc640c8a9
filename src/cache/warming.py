"""
Cache Warming Service

Proactively warms the dashboard views so users get instant responses from
cached data. Runs on a fixed interval (plus one run at startup) and:

1. Warms critical views in parallel
2. Pauses, then warms high-priority views in parallel
3. Pauses, then warms medium-priority views one at a time
4. Skips views whose cache entry is still fresh
5. Publishes per-view statistics and the last run for monitoring

At most one warming cycle runs at a time. A tick that arrives while a cycle
is running is dropped, not queued.
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Set

from src.cache.config import WARMING_RESULTS_KEY, CacheConfig, get_cache_config
from src.cache.facade import CacheFacade
from src.cache.registry import (
    ProducerError,
    ViewDescriptor,
    ViewPriority,
    ViewRegistry,
    ViewResult,
    is_empty_payload,
)


logger = logging.getLogger(__name__)

# Tiers processed one view at a time to protect upstream capacity
SEQUENTIAL_TIERS = {ViewPriority.MEDIUM}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


@dataclass
class ViewOutcome:
    """Result of warming one view within a run."""
    view: str
    success: bool
    duration_ms: float
    skipped: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "view": self.view,
            "success": self.success,
            "skipped": self.skipped,
            "duration_ms": self.duration_ms,
            "error": self.error,
        }


@dataclass
class WarmingRun:
    """One warming cycle."""
    started_at: datetime
    outcomes: Dict[str, ViewOutcome] = field(default_factory=dict)
    total_duration_ms: float = 0.0

    def record(self, outcome: ViewOutcome):
        self.outcomes[outcome.view] = outcome

    @property
    def success_count(self) -> int:
        return sum(1 for o in self.outcomes.values() if o.success)

    @property
    def failure_count(self) -> int:
        return sum(1 for o in self.outcomes.values() if not o.success)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.started_at.isoformat(),
            "total_time_ms": self.total_duration_ms,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "results": [o.to_dict() for o in self.outcomes.values()],
        }


@dataclass
class EndpointStats:
    """Accumulated warming statistics for one view."""
    successes: int = 0
    failures: int = 0
    total_duration_ms: float = 0.0
    last_success: Optional[datetime] = None
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        attempts = self.successes + self.failures
        return {
            "successes": self.successes,
            "failures": self.failures,
            "total_time_ms": round(self.total_duration_ms, 2),
            "avg_time_ms": round(self.total_duration_ms / attempts, 2) if attempts else 0.0,
            "last_success": self.last_success.isoformat() if self.last_success else None,
            "last_error": self.last_error,
        }


@dataclass
class WarmedData:
    """Result of reading a warmed view straight from the cache."""
    view: str
    cache_key: str
    payload: Any
    was_cached: bool
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data": self.payload,
            "cached": self.was_cached,
            "endpoint": self.view,
            "cache_key": self.cache_key,
            "timestamp": self.timestamp.isoformat(),
        }


class CacheWarmer:
    """
    Tiered cache warming scheduler.

    Owns all warming state; statistics are only exposed through get_stats().
    """

    def __init__(
        self,
        registry: ViewRegistry,
        cache: CacheFacade,
        config: Optional[CacheConfig] = None,
        health_check: Optional[Callable[[], Awaitable[bool]]] = None,
    ):
        self._registry = registry
        self._cache = cache
        self._config = config or get_cache_config()
        self._health_check = health_check or getattr(cache.store, "reprobe", None)

        self._is_running = False
        self._total_runs = 0
        self._failed_runs = 0
        self._skipped_runs = 0
        self._successful_warms = 0
        self._failed_warms = 0
        self._last_run: Optional[datetime] = None
        self._last_success: Optional[datetime] = None
        self._last_error: Optional[str] = None
        self._endpoint_stats: Dict[str, EndpointStats] = {}
        self._durations: Deque[float] = deque(maxlen=max(1, self._config.average_window))
        self._last_result: Optional[WarmingRun] = None

        self._started_at: Optional[float] = None
        self._ticker: Optional[asyncio.Task] = None
        self._health_task: Optional[asyncio.Task] = None
        self._cycles: Set[asyncio.Task] = set()

    @property
    def registry(self) -> ViewRegistry:
        return self._registry

    @property
    def is_running(self) -> bool:
        return self._is_running

    @property
    def is_started(self) -> bool:
        return self._ticker is not None

    # =========================================================================
    # Single view
    # =========================================================================

    async def _invoke(self, view: ViewDescriptor) -> Any:
        """Call the producer under the timeout and validate its output."""
        timeout = self._config.producer_timeout_seconds
        if timeout and timeout > 0:
            result = await asyncio.wait_for(view.producer(), timeout=timeout)
        else:
            result = await view.producer()

        if isinstance(result, ViewResult):
            if not result.ok:
                raise ProducerError(result.error or "Producer reported failure")
            result = result.payload

        if is_empty_payload(result):
            raise ProducerError("Producer returned empty payload")
        return result

    async def warm_view(self, view: ViewDescriptor) -> ViewOutcome:
        """
        Warm a single view. Never raises.

        The payload goes under the warmed key and the serving route's key. A
        view is skipped only when all of them are fresh; failed producers
        write nothing.
        """
        start = time.perf_counter()

        try:
            keys = view.keys()
            fresh = [key for key in keys if await self._cache.get(key) is not None]
            if len(fresh) == len(keys):
                logger.debug(f"{view.name} already cached, skipping...")
                return ViewOutcome(
                    view=view.name,
                    success=True,
                    skipped=True,
                    duration_ms=_elapsed_ms(start),
                )

            payload = await self._invoke(view)

            for key in keys:
                if not await self._cache.set(key, payload, view.ttl):
                    raise ProducerError(f"Cache write failed for {key}")

            duration = _elapsed_ms(start)
            stats = self._endpoint_stats.setdefault(view.name, EndpointStats())
            stats.successes += 1
            stats.total_duration_ms += duration
            stats.last_success = _utcnow()
            logger.info(f"{view.name} warmed successfully in {duration:.0f}ms")
            return ViewOutcome(view=view.name, success=True, duration_ms=duration)

        except asyncio.TimeoutError:
            error = f"Producer timed out after {self._config.producer_timeout_seconds:g}s"
        except Exception as e:
            error = str(e) or type(e).__name__

        duration = _elapsed_ms(start)
        stats = self._endpoint_stats.setdefault(view.name, EndpointStats())
        stats.failures += 1
        stats.total_duration_ms += duration
        stats.last_error = error
        logger.error(f"Failed to warm {view.name}: {error}")
        return ViewOutcome(view=view.name, success=False, duration_ms=duration, error=error)

    # =========================================================================
    # Cycle
    # =========================================================================

    async def _warm_tier(self, priority: ViewPriority, views: List[ViewDescriptor]) -> List[ViewOutcome]:
        if not views:
            return []

        logger.info(f"Warming {priority.value} views ({len(views)})...")

        if priority in SEQUENTIAL_TIERS:
            outcomes = []
            for index, view in enumerate(views):
                if index > 0:
                    await asyncio.sleep(self._config.medium_delay_seconds)
                outcomes.append(await self.warm_view(view))
            return outcomes

        settled = await asyncio.gather(
            *(self.warm_view(view) for view in views),
            return_exceptions=True,
        )
        outcomes = []
        for view, result in zip(views, settled):
            if isinstance(result, BaseException):
                outcomes.append(ViewOutcome(
                    view=view.name, success=False, duration_ms=0.0, error=str(result),
                ))
            else:
                outcomes.append(result)
        return outcomes

    def _claim(self, reason: str) -> bool:
        """Take the running guard, or count a skipped run when it is held."""
        if self._is_running:
            self._skipped_runs += 1
            logger.info(f"Cache warming already in progress, skipping {reason}")
            return False
        self._is_running = True
        return True

    async def run_cycle(self) -> Optional[WarmingRun]:
        """
        Run one warming cycle.

        Returns the run, or None when skipped (another cycle is running) or
        when the cycle itself failed.
        """
        if not self._claim("cycle"):
            return None
        return await self._run_claimed()

    async def _run_claimed(self) -> Optional[WarmingRun]:
        """Cycle body. The caller already holds the running guard."""
        self._total_runs += 1
        started_at = _utcnow()
        self._last_run = started_at
        start = time.perf_counter()

        try:
            logger.info("Starting cache warming cycle...")
            run = WarmingRun(started_at=started_at)

            for index, priority in enumerate(ViewPriority):
                if index > 0:
                    await asyncio.sleep(self._config.tier_pause_seconds)
                for outcome in await self._warm_tier(priority, self._registry.by_priority(priority)):
                    run.record(outcome)

            run.total_duration_ms = _elapsed_ms(start)

            self._successful_warms += run.success_count
            self._failed_warms += run.failure_count
            self._last_success = _utcnow()
            self._durations.append(run.total_duration_ms)
            self._last_result = run

            logger.info(
                f"Cache warming completed: {run.success_count} success, "
                f"{run.failure_count} failed in {run.total_duration_ms:.0f}ms"
            )

            await self._publish(run)
            return run

        except Exception as e:
            self._failed_runs += 1
            self._last_error = str(e)
            logger.error(f"Cache warming cycle failed: {e}")
            return None

        finally:
            self._is_running = False

    async def _publish(self, run: WarmingRun):
        """Store the run snapshot for the monitoring endpoints."""
        snapshot = run.to_dict()
        snapshot["stats"] = self.get_stats()
        if not await self._cache.set(WARMING_RESULTS_KEY, snapshot, self._config.warming_results_ttl):
            logger.warning("Failed to store cache warming results")

    # =========================================================================
    # Scheduling
    # =========================================================================

    def _spawn_cycle(self, reason: str) -> bool:
        """
        Start a cycle task if the guard is free.

        The guard is taken before the task is created, so a second caller
        arriving before the task first runs is refused.
        """
        if not self._claim(reason):
            return False
        task = asyncio.create_task(self._run_claimed())
        self._cycles.add(task)
        task.add_done_callback(self._cycles.discard)
        return True

    async def trigger(self) -> bool:
        """
        Start a cycle in the background.

        Returns False (and starts nothing) while a cycle is already running.
        """
        return self._spawn_cycle("manual trigger")

    async def _tick(self):
        self._spawn_cycle("tick")

    async def _check_backend(self):
        healthy = await self._health_check()
        logger.debug(f"Cache backend health check: {'ok' if healthy else 'unavailable'}")

    async def _periodic(self, interval: float, tick: Callable[[], Awaitable[None]], name: str, run_immediately: bool):
        if run_immediately:
            await tick()
        while True:
            await asyncio.sleep(interval)
            try:
                await tick()
            except Exception as e:
                logger.error(f"{name} tick failed: {e}")

    async def start(self, interval_seconds: Optional[float] = None):
        """
        Start background warming.

        Runs one cycle immediately, then one per interval. Also starts the
        backend health check when the store supports re-probing.
        """
        if self._ticker is not None:
            logger.warning("Background warmer already running")
            return

        interval = interval_seconds or self._config.warming_interval_seconds
        self._started_at = time.monotonic()
        self._ticker = asyncio.create_task(
            self._periodic(interval, self._tick, "Cache warming", run_immediately=True)
        )

        health_interval = self._config.health_check_interval_seconds
        if self._health_check is not None and health_interval and health_interval > 0:
            self._health_task = asyncio.create_task(
                self._periodic(health_interval, self._check_backend, "Cache health check", run_immediately=False)
            )

        logger.info(
            f"Cache warming service started (interval: {interval:g}s, "
            f"views: {len(self._registry)})"
        )

    async def stop(self):
        """
        Stop scheduling new cycles.

        A cycle already in flight is left to finish.
        """
        for task in (self._ticker, self._health_task):
            if task is None:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._ticker = None
        self._health_task = None
        logger.info("Cache warming service stopped")

    async def wait_idle(self):
        """Wait for in-flight cycles spawned by ticks or triggers."""
        if self._cycles:
            await asyncio.gather(*list(self._cycles), return_exceptions=True)

    # =========================================================================
    # Read side
    # =========================================================================

    def get_stats(self) -> Dict[str, Any]:
        """Snapshot of the warming statistics."""
        return {
            "total_runs": self._total_runs,
            "successful_warms": self._successful_warms,
            "failed_warms": self._failed_warms,
            "failed_runs": self._failed_runs,
            "skipped_runs": self._skipped_runs,
            "last_run": self._last_run.isoformat() if self._last_run else None,
            "last_success": self._last_success.isoformat() if self._last_success else None,
            "last_error": self._last_error,
            "endpoint_stats": {
                name: stats.to_dict() for name, stats in self._endpoint_stats.items()
            },
            "average_warm_time_ms": (
                round(sum(self._durations) / len(self._durations), 2)
                if self._durations else 0.0
            ),
            "is_running": self._is_running,
            "uptime_seconds": (
                round(time.monotonic() - self._started_at, 1)
                if self._started_at is not None else None
            ),
        }

    async def get_last_run(self) -> Optional[Dict[str, Any]]:
        """Last published run snapshot, if still cached."""
        return await self._cache.get(WARMING_RESULTS_KEY)

    async def get_warmed_data(self, view_name: str) -> WarmedData:
        """
        Read a view's warmed payload without triggering its producer.

        Raises UnknownViewError for unregistered names.
        """
        view = self._registry.get(view_name)
        payload = await self._cache.get(view.cache_key)
        return WarmedData(
            view=view.name,
            cache_key=view.cache_key,
            payload=payload,
            was_cached=payload is not None,
        )


# Process-wide instance, installed at application startup
_cache_warmer: Optional[CacheWarmer] = None


def get_cache_warmer() -> Optional[CacheWarmer]:
    """Get the installed cache warmer (None before startup)."""
    return _cache_warmer


def set_cache_warmer(warmer: Optional[CacheWarmer]):
    global _cache_warmer
    _cache_warmer = warmer
