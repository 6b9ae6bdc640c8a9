"""
Tests for the cache warming service.

These tests verify:
- View registry lookups and tiers
- Per-view warming (skip-on-fresh, failure containment, timeouts)
- Tier ordering and throttling gaps
- Overlap guard and cycle-level failure handling
- Statistics and the published run snapshot
- Periodic scheduling
"""

import pytest
import asyncio
import time
from datetime import timedelta
from unittest.mock import AsyncMock, patch

from src.cache.config import WARMING_RESULTS_KEY, CacheConfig
from src.cache.facade import CacheFacade
from src.cache.registry import (
    UnknownViewError,
    ViewPriority,
    ViewRegistry,
    ViewResult,
    is_empty_payload,
)
from src.cache.warming import CacheWarmer

from conftest import make_view


def ok(payload):
    async def producer():
        return payload
    return producer


def failing(message="jira down"):
    async def producer():
        raise RuntimeError(message)
    return producer


class CountingProducer:
    """Producer that records each call."""

    def __init__(self, payload, delay: float = 0.0):
        self.payload = payload
        self.delay = delay
        self.calls = 0
        self.started = []
        self.finished = []

    async def __call__(self):
        self.calls += 1
        self.started.append(time.monotonic())
        if self.delay:
            await asyncio.sleep(self.delay)
        self.finished.append(time.monotonic())
        return self.payload


# =============================================================================
# REGISTRY TESTS
# =============================================================================

class TestViewRegistry:
    """Test the static view table."""

    def test_lookup_and_order(self):
        registry = ViewRegistry([
            make_view("a", ok(1), ViewPriority.HIGH),
            make_view("b", ok(1), ViewPriority.CRITICAL),
            make_view("c", ok(1), ViewPriority.HIGH),
        ])
        assert registry.names() == ["a", "b", "c"]
        assert [v.name for v in registry.by_priority(ViewPriority.HIGH)] == ["a", "c"]
        assert [[v.name for v in tier] for tier in registry.tiers()] == [["b"], ["a", "c"], []]
        assert "a" in registry
        assert len(registry) == 3

    def test_unknown_view(self):
        registry = ViewRegistry([make_view("a", ok(1))])
        with pytest.raises(UnknownViewError) as exc_info:
            registry.get("missing")
        assert str(exc_info.value) == "View missing not found in warming config"

    def test_duplicate_names_rejected(self):
        with pytest.raises(ValueError):
            ViewRegistry([make_view("a", ok(1)), make_view("a", ok(2))])

    def test_empty_payloads(self):
        assert is_empty_payload(None)
        assert is_empty_payload({})
        assert is_empty_payload([])
        assert is_empty_payload("")
        assert not is_empty_payload({"total": 0})
        assert not is_empty_payload(0)


# =============================================================================
# SINGLE VIEW TESTS
# =============================================================================

class TestWarmView:
    """Test warming a single view."""

    async def test_success_writes_payload(self, memory_facade, cache_config):
        view = make_view("test-cases", ok({"manual": 3}), ttl=timedelta(minutes=2))
        warmer = CacheWarmer(ViewRegistry([view]), memory_facade, cache_config)

        outcome = await warmer.warm_view(view)

        assert outcome.success is True
        assert outcome.skipped is False
        assert await memory_facade.get("test-cases_warmed") == {"manual": 3}
        assert warmer.get_stats()["endpoint_stats"]["test-cases"]["successes"] == 1

    async def test_fresh_entry_is_skipped(self, memory_facade, cache_config):
        """A view whose cache entry is still fresh does not re-run its producer."""
        producer = CountingProducer({"manual": 1})
        view = make_view("test-cases", producer)
        await memory_facade.set(view.cache_key, {"manual": 0}, timedelta(minutes=1))
        warmer = CacheWarmer(ViewRegistry([view]), memory_facade, cache_config)

        outcome = await warmer.warm_view(view)

        assert outcome.success is True
        assert outcome.skipped is True
        assert producer.calls == 0
        assert await memory_facade.get(view.cache_key) == {"manual": 0}

    async def test_payload_written_under_route_key(self, memory_facade, cache_config):
        """The serving route's key gets the same payload, so the route hits."""
        view = make_view("test-cases", ok({"manual": 3}), route_key="jira:test_cases:current")
        warmer = CacheWarmer(ViewRegistry([view]), memory_facade, cache_config)

        await warmer.warm_view(view)

        assert await memory_facade.get("test-cases_warmed") == {"manual": 3}
        assert await memory_facade.get("jira:test_cases:current") == {"manual": 3}

    async def test_expired_route_key_is_rewarmed(self, memory_facade, cache_config):
        """Only a view fresh under every key is skipped."""
        producer = CountingProducer({"manual": 5})
        view = make_view("test-cases", producer, route_key="jira:test_cases:current")
        await memory_facade.set(view.cache_key, {"manual": 0}, timedelta(minutes=1))
        warmer = CacheWarmer(ViewRegistry([view]), memory_facade, cache_config)

        outcome = await warmer.warm_view(view)

        assert outcome.skipped is False
        assert producer.calls == 1
        assert await memory_facade.get("jira:test_cases:current") == {"manual": 5}

    async def test_fresh_under_all_keys_is_skipped(self, memory_facade, cache_config):
        producer = CountingProducer({"manual": 5})
        view = make_view("test-cases", producer, route_key="jira:test_cases:current")
        await memory_facade.set(view.cache_key, {"manual": 0}, timedelta(minutes=1))
        await memory_facade.set("jira:test_cases:current", {"manual": 0}, timedelta(minutes=1))
        warmer = CacheWarmer(ViewRegistry([view]), memory_facade, cache_config)

        outcome = await warmer.warm_view(view)

        assert outcome.skipped is True
        assert producer.calls == 0

    async def test_failure_writes_nothing(self, memory_facade, cache_config):
        view = make_view("bug-areas", failing("All JQL variations failed"))
        warmer = CacheWarmer(ViewRegistry([view]), memory_facade, cache_config)

        outcome = await warmer.warm_view(view)

        assert outcome.success is False
        assert "All JQL variations failed" in outcome.error
        assert await memory_facade.get(view.cache_key) is None
        stats = warmer.get_stats()["endpoint_stats"]["bug-areas"]
        assert stats["failures"] == 1
        assert stats["last_error"] == "All JQL variations failed"

    async def test_non_ok_result_is_failure(self, memory_facade, cache_config):
        async def producer():
            return ViewResult(payload={"partial": True}, ok=False, error="status 500")

        view = make_view("bug-stats", producer)
        warmer = CacheWarmer(ViewRegistry([view]), memory_facade, cache_config)

        outcome = await warmer.warm_view(view)

        assert outcome.success is False
        assert outcome.error == "status 500"
        assert await memory_facade.get(view.cache_key) is None

    async def test_ok_result_is_unwrapped(self, memory_facade, cache_config):
        async def producer():
            return ViewResult(payload={"totalBugs": 2})

        view = make_view("bug-stats", producer)
        warmer = CacheWarmer(ViewRegistry([view]), memory_facade, cache_config)

        await warmer.warm_view(view)

        assert await memory_facade.get(view.cache_key) == {"totalBugs": 2}

    async def test_empty_payload_is_failure(self, memory_facade, cache_config):
        view = make_view("triaging-data", ok([]))
        warmer = CacheWarmer(ViewRegistry([view]), memory_facade, cache_config)

        outcome = await warmer.warm_view(view)

        assert outcome.success is False
        assert await memory_facade.get(view.cache_key) is None

    async def test_producer_timeout(self, memory_facade, cache_config):
        """A hung producer is abandoned after the configured timeout."""
        cache_config.producer_timeout_seconds = 0.05
        view = make_view("slow", CountingProducer({"x": 1}, delay=1.0))
        warmer = CacheWarmer(ViewRegistry([view]), memory_facade, cache_config)

        start = time.monotonic()
        outcome = await warmer.warm_view(view)

        assert time.monotonic() - start < 0.5
        assert outcome.success is False
        assert "timed out" in outcome.error
        assert await memory_facade.get(view.cache_key) is None

    async def test_cache_write_failure_is_failure(self, memory_facade, cache_config):
        view = make_view("test-cases", ok({"manual": 3}))
        memory_facade.set = AsyncMock(return_value=False)
        warmer = CacheWarmer(ViewRegistry([view]), memory_facade, cache_config)

        outcome = await warmer.warm_view(view)

        assert outcome.success is False
        assert "Cache write failed" in outcome.error


# =============================================================================
# CYCLE TESTS
# =============================================================================

class TestRunCycle:
    """Test full warming cycles."""

    async def test_first_cycle_writes_only_successes(self, memory_facade, cache_config):
        registry = ViewRegistry([
            make_view("a", ok({"v": "a"}), ViewPriority.CRITICAL),
            make_view("b", failing(), ViewPriority.CRITICAL),
            make_view("c", ok({"v": "c"}), ViewPriority.HIGH),
        ])
        warmer = CacheWarmer(registry, memory_facade, cache_config)

        run = await warmer.run_cycle()

        assert run.success_count == 2
        assert run.failure_count == 1
        assert await memory_facade.get("a_warmed") == {"v": "a"}
        assert await memory_facade.get("b_warmed") is None
        assert await memory_facade.get("c_warmed") == {"v": "c"}

        stats = warmer.get_stats()
        assert stats["total_runs"] == 1
        assert stats["successful_warms"] == 2
        assert stats["failed_warms"] == 1
        assert stats["endpoint_stats"]["a"]["successes"] == 1
        assert stats["endpoint_stats"]["b"]["failures"] == 1
        assert stats["is_running"] is False

    async def test_failure_isolated_and_retried_next_cycle(self, memory_facade, cache_config):
        """A failed view is retried on the next cycle; fresh views are skipped."""
        calls = {"b": 0}

        async def flaky():
            calls["b"] += 1
            if calls["b"] == 1:
                raise RuntimeError("transient")
            return {"v": "b"}

        a = CountingProducer({"v": "a"})
        registry = ViewRegistry([
            make_view("a", a, ViewPriority.CRITICAL),
            make_view("b", flaky, ViewPriority.HIGH),
        ])
        warmer = CacheWarmer(registry, memory_facade, cache_config)

        first = await warmer.run_cycle()
        second = await warmer.run_cycle()

        assert first.outcomes["b"].success is False
        assert second.outcomes["b"].success is True
        assert second.outcomes["a"].skipped is True
        assert a.calls == 1
        assert await memory_facade.get("b_warmed") == {"v": "b"}

    async def test_overlapping_cycle_is_skipped(self, memory_facade, cache_config):
        """At most one cycle runs; a concurrent request is dropped, not queued."""
        release = asyncio.Event()

        async def blocking():
            await release.wait()
            return {"v": 1}

        warmer = CacheWarmer(ViewRegistry([make_view("a", blocking)]), memory_facade, cache_config)

        first = asyncio.create_task(warmer.run_cycle())
        await asyncio.sleep(0.01)
        assert warmer.is_running is True

        assert await warmer.run_cycle() is None

        release.set()
        assert (await first) is not None

        stats = warmer.get_stats()
        assert stats["total_runs"] == 1
        assert stats["skipped_runs"] == 1
        assert stats["is_running"] is False

    async def test_tier_order_and_gaps(self, memory_facade):
        """
        Critical views start before high, high before medium; medium views run
        one at a time with the configured delay between them.
        """
        config = CacheConfig(
            redis_enabled=False,
            tier_pause_seconds=0.05,
            medium_delay_seconds=0.05,
            producer_timeout_seconds=5,
            health_check_interval_seconds=0,
            view_priorities={},
        )
        crit_1 = CountingProducer({"v": 1}, delay=0.02)
        crit_2 = CountingProducer({"v": 2}, delay=0.02)
        high = CountingProducer({"v": 3}, delay=0.02)
        med_1 = CountingProducer({"v": 4}, delay=0.02)
        med_2 = CountingProducer({"v": 5}, delay=0.02)

        registry = ViewRegistry([
            make_view("med-1", med_1, ViewPriority.MEDIUM),
            make_view("high", high, ViewPriority.HIGH),
            make_view("crit-1", crit_1, ViewPriority.CRITICAL),
            make_view("med-2", med_2, ViewPriority.MEDIUM),
            make_view("crit-2", crit_2, ViewPriority.CRITICAL),
        ])
        warmer = CacheWarmer(registry, memory_facade, config)

        await warmer.run_cycle()

        # Critical views run in parallel
        assert abs(crit_1.started[0] - crit_2.started[0]) < 0.015

        critical_done = max(crit_1.finished[0], crit_2.finished[0])
        assert high.started[0] - critical_done >= 0.04
        assert med_1.started[0] - high.finished[0] >= 0.04

        # Medium views are sequential, in registration order, with a gap
        assert med_2.started[0] - med_1.finished[0] >= 0.04

    async def test_results_snapshot_published(self, memory_facade, cache_config):
        registry = ViewRegistry([
            make_view("a", ok({"v": 1})),
            make_view("b", failing()),
        ])
        warmer = CacheWarmer(registry, memory_facade, cache_config)

        await warmer.run_cycle()

        snapshot = await warmer.get_last_run()
        assert snapshot is not None
        assert snapshot == await memory_facade.get(WARMING_RESULTS_KEY)
        assert snapshot["success_count"] == 1
        assert snapshot["failure_count"] == 1
        assert {r["view"] for r in snapshot["results"]} == {"a", "b"}
        assert snapshot["stats"]["total_runs"] == 1

    async def test_cycle_failure_releases_guard(self, memory_facade, cache_config):
        """An error outside any producer is caught and the guard is released."""
        registry = ViewRegistry([make_view("a", ok({"v": 1}))])
        warmer = CacheWarmer(registry, memory_facade, cache_config)

        with patch.object(registry, "by_priority", side_effect=RuntimeError("boom")):
            assert await warmer.run_cycle() is None

        stats = warmer.get_stats()
        assert stats["failed_runs"] == 1
        assert stats["last_error"] == "boom"
        assert warmer.is_running is False

        # Next cycle proceeds normally
        assert await warmer.run_cycle() is not None

    async def test_average_is_windowed_mean(self, memory_facade, cache_config):
        cache_config.average_window = 2
        warmer = CacheWarmer(ViewRegistry([make_view("a", ok({"v": 1}))]), memory_facade, cache_config)
        warmer._durations.extend([100.0, 200.0, 400.0])

        assert warmer.get_stats()["average_warm_time_ms"] == 300.0


# =============================================================================
# READ PATH TESTS
# =============================================================================

class TestWarmedData:
    """Test reading warmed views."""

    async def test_unknown_view(self, memory_facade, cache_config):
        warmer = CacheWarmer(ViewRegistry([make_view("a", ok(1))]), memory_facade, cache_config)
        with pytest.raises(UnknownViewError):
            await warmer.get_warmed_data("nope")

    async def test_absent_view(self, memory_facade, cache_config):
        producer = CountingProducer({"v": 1})
        warmer = CacheWarmer(ViewRegistry([make_view("a", producer)]), memory_facade, cache_config)

        warmed = await warmer.get_warmed_data("a")

        assert warmed.was_cached is False
        assert warmed.payload is None
        assert producer.calls == 0

    async def test_read_is_idempotent(self, memory_facade, cache_config):
        """Reading warmed data returns the cached payload and never runs the producer."""
        producer = CountingProducer({"v": 1})
        warmer = CacheWarmer(ViewRegistry([make_view("a", producer)]), memory_facade, cache_config)
        await warmer.run_cycle()

        first = await warmer.get_warmed_data("a")
        second = await warmer.get_warmed_data("a")

        assert first.was_cached and second.was_cached
        assert first.payload == second.payload == {"v": 1}
        assert first.cache_key == "a_warmed"
        assert producer.calls == 1


# =============================================================================
# SCHEDULING TESTS
# =============================================================================

class TestScheduling:
    """Test the periodic runner."""

    async def test_start_runs_immediately_then_periodically(self, memory_facade, cache_config):
        producer = CountingProducer({"v": 1})
        # Short TTL so every tick has work to do
        view = make_view("a", producer, ttl=timedelta(milliseconds=10))
        warmer = CacheWarmer(ViewRegistry([view]), memory_facade, cache_config)

        await warmer.start(interval_seconds=0.05)
        await asyncio.sleep(0.01)
        assert warmer.get_stats()["total_runs"] >= 1

        await asyncio.sleep(0.2)
        await warmer.stop()
        await warmer.wait_idle()

        runs = warmer.get_stats()["total_runs"]
        assert runs >= 3

        await asyncio.sleep(0.15)
        assert warmer.get_stats()["total_runs"] == runs
        assert warmer.is_started is False

    async def test_start_twice_is_noop(self, memory_facade, cache_config):
        warmer = CacheWarmer(ViewRegistry([make_view("a", ok(1))]), memory_facade, cache_config)
        await warmer.start(interval_seconds=10)
        ticker = warmer._ticker
        await warmer.start(interval_seconds=10)
        assert warmer._ticker is ticker
        await warmer.stop()
        await warmer.wait_idle()

    async def test_stop_lets_inflight_cycle_finish(self, memory_facade, cache_config):
        release = asyncio.Event()

        async def blocking():
            await release.wait()
            return {"v": 1}

        warmer = CacheWarmer(ViewRegistry([make_view("a", blocking)]), memory_facade, cache_config)
        await warmer.start(interval_seconds=10)
        await asyncio.sleep(0.01)
        assert warmer.is_running is True

        await warmer.stop()
        release.set()
        await warmer.wait_idle()

        assert await memory_facade.get("a_warmed") == {"v": 1}

    async def test_trigger_ignored_while_running(self, memory_facade, cache_config):
        release = asyncio.Event()

        async def blocking():
            await release.wait()
            return {"v": 1}

        warmer = CacheWarmer(ViewRegistry([make_view("a", blocking)]), memory_facade, cache_config)

        assert await warmer.trigger() is True
        await asyncio.sleep(0.01)
        assert await warmer.trigger() is False

        release.set()
        await warmer.wait_idle()
        assert warmer.get_stats()["total_runs"] == 1

    async def test_back_to_back_triggers(self, memory_facade, cache_config):
        """The second trigger is refused before the first cycle task has run."""
        warmer = CacheWarmer(ViewRegistry([make_view("a", ok(1))]), memory_facade, cache_config)

        first = await warmer.trigger()
        second = await warmer.trigger()
        await warmer.wait_idle()

        assert first is True
        assert second is False
        stats = warmer.get_stats()
        assert stats["total_runs"] == 1
        assert stats["skipped_runs"] == 1
        assert warmer.is_running is False

    async def test_tick_after_trigger_is_skipped(self, memory_facade, cache_config):
        warmer = CacheWarmer(ViewRegistry([make_view("a", ok(1))]), memory_facade, cache_config)

        assert await warmer.trigger() is True
        await warmer._tick()
        await warmer.wait_idle()

        assert warmer.get_stats()["total_runs"] == 1
        assert warmer.get_stats()["skipped_runs"] == 1

    async def test_health_check_runs_on_its_own_timer(self, memory_facade, cache_config):
        cache_config.health_check_interval_seconds = 0.02
        health_check = AsyncMock(return_value=True)
        warmer = CacheWarmer(
            ViewRegistry([make_view("a", ok(1))]),
            memory_facade,
            cache_config,
            health_check=health_check,
        )

        await warmer.start(interval_seconds=10)
        await asyncio.sleep(0.1)
        await warmer.stop()
        await warmer.wait_idle()

        assert health_check.await_count >= 2

    async def test_default_health_check_reprobes_fallback_store(self, cache_config):
        from src.cache.store import FallbackStore, MemoryStore

        store = FallbackStore(primary=MemoryStore())
        warmer = CacheWarmer(ViewRegistry([make_view("a", ok(1))]), CacheFacade(store, cache_config), cache_config)

        await warmer._health_check()
        assert store.is_redis_available is True
