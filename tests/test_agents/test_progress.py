"""Tests for progress estimation and the TTL cache."""

from __future__ import annotations

import pytest

from aicollab.agents.cache import TTLCache
from aicollab.agents.progress import ProgressMonitor, estimate_duration
from aicollab.tasks.capabilities import Capability
from aicollab.tasks.models import Task, TaskPriority


class FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestEstimateDuration:
    def test_priority_scales_base(self):
        assert estimate_duration(Task(query="", priority=TaskPriority.CRITICAL)) == 5.0
        assert estimate_duration(Task(query="", priority=TaskPriority.LOW)) == 20.0

    def test_capabilities_and_length(self):
        task = Task(
            query="x" * 500,
            required_capabilities={Capability.CODE_GENERATION, Capability.TEXT_ANALYSIS},
        )
        assert estimate_duration(task) == pytest.approx(15.0 * 1.5 * 1.2 * 1.5)

    def test_query_length_capped(self):
        assert estimate_duration(Task(query="x" * 5000)) == pytest.approx(30.0)


class TestProgressMonitor:
    def test_progress_is_clamped(self):
        monitor = ProgressMonitor("t", 10.0, clock=FakeClock())
        monitor.update_progress("Generating", 1.7)
        assert monitor.progress == 1.0
        monitor.update_progress("Oops", -0.5)
        assert monitor.progress == 0.0
        assert monitor.status == "Oops"

    def test_remaining_before_progress_uses_expectation(self):
        clock = FakeClock()
        monitor = ProgressMonitor("t", 10.0, clock=clock)
        clock.now += 4
        assert monitor.elapsed_time == 4
        assert monitor.estimated_time_remaining == 6

    def test_remaining_extrapolates_from_progress(self):
        clock = FakeClock()
        monitor = ProgressMonitor("t", 10.0, clock=clock)
        clock.now += 2
        monitor.update_progress("Generating", 0.25)
        assert monitor.estimated_time_remaining == pytest.approx(6.0)

    def test_done_means_zero_remaining(self):
        monitor = ProgressMonitor("t", 10.0, clock=FakeClock())
        monitor.update_progress("Completed", 1.0)
        assert monitor.estimated_time_remaining == 0.0

    def test_nearly_done_means_zero_remaining(self):
        clock = FakeClock()
        monitor = ProgressMonitor("t", 10.0, clock=clock)
        clock.now += 5
        monitor.update_progress("Postprocessing", 0.99)
        assert monitor.estimated_time_remaining == 0.0


class TestTTLCache:
    def test_expiry(self):
        clock = FakeClock()
        cache: TTLCache[str] = TTLCache(ttl=10, max_entries=5, clock=clock)
        cache.put("k", "v")
        assert cache.get("k") == "v"
        clock.now += 10
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_evicts_oldest_timestamp(self):
        clock = FakeClock()
        cache: TTLCache[int] = TTLCache(ttl=100, max_entries=2, clock=clock)
        cache.put("a", 1)
        clock.now += 1
        cache.put("b", 2)
        clock.now += 1
        cache.put("c", 3)
        assert "a" not in cache
        assert "b" in cache and "c" in cache

    def test_clear(self):
        cache: TTLCache[int] = TTLCache(ttl=100, max_entries=2)
        cache.put("a", 1)
        cache.clear()
        assert len(cache) == 0
