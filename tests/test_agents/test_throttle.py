"""Tests for per-agent request throttling."""

from __future__ import annotations

import pytest

from aicollab.agents.throttle import SlidingWindow


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class TestSlidingWindow:
    @pytest.mark.asyncio
    async def test_waits_for_oldest_request_to_leave_window(self):
        clock = FakeClock()
        window = SlidingWindow(2, clock=clock, sleep=clock.sleep)
        await window.acquire()
        clock.now = 10.0
        await window.acquire()
        await window.acquire()
        assert clock.sleeps == [50.0]
        assert window.count_in_window() == 2

    @pytest.mark.asyncio
    async def test_under_limit_never_sleeps(self):
        clock = FakeClock()
        window = SlidingWindow(3, clock=clock, sleep=clock.sleep)
        for _ in range(3):
            await window.acquire()
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_zero_disables(self):
        clock = FakeClock()
        window = SlidingWindow(0, clock=clock, sleep=clock.sleep)
        for _ in range(100):
            await window.acquire()
        assert clock.sleeps == []
        assert window.count_in_window() == 0

    def test_old_requests_expire(self):
        clock = FakeClock()
        window = SlidingWindow(5, clock=clock, sleep=clock.sleep)
        window._timestamps.extend([0.0, 30.0])
        clock.now = 61.0
        assert window.count_in_window() == 1
