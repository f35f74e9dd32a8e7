"""
tests/test_utils/test_rate_limit.py — RateLimiter window and concurrency ceilings.

A fake clock whose sleep advances time keeps the tests instant.
"""

from __future__ import annotations

import asyncio

import pytest

from boxrates_pipeline.utils.rate_limit import RateLimiter


class FakeTime:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def clock(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay


@pytest.fixture
def fake_time() -> FakeTime:
    return FakeTime()


class TestRateLimiter:
    @pytest.mark.asyncio
    async def test_calls_within_budget_do_not_wait(self, fake_time):
        limiter = RateLimiter(max_calls=3, window_s=60, clock=fake_time.clock, sleep=fake_time.sleep)

        for _ in range(3):
            async with limiter:
                pass

        assert fake_time.sleeps == []
        assert limiter.snapshot().calls_in_window == 3

    @pytest.mark.asyncio
    async def test_over_budget_waits_for_window(self, fake_time):
        limiter = RateLimiter(max_calls=2, window_s=60, clock=fake_time.clock, sleep=fake_time.sleep)

        async with limiter:
            pass
        fake_time.now = 10.0
        async with limiter:
            pass
        async with limiter:
            pass

        assert fake_time.sleeps == [50.0]
        assert fake_time.now == 60.0

    @pytest.mark.asyncio
    async def test_window_expiry_frees_budget(self, fake_time):
        limiter = RateLimiter(max_calls=1, window_s=5, clock=fake_time.clock, sleep=fake_time.sleep)

        async with limiter:
            pass
        fake_time.now = 5.0
        async with limiter:
            pass

        assert fake_time.sleeps == []

    @pytest.mark.asyncio
    async def test_concurrency_ceiling(self):
        limiter = RateLimiter(max_concurrent=2, max_calls=100)
        peak = 0
        active = 0

        async def worker() -> None:
            nonlocal peak, active
            async with limiter:
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0)
                active -= 1

        await asyncio.gather(*(worker() for _ in range(6)))

        assert peak == 2
        assert limiter.snapshot().in_flight == 0

    @pytest.mark.asyncio
    async def test_slot_released_on_error(self, fake_time):
        limiter = RateLimiter(max_concurrent=1, clock=fake_time.clock, sleep=fake_time.sleep)

        with pytest.raises(RuntimeError):
            async with limiter:
                raise RuntimeError("boom")

        async with limiter:
            assert limiter.snapshot().in_flight == 1

    def test_rejects_non_positive_ceilings(self):
        with pytest.raises(ValueError):
            RateLimiter(max_calls=0)
        with pytest.raises(ValueError):
            RateLimiter(window_s=0)
