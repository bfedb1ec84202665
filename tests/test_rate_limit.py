import asyncio

import pytest

from facetmatch.v1.core.rate_limit import RateLimiter


class FakeClock:
    """Monotonic clock advanced only by the fake sleep."""

    def __init__(self):
        self.now = 100.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay


@pytest.mark.asyncio
async def test_first_acquire_does_not_wait():
    clock = FakeClock()
    limiter = RateLimiter(2.0, clock=clock, sleep=clock.sleep)

    await limiter.acquire()

    assert clock.sleeps == []


@pytest.mark.asyncio
async def test_consecutive_acquisitions_are_spaced():
    clock = FakeClock()
    limiter = RateLimiter(2.0, clock=clock, sleep=clock.sleep)
    stamps = []

    for _ in range(4):
        await limiter.acquire()
        stamps.append(clock.now)

    gaps = [b - a for a, b in zip(stamps, stamps[1:])]
    assert all(gap >= 2.0 for gap in gaps)


@pytest.mark.asyncio
async def test_elapsed_time_counts_toward_interval():
    clock = FakeClock()
    limiter = RateLimiter(2.0, clock=clock, sleep=clock.sleep)

    await limiter.acquire()
    clock.now += 1.5
    await limiter.acquire()

    assert clock.sleeps == [pytest.approx(0.5)]


@pytest.mark.asyncio
async def test_concurrent_callers_queue_behind_the_limiter():
    clock = FakeClock()
    limiter = RateLimiter(1.0, clock=clock, sleep=clock.sleep)
    stamps = []

    async def call():
        async with limiter:
            stamps.append(clock.now)

    await asyncio.gather(*(call() for _ in range(3)))

    assert sorted(stamps) == [100.0, 101.0, 102.0]
