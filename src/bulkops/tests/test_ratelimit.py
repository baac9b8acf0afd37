"""Tests for the dispatch-spacing rate limiter."""

import asyncio

import pytest

from bulkops.runtime.concurrency import CancelToken
from bulkops.runtime.ratelimit import RateLimiter


class FakeClock:
    """Manual monotonic clock; sleeps are recorded, not waited out."""

    def __init__(self) -> None:
        self.now = 100.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_disabled_never_waits() -> None:
    limiter = RateLimiter(0.0)
    assert not limiter.enabled
    assert [await limiter.acquire() for _ in range(5)] == [0.0] * 5
    assert limiter.granted == 5


@pytest.mark.asyncio
async def test_first_slot_immediate_then_spaced() -> None:
    clock = FakeClock()
    limiter = RateLimiter(0.5, clock=clock, sleep=clock.sleep)
    waits = [await limiter.acquire() for _ in range(3)]
    assert waits == [0.0, 0.5, 1.0]
    assert clock.sleeps == [0.5, 1.0]
    assert limiter.total_wait == pytest.approx(1.5)


@pytest.mark.asyncio
async def test_idle_time_is_not_banked() -> None:
    clock = FakeClock()
    limiter = RateLimiter(1.0, clock=clock, sleep=clock.sleep)
    await limiter.acquire()
    clock.now += 10.0
    assert await limiter.acquire() == 0.0
    assert await limiter.acquire() == 1.0


@pytest.mark.asyncio
async def test_concurrent_callers_get_distinct_slots() -> None:
    clock = FakeClock()
    limiter = RateLimiter(0.2, clock=clock, sleep=clock.sleep)
    waits = await asyncio.gather(*(limiter.acquire() for _ in range(4)))
    assert sorted(waits) == pytest.approx([0.0, 0.2, 0.4, 0.6])


@pytest.mark.asyncio
async def test_real_spacing() -> None:
    limiter = RateLimiter(0.02)
    loop = asyncio.get_running_loop()
    stamps = []
    for _ in range(3):
        await limiter.acquire()
        stamps.append(loop.time())
    gaps = [b - a for a, b in zip(stamps, stamps[1:])]
    assert all(g >= 0.015 for g in gaps)


@pytest.mark.asyncio
async def test_reset() -> None:
    clock = FakeClock()
    limiter = RateLimiter(5.0, clock=clock, sleep=clock.sleep)
    await limiter.acquire()
    limiter.reset()
    assert await limiter.acquire() == 0.0


@pytest.mark.asyncio
async def test_cancel_cuts_wait_short() -> None:
    token = CancelToken()
    limiter = RateLimiter(30.0)
    await limiter.acquire(token)
    asyncio.get_running_loop().call_later(0.01, token.cancel)
    assert await asyncio.wait_for(limiter.acquire(token), timeout=1.0) == pytest.approx(30.0, abs=0.1)
    assert token.cancelled


@pytest.mark.asyncio
async def test_already_cancelled_token_skips_wait() -> None:
    clock = FakeClock()
    token = CancelToken()
    token.cancel()
    limiter = RateLimiter(2.0, clock=clock, sleep=clock.sleep)
    await limiter.acquire(token)
    await limiter.acquire(token)
    assert clock.sleeps == []
    assert limiter.granted == 2


def test_negative_interval_rejected() -> None:
    with pytest.raises(ValueError):
        RateLimiter(-1)
