import asyncio

from vidchat.utils.rate_limiter import FixedWindowRateLimiter


def test_try_acquire_admits_until_ceiling(fake_clock):
    limiter = FixedWindowRateLimiter(limit=3, window_seconds=60, safety_margin_seconds=0.5, clock=fake_clock)

    assert [limiter.try_acquire() for _ in range(3)] == [0.0, 0.0, 0.0]
    wait = limiter.try_acquire()

    assert wait == 60.5
    assert limiter.request_count == 3


def test_window_resets_after_expiry(fake_clock):
    limiter = FixedWindowRateLimiter(limit=1, window_seconds=60, clock=fake_clock)
    limiter.try_acquire()

    fake_clock.advance(61)

    assert limiter.try_acquire() == 0.0
    assert limiter.request_count == 1


def test_acquire_suspends_instead_of_failing(fake_clock):
    limiter = FixedWindowRateLimiter(limit=1, window_seconds=60, clock=fake_clock, sleep=fake_clock.sleep)

    async def run():
        first = await limiter.acquire()
        second = await limiter.acquire()
        return first, second

    first, second = asyncio.run(run())

    assert first == 0.0
    assert second > 60
    assert limiter.get_stats()["rate_limit_hits"] == 1
    assert limiter.total_requests == 2
