"""
Test token bucket rate limiting
"""
import pytest

from tripmate.services.rate_limiter import RateLimiter


@pytest.fixture
def limiter(clock, sleep):
    return RateLimiter("openweathermap", max_tokens=2, refill_rate=1.0, clock=clock, sleep=sleep)


class TestTokenBucket:
    def test_starts_full(self, limiter):
        assert limiter.available_tokens == 2

    def test_try_acquire_depletes_bucket(self, limiter):
        assert limiter.try_acquire() is True
        assert limiter.try_acquire() is True
        assert limiter.try_acquire() is False
        assert limiter.tokens == 0

    def test_refill_is_proportional_to_elapsed_time(self, limiter, clock):
        limiter.try_acquire(2)
        clock.advance(0.5)
        assert limiter.available_tokens == pytest.approx(0.5)

    def test_refill_never_exceeds_capacity(self, limiter, clock):
        limiter.try_acquire()
        clock.advance(3600)
        assert limiter.available_tokens == 2

    def test_wait_time(self, limiter, clock):
        """Wait time is the deficit divided by the refill rate"""
        assert limiter.wait_time() == 0.0
        limiter.try_acquire(2)
        assert limiter.wait_time() == pytest.approx(1.0)
        clock.advance(0.25)
        assert limiter.wait_time() == pytest.approx(0.75)

    def test_reset_refills(self, limiter):
        limiter.try_acquire(2)
        limiter.reset()
        assert limiter.tokens == 2


class TestAcquire:
    @pytest.mark.asyncio
    async def test_acquire_without_waiting(self, limiter, sleep):
        assert await limiter.acquire() is True
        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_acquire_waits_for_deficit(self, limiter, sleep):
        """An empty bucket suspends the caller for exactly the refill time"""
        await limiter.acquire()
        await limiter.acquire()
        assert await limiter.acquire() is True

        assert sleep.calls == [pytest.approx(1.0)]
        assert limiter.tokens == pytest.approx(0)

    @pytest.mark.asyncio
    async def test_faster_refill_means_shorter_wait(self, clock, sleep):
        limiter = RateLimiter("booking", max_tokens=1, refill_rate=5.0, clock=clock, sleep=sleep)
        await limiter.acquire()
        await limiter.acquire()
        assert sleep.calls == [pytest.approx(0.2)]

    @pytest.mark.asyncio
    async def test_acquire_more_than_capacity_is_rejected(self, limiter):
        with pytest.raises(ValueError):
            await limiter.acquire(3)

    @pytest.mark.asyncio
    async def test_acquire_non_positive_is_rejected(self, limiter):
        with pytest.raises(ValueError):
            await limiter.acquire(0)


class TestConfiguration:
    @pytest.mark.parametrize("max_tokens,refill_rate", [(0, 1.0), (10, 0), (-1, 1.0)])
    def test_invalid_configuration(self, max_tokens, refill_rate):
        with pytest.raises(ValueError):
            RateLimiter("x", max_tokens=max_tokens, refill_rate=refill_rate)

    def test_status(self, limiter):
        limiter.try_acquire()
        status = limiter.get_status()
        assert status == {
            "service_id": "openweathermap",
            "tokens": 1.0,
            "max_tokens": 2.0,
            "refill_rate": 1.0,
        }
