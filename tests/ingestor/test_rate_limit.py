"""Tests for rate limiters."""

import time

import pytest

from token_snapshot_pipeline.ingestor.rate_limit import RateLimiter, SlidingWindowRateLimiter


class FakeTime:
    """Monotonic clock whose sleep just advances time."""

    def __init__(self) -> None:
        self.now = 1_000.0
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def fake_time() -> FakeTime:
    return FakeTime()


class TestRateLimiter:
    """Tests for the minimum-spacing limiter."""

    @pytest.mark.asyncio
    async def test_first_call_does_not_wait(self) -> None:
        """First call should be nearly instant."""
        limiter = RateLimiter(max_requests_per_second=10)
        start = time.monotonic()
        await limiter.acquire()
        assert time.monotonic() - start < 0.05

    @pytest.mark.asyncio
    async def test_enforces_spacing(self) -> None:
        """Back-to-back calls are spaced by the minimum interval."""
        limiter = RateLimiter(max_requests_per_second=10)
        await limiter.acquire()
        start = time.monotonic()
        await limiter.acquire()
        assert time.monotonic() - start >= 0.08


class TestSlidingWindowRateLimiter:
    """Tests for the windowed limiter."""

    @pytest.mark.asyncio
    async def test_under_limit_never_sleeps(self, fake_time: FakeTime) -> None:
        limiter = SlidingWindowRateLimiter(5, 60, monotonic=fake_time.monotonic, sleep=fake_time.sleep)
        for _ in range(5):
            assert await limiter.acquire() == 0.0
        assert limiter.in_window == 5
        assert fake_time.sleeps == []

    @pytest.mark.asyncio
    async def test_full_window_waits_for_oldest(self, fake_time: FakeTime) -> None:
        """The sixth request waits until the first leaves the window."""
        limiter = SlidingWindowRateLimiter(5, 60, monotonic=fake_time.monotonic, sleep=fake_time.sleep)
        await limiter.acquire()
        fake_time.now += 10
        await limiter.acquire(4)

        waited = await limiter.acquire()

        assert waited == pytest.approx(50.0)
        assert limiter.total_wait_seconds == pytest.approx(50.0)
        assert limiter.in_window == 5

    @pytest.mark.asyncio
    async def test_batch_acquire_counts_every_slot(self, fake_time: FakeTime) -> None:
        limiter = SlidingWindowRateLimiter(10, 60, monotonic=fake_time.monotonic, sleep=fake_time.sleep)
        await limiter.acquire(8)
        assert limiter.wait_time(2) == 0.0
        assert limiter.wait_time(3) == pytest.approx(60.0)

    def test_window_expiry(self, fake_time: FakeTime) -> None:
        limiter = SlidingWindowRateLimiter(2, 60, monotonic=fake_time.monotonic, sleep=fake_time.sleep)
        limiter._timestamps.extend([fake_time.now, fake_time.now])
        fake_time.now += 60
        assert limiter.in_window == 0
        assert limiter.wait_time() == 0.0

    @pytest.mark.asyncio
    async def test_batch_larger_than_window(self, fake_time: FakeTime) -> None:
        """Ten requests through a five-per-minute window take two windows."""
        limiter = SlidingWindowRateLimiter(5, 60, monotonic=fake_time.monotonic, sleep=fake_time.sleep)

        waited = await limiter.acquire(10)

        assert waited == pytest.approx(60.0)
        assert fake_time.sleeps == [pytest.approx(60.0)]
        assert limiter.in_window == 5

    def test_wait_time_caps_count_at_window_size(self, fake_time: FakeTime) -> None:
        limiter = SlidingWindowRateLimiter(5, 60, monotonic=fake_time.monotonic, sleep=fake_time.sleep)
        assert limiter.wait_time(10) == 0.0
        limiter._timestamps.append(fake_time.now)
        assert limiter.wait_time(10) == pytest.approx(60.0)

    def test_rejects_empty_window(self) -> None:
        with pytest.raises(ValueError, match="max_requests"):
            SlidingWindowRateLimiter(0, 60)
