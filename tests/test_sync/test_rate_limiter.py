"""Unit tests for the sliding-window RateLimiter.

Test Strategy:
1. Test back-to-back calls beyond the window limit are delayed
2. Test the window never holds more than max_requests timestamps
3. Test queue timeouts surface as QueueTimeoutError
4. Test cancellation aborts a window wait and frees the admission slot
5. Test status snapshots and reset

Real-time tests use windows of a second or less; snapshot tests use an
injected clock.
"""
import asyncio
import time

import pytest

from rostersync.services.core.rate_limiter import (
    QueueTimeoutError,
    RateLimitConfig,
    RateLimiter,
)
from rostersync.services.sync.cancellation import CancellationToken, SyncCancelledError


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def spy_on_reservations(limiter: RateLimiter) -> list:
    """Record the timestamp of every request the window accepts."""
    recorded = []
    window = limiter._window
    original = window.reserve

    def reserve(max_requests):
        wait = original(max_requests)
        if wait <= 0:
            recorded.append(window._timestamps[-1])
        return wait

    window.reserve = reserve
    return recorded


class TestRateLimitConfig:
    """Test suite for limiter configuration."""

    def test_defaults(self):
        """Should default to 100 requests per 60s with a burst of 10."""
        config = RateLimitConfig()
        assert config.max_requests == 100
        assert config.time_window_seconds == 60.0
        assert config.burst_allowance == 10
        assert config.queue_timeout_ms == 5000

    @pytest.mark.parametrize("field", ["max_requests", "time_window_seconds", "burst_allowance"])
    def test_rejects_non_positive_values(self, field):
        """Should refuse zero limits."""
        with pytest.raises(ValueError):
            RateLimitConfig(**{field: 0})


class TestWaitForRequest:
    """Test suite for admission and window waits."""

    # Window Tests
    # ─────────────────────────────────────────────────────────────

    @pytest.mark.asyncio
    async def test_sixth_call_waits_for_window(self):
        """Should delay the 6th of 6 back-to-back calls until a second after the 1st."""
        limiter = RateLimiter(RateLimitConfig(max_requests=5, time_window_seconds=1.0, burst_allowance=5))

        started = time.monotonic()
        for _ in range(5):
            await limiter.wait_for_request()
        assert time.monotonic() - started < 0.5

        await limiter.wait_for_request()
        assert time.monotonic() - started >= 1.0

    @pytest.mark.asyncio
    async def test_window_never_exceeds_max_requests(self):
        """Should keep at most max_requests timestamps in any trailing window under concurrency."""
        window = 0.3
        limiter = RateLimiter(RateLimitConfig(max_requests=3, time_window_seconds=window, burst_allowance=2))
        recorded = spy_on_reservations(limiter)

        await asyncio.gather(*(limiter.wait_for_request() for _ in range(7)))

        assert len(recorded) == 7
        recorded.sort()
        for i in range(len(recorded) - 3):
            assert recorded[i + 3] - recorded[i] >= window

    @pytest.mark.asyncio
    async def test_immediate_when_window_has_room(self):
        """Should not wait while the window has room."""
        clock = FakeClock()
        limiter = RateLimiter(RateLimitConfig(max_requests=2, time_window_seconds=60), clock=clock)

        await asyncio.wait_for(limiter.wait_for_request(), timeout=0.5)
        await asyncio.wait_for(limiter.wait_for_request(), timeout=0.5)

        assert limiter.get_status().total_requests == 2

    # Queue Timeout Tests
    # ─────────────────────────────────────────────────────────────

    @pytest.mark.asyncio
    async def test_queue_timeout_raises(self):
        """Should raise QueueTimeoutError when no admission slot frees up in time."""
        limiter = RateLimiter(RateLimitConfig(burst_allowance=1, queue_timeout_ms=50))
        await limiter._gate.acquire()

        with pytest.raises(QueueTimeoutError):
            await limiter.wait_for_request()

        limiter._gate.release()
        await limiter.wait_for_request()

    # Cancellation Tests
    # ─────────────────────────────────────────────────────────────

    @pytest.mark.asyncio
    async def test_cancelled_token_aborts_window_wait(self):
        """Should stop waiting for the window once the token is cancelled."""
        limiter = RateLimiter(RateLimitConfig(max_requests=1, time_window_seconds=60, burst_allowance=1))
        await limiter.wait_for_request()

        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.05, token.cancel, "stop")

        started = time.monotonic()
        with pytest.raises(SyncCancelledError):
            await limiter.wait_for_request(token)
        assert time.monotonic() - started < 1.0

    @pytest.mark.asyncio
    async def test_cancellation_frees_admission_slot(self):
        """Should leave the burst gate free after a cancelled wait."""
        limiter = RateLimiter(
            RateLimitConfig(max_requests=1, time_window_seconds=60, burst_allowance=1, queue_timeout_ms=100)
        )
        await limiter.wait_for_request()

        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.02, token.cancel)
        with pytest.raises(SyncCancelledError):
            await limiter.wait_for_request(token)

        limiter.reset()
        await limiter.wait_for_request()

    @pytest.mark.asyncio
    async def test_cancelled_token_aborts_queue_wait(self):
        """Should raise SyncCancelledError, not a queue timeout, while waiting for a burst slot."""
        limiter = RateLimiter(RateLimitConfig(burst_allowance=1, queue_timeout_ms=2000))
        await limiter._gate.acquire()

        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.05, token.cancel, "stop")

        started = time.monotonic()
        with pytest.raises(SyncCancelledError):
            await limiter.wait_for_request(token)
        assert time.monotonic() - started < 1.0
        assert limiter.get_status().total_requests == 0

        limiter._gate.release()
        await asyncio.wait_for(limiter.wait_for_request(), timeout=0.5)

    @pytest.mark.asyncio
    async def test_queue_timeout_with_live_token(self):
        """Should still report a queue timeout when the token is never cancelled."""
        limiter = RateLimiter(RateLimitConfig(burst_allowance=1, queue_timeout_ms=50))
        await limiter._gate.acquire()

        with pytest.raises(QueueTimeoutError):
            await limiter.wait_for_request(CancellationToken())

        limiter._gate.release()
        await asyncio.wait_for(limiter.wait_for_request(), timeout=0.5)

    @pytest.mark.asyncio
    async def test_already_cancelled_token_never_records(self):
        """Should raise before recording anything when the token is already cancelled."""
        limiter = RateLimiter()
        token = CancellationToken()
        token.cancel()

        with pytest.raises(SyncCancelledError):
            await limiter.wait_for_request(token)
        assert limiter.get_status().total_requests == 0


class TestRateLimiterStatus:
    """Test suite for can_make_request, get_status and reset."""

    @pytest.mark.asyncio
    async def test_status_counts_live_requests(self):
        """Should report used and remaining requests for the live window."""
        clock = FakeClock()
        limiter = RateLimiter(RateLimitConfig(max_requests=3, time_window_seconds=10), clock=clock)

        await limiter.wait_for_request()
        clock.advance(4)
        await limiter.wait_for_request()

        status = limiter.get_status()
        assert status.total_requests == 2
        assert status.requests_remaining == 1
        assert status.is_limited is False
        assert status.time_until_reset.total_seconds() == pytest.approx(6.0)

    @pytest.mark.asyncio
    async def test_expired_requests_drop_out(self):
        """Should stop counting a request exactly one window after it was made."""
        clock = FakeClock()
        limiter = RateLimiter(RateLimitConfig(max_requests=1, time_window_seconds=10), clock=clock)

        await limiter.wait_for_request()
        assert limiter.can_make_request() is False
        assert limiter.get_status().is_limited is True

        clock.advance(10)
        assert limiter.can_make_request() is True
        assert limiter.get_status().total_requests == 0

    @pytest.mark.asyncio
    async def test_status_does_not_record_requests(self):
        """Should leave the window untouched when only querying it."""
        limiter = RateLimiter(RateLimitConfig(max_requests=2))

        for _ in range(5):
            assert limiter.can_make_request() is True
            limiter.get_status()

        assert limiter.get_status().total_requests == 0

    @pytest.mark.asyncio
    async def test_reset_clears_window(self):
        """Should forget every recorded request."""
        limiter = RateLimiter(RateLimitConfig(max_requests=1, time_window_seconds=60))
        await limiter.wait_for_request()
        assert limiter.can_make_request() is False

        limiter.reset()

        assert limiter.can_make_request() is True
        status = limiter.get_status()
        assert status.requests_remaining == 1
        assert status.time_until_reset.total_seconds() == 0

    def test_status_to_dict(self):
        """Should render the status as plain JSON-friendly values."""
        data = RateLimiter(RateLimitConfig(max_requests=7)).get_status().to_dict()

        assert data["requests_remaining"] == 7
        assert data["total_requests"] == 0
        assert data["is_limited"] is False
        assert isinstance(data["window_start"], str)
