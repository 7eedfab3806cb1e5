"""
Sliding-window rate limiter for outbound ESPN calls.

Two independent constraints are enforced:

1. Burst allowance: at most ``burst_allowance`` callers may be admitted (in flight
   or queued) at once. This is a counting gate with a queue timeout.
2. Sliding window: at most ``max_requests`` request timestamps may fall inside the
   trailing ``time_window_seconds``.

A caller that finds the window full gives its admission slot back while it sleeps
and re-acquires it afterwards, so callers waiting on the window never hold the
burst gate.

Usage:
    limiter = RateLimiter(RateLimitConfig(max_requests=100, time_window_seconds=60))
    await limiter.wait_for_request()
    response = await client.get(url)
"""
import asyncio
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Deque, Optional, Tuple

from rostersync.services.sync.cancellation import CancellationToken, SyncCancelledError

logger = logging.getLogger(__name__)


class QueueTimeoutError(Exception):
    """The admission gate could not be acquired within the queue timeout."""


@dataclass(frozen=True)
class RateLimitConfig:
    """Immutable limiter configuration."""
    max_requests: int = 100
    time_window_seconds: float = 60.0
    burst_allowance: int = 10
    queue_timeout_ms: int = 5000

    def __post_init__(self):
        if self.max_requests <= 0:
            raise ValueError("max_requests must be positive")
        if self.time_window_seconds <= 0:
            raise ValueError("time_window_seconds must be positive")
        if self.burst_allowance <= 0:
            raise ValueError("burst_allowance must be positive")

    @classmethod
    def from_settings(cls, settings=None) -> "RateLimitConfig":
        if settings is None:
            from rostersync.core.config import settings
        return cls(
            max_requests=settings.RATE_LIMIT_MAX_REQUESTS,
            time_window_seconds=settings.RATE_LIMIT_TIME_WINDOW_SECONDS,
            burst_allowance=settings.RATE_LIMIT_BURST_ALLOWANCE,
            queue_timeout_ms=settings.RATE_LIMIT_QUEUE_TIMEOUT_MS,
        )


@dataclass(frozen=True)
class RateLimitStatus:
    """Point-in-time view of the sliding window."""
    requests_remaining: int
    total_requests: int
    window_start: datetime
    window_end: datetime
    time_until_reset: timedelta
    is_limited: bool

    def to_dict(self) -> dict:
        return {
            "requests_remaining": self.requests_remaining,
            "total_requests": self.total_requests,
            "window_start": self.window_start.isoformat(),
            "window_end": self.window_end.isoformat(),
            "time_until_reset_seconds": self.time_until_reset.total_seconds(),
            "is_limited": self.is_limited,
        }


class _SlidingWindow:
    """
    Timestamp queue for the trailing window.

    Each public method performs one whole operation under the lock, so callers
    can never observe or produce a half-purged queue.
    """

    def __init__(self, window_seconds: float, clock: Callable[[], float] = time.monotonic):
        self._window = window_seconds
        self._clock = clock
        self._timestamps: Deque[float] = deque()
        self._lock = threading.Lock()

    def _purge(self, now: float) -> None:
        # A timestamp exactly one window old no longer counts
        cutoff = now - self._window
        while self._timestamps and self._timestamps[0] <= cutoff:
            self._timestamps.popleft()

    def reserve(self, max_requests: int) -> float:
        """
        Record a request if the window has room.

        Returns:
            0.0 if the request was recorded, otherwise the seconds until the
            oldest timestamp leaves the window
        """
        with self._lock:
            now = self._clock()
            self._purge(now)
            if len(self._timestamps) < max_requests:
                self._timestamps.append(now)
                return 0.0
            return self._window - (now - self._timestamps[0])

    def snapshot(self) -> Tuple[int, Optional[float], float]:
        """Count and oldest timestamp inside the window, without purging."""
        with self._lock:
            now = self._clock()
            cutoff = now - self._window
            live = [ts for ts in self._timestamps if ts > cutoff]
            return len(live), (live[0] if live else None), now

    def clear(self) -> None:
        with self._lock:
            self._timestamps.clear()


class RateLimiter:
    """
    Admission control for calls to the external data source.

    Safe to share between concurrent tasks; one instance per source is expected.
    """

    def __init__(self, config: Optional[RateLimitConfig] = None, clock: Callable[[], float] = time.monotonic):
        self.config = config or RateLimitConfig()
        self._window = _SlidingWindow(self.config.time_window_seconds, clock)
        self._gate = asyncio.BoundedSemaphore(self.config.burst_allowance)

    async def _acquire_slot(self, token: Optional[CancellationToken] = None) -> None:
        """
        Take one admission slot, racing the queue timeout and ``token``.

        Raises:
            QueueTimeoutError: If no slot frees up within the queue timeout
            SyncCancelledError: If ``token`` is cancelled first
        """
        timeout = self.config.queue_timeout_ms / 1000
        if token is None:
            try:
                await asyncio.wait_for(self._gate.acquire(), timeout=timeout)
            except asyncio.TimeoutError:
                self._raise_queue_timeout()
            return

        token.raise_if_cancelled()
        acquire = asyncio.ensure_future(self._gate.acquire())
        waiter = asyncio.ensure_future(token.wait())
        try:
            await asyncio.wait({acquire, waiter}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            waiter.cancel()
            await self._abandon(acquire)
            raise
        waiter.cancel()

        if acquire.done():
            return

        await self._abandon(acquire)
        if token.cancelled:
            raise SyncCancelledError(token.reason)
        self._raise_queue_timeout()

    async def _abandon(self, acquire: "asyncio.Future[bool]") -> None:
        # A slot granted while the acquire was being cancelled goes straight back
        acquire.cancel()
        await asyncio.gather(acquire, return_exceptions=True)
        if not acquire.cancelled() and acquire.exception() is None:
            self._gate.release()

    def _raise_queue_timeout(self) -> None:
        logger.warning(f"Rate limiter queue timeout after {self.config.queue_timeout_ms}ms")
        raise QueueTimeoutError(
            f"Could not acquire a request slot within {self.config.queue_timeout_ms}ms"
        )

    async def wait_for_request(self, token: Optional[CancellationToken] = None) -> None:
        """
        Block until a request may be sent, then record it.

        Args:
            token: Optional cancellation token; cancelling it aborts the wait

        Raises:
            QueueTimeoutError: If the admission gate is not granted in time
            SyncCancelledError: If ``token`` is cancelled while waiting
        """
        if token is not None:
            token.raise_if_cancelled()

        await self._acquire_slot(token)
        holding = True
        try:
            while True:
                wait = self._window.reserve(self.config.max_requests)
                if wait <= 0:
                    return

                logger.debug(f"Rate limit window full, waiting {wait * 1000:.0f}ms")
                self._gate.release()
                holding = False

                if token is not None:
                    await token.sleep(wait)
                else:
                    await asyncio.sleep(wait)

                await self._acquire_slot(token)
                holding = True
        finally:
            if holding:
                self._gate.release()

    def can_make_request(self) -> bool:
        """True if the sliding window currently has room. Never changes state."""
        count, _, _ = self._window.snapshot()
        return count < self.config.max_requests

    def get_status(self) -> RateLimitStatus:
        """Build a status snapshot from the live window."""
        count, oldest, now = self._window.snapshot()
        window = self.config.time_window_seconds

        if oldest is None:
            until_reset = 0.0
        else:
            until_reset = max(0.0, window - (now - oldest))

        wall_now = datetime.utcnow()
        return RateLimitStatus(
            requests_remaining=max(0, self.config.max_requests - count),
            total_requests=count,
            window_start=wall_now - timedelta(seconds=window),
            window_end=wall_now,
            time_until_reset=timedelta(seconds=until_reset),
            is_limited=count >= self.config.max_requests,
        )

    def reset(self) -> None:
        """Forget every recorded request. Administrative; not meant for use mid-run."""
        self._window.clear()
        logger.info("Rate limiter window reset")
