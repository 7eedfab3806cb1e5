"""
Circuit breaker for ESPN API calls.

Prevents a struggling ESPN endpoint from being hammered by every record of a
sync run. Uses the pybreaker library.

Circuit Breaker States:
- CLOSED: Requests pass through normally
- OPEN: Requests fail immediately (after fail_max failures)
- HALF_OPEN: One request allowed to test if service has recovered
"""
from pybreaker import CircuitBreaker, CircuitBreakerError
from typing import Any, Awaitable, Callable, TypeVar

from rostersync.core.logging import get_logger
from rostersync.services.core.rate_limiter import QueueTimeoutError
from rostersync.services.sync.cancellation import SyncCancelledError

logger = get_logger(__name__)

# Default circuit breaker configuration
DEFAULT_FAIL_MAX = 5  # Number of failures before opening circuit
DEFAULT_RESET_TIMEOUT = 60  # Seconds before attempting to close circuit

# Local outcomes, not ESPN failures: a cancelled run or a full rate-limit queue
NOT_SOURCE_FAILURES = [SyncCancelledError, QueueTimeoutError]

T = TypeVar("T")


espn_api_breaker = CircuitBreaker(
    fail_max=DEFAULT_FAIL_MAX,
    reset_timeout=DEFAULT_RESET_TIMEOUT,
    exclude=NOT_SOURCE_FAILURES,
    name="espn_api",
)


def get_breaker_state(breaker: CircuitBreaker) -> str:
    """
    Get the current state of a circuit breaker.

    Returns:
        State string: 'closed', 'open', or 'half-open'
    """
    return breaker.current_state


def new_breaker(name: str, fail_max: int = DEFAULT_FAIL_MAX, reset_timeout: int = DEFAULT_RESET_TIMEOUT) -> CircuitBreaker:
    """Create an independent breaker (one per client instance, or per test)."""
    return CircuitBreaker(fail_max=fail_max, reset_timeout=reset_timeout, exclude=NOT_SOURCE_FAILURES, name=name)


async def call_with_breaker(
    breaker: CircuitBreaker,
    func: Callable[..., Awaitable[T]],
    *args: Any,
    **kwargs: Any,
) -> T:
    """
    Await ``func(*args, **kwargs)`` under circuit breaker protection.

    A raised exception counts as a failure unless it is listed in
    ``NOT_SOURCE_FAILURES``; once ``fail_max`` failures pile up, calls fail fast
    with ``CircuitBreakerError`` until the reset timeout.

    Example:
        payload = await call_with_breaker(espn_api_breaker, client.get_json, url)
    """
    try:
        with breaker.calling():
            return await func(*args, **kwargs)
    except CircuitBreakerError:
        logger.warning(f"Circuit breaker '{breaker.name}' is {breaker.current_state} - call to {func.__name__} rejected")
        raise

