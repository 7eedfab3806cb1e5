"""
Cancellation tokens for sync runs.

A token is threaded through every suspension point of a run (source fetches,
store calls, rate-limit waits, backpressure sleeps). Cancelling it makes the
pending await raise ``SyncCancelledError`` right away instead of letting the
current batch finish.

Tokens can be linked: a run token created from a caller's token is cancelled
when the caller's token is, but cancelling the run token leaves the caller's
token (and therefore later runs) untouched.
"""
import asyncio
import logging
from typing import Awaitable, Optional, Set, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SyncCancelledError(Exception):
    """Raised at a suspension point once the run's token has been cancelled."""


class CancellationToken:
    """Cooperative cancellation signal backed by an ``asyncio.Event``."""

    def __init__(self, parent: Optional["CancellationToken"] = None):
        self._event = asyncio.Event()
        self._reason: Optional[str] = None
        self._children: Set["CancellationToken"] = set()
        self._parent = parent
        self._deadline_handle: Optional[asyncio.TimerHandle] = None

        if parent is not None:
            parent._children.add(self)
            if parent.cancelled:
                self.cancel(parent.reason)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason or "cancelled"

    def cancel(self, reason: str = "cancelled") -> bool:
        """
        Cancel this token and every token linked to it.

        Returns:
            True if this call cancelled the token, False if it already was
        """
        if self._event.is_set():
            return False
        self._reason = reason
        self._event.set()
        if self._deadline_handle is not None:
            self._deadline_handle.cancel()
        for child in list(self._children):
            child.cancel(reason)
        logger.debug(f"Cancellation requested: {reason}")
        return True

    def cancel_after(self, delay: float) -> None:
        """Cancel the token once ``delay`` seconds have passed (run deadline)."""
        loop = asyncio.get_running_loop()
        if self._deadline_handle is not None:
            self._deadline_handle.cancel()
        self._deadline_handle = loop.call_later(delay, self.cancel, f"deadline of {delay:g}s exceeded")

    def link(self) -> "CancellationToken":
        """Create a child token that follows this one."""
        return CancellationToken(parent=self)

    def detach(self) -> None:
        """Stop following the parent token."""
        if self._parent is not None:
            self._parent._children.discard(self)
            self._parent = None
        if self._deadline_handle is not None:
            self._deadline_handle.cancel()
            self._deadline_handle = None

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise SyncCancelledError(self.reason)

    async def wait(self) -> None:
        """Block until the token is cancelled."""
        await self._event.wait()

    async def sleep(self, delay: float) -> None:
        """
        Sleep for ``delay`` seconds, waking early if the token is cancelled.

        Raises:
            SyncCancelledError: If the token is (or becomes) cancelled
        """
        self.raise_if_cancelled()
        if delay <= 0:
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        raise SyncCancelledError(self.reason)

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """
        Await ``awaitable``, abandoning it as soon as the token is cancelled.

        Raises:
            SyncCancelledError: If the token fires before the awaitable completes
        """
        if self._event.is_set():
            # Close the coroutine without running it
            task = asyncio.ensure_future(awaitable)
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            raise SyncCancelledError(self.reason)

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            raise
        waiter.cancel()

        if task.done():
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise SyncCancelledError(self.reason)

    def __repr__(self):
        return f"CancellationToken(cancelled={self.cancelled})"
