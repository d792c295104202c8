"""
Cluster Observer - Cancellation.

Cooperative cancellation signal threaded through a cycle.
Checked at the defined suspension points: before the snapshot
fetch, before each evaluation in the description walk, before
each provider call and before each HTTP send.
"""

import asyncio
import threading
from typing import List, Optional, Tuple

from .exceptions import CycleCancelledError


class CancellationToken:
    """
    Cancellation signal shared between a host and an observer cycle.

    Safe to cancel from another thread (e.g. a signal handler).
    Waiters are woken through their own event loop.
    """

    def __init__(self) -> None:
        self._cancelled = threading.Event()
        self._reason: Optional[str] = None
        self._lock = threading.Lock()
        self._waiters: List[Tuple[asyncio.AbstractEventLoop, asyncio.Event]] = []

    @property
    def is_cancellation_requested(self) -> bool:
        """Whether cancellation was requested."""
        return self._cancelled.is_set()

    @property
    def reason(self) -> Optional[str]:
        """Reason given to cancel(), if any."""
        return self._reason

    def cancel(self, reason: Optional[str] = None) -> None:
        """Request cancellation and wake every pending wait()."""
        with self._lock:
            if self._cancelled.is_set():
                return
            self._reason = reason
            self._cancelled.set()
            waiters, self._waiters = self._waiters, []

        for loop, event in waiters:
            if not loop.is_closed():
                loop.call_soon_threadsafe(event.set)

    def raise_if_cancellation_requested(self) -> None:
        """Raise CycleCancelledError once cancellation was requested."""
        if self._cancelled.is_set():
            raise CycleCancelledError(
                f"Observer cycle cancelled: {self._reason}" if self._reason else "Observer cycle cancelled"
            )

    async def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Sleep until cancelled or the timeout elapses.

        Returns:
            True if cancellation was requested
        """
        event = asyncio.Event()
        waiter = (asyncio.get_running_loop(), event)

        with self._lock:
            if self._cancelled.is_set():
                return True
            self._waiters.append(waiter)

        try:
            await asyncio.wait_for(event.wait(), timeout)
        except asyncio.TimeoutError:
            pass
        finally:
            with self._lock:
                if waiter in self._waiters:
                    self._waiters.remove(waiter)

        return self._cancelled.is_set()


class _NeverCancelledToken(CancellationToken):
    """Token used when the caller supplies none."""

    def cancel(self, reason: Optional[str] = None) -> None:
        return None


NONE = _NeverCancelledToken()


def ensure_token(token: Optional[CancellationToken]) -> CancellationToken:
    """Return the given token or the never-cancelled one."""
    return token if token is not None else NONE
