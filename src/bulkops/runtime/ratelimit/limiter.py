"""Minimum-spacing rate limiter shared by all pool members.

Unlike a windowed token bucket, this limiter enforces a fixed gap between
successive dispatches: the remote service limits request *rate* regardless
of how many requests are in flight.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Awaitable, Callable

if TYPE_CHECKING:
    from bulkops.runtime.concurrency.cancel import CancelToken


@dataclass(slots=True)
class RateLimiter:
    """Spacing limiter with a single "next allowed time" cursor.

    Each acquire() reserves the next free slot under a lock and advances the
    cursor by ``interval``, then sleeps outside the lock until its slot
    arrives. asyncio.Lock wakes waiters in FIFO order, so slots are granted in
    arrival order.

    Args:
        interval: Minimum seconds between granted slots (0 disables throttling)
        clock: Monotonic time source
        sleep: Awaitable sleep, injectable for tests

    Example:
        >>> limiter = RateLimiter(0.5)
        >>> await limiter.acquire()  # immediate
        >>> await limiter.acquire()  # ~0.5s later
    """

    interval: float = 0.0
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False)
    granted: int = field(default=0, init=False)
    total_wait: float = field(default=0.0, init=False)
    _next_at: float | None = field(default=None, init=False, repr=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.interval < 0:
            raise ValueError("interval must be >= 0")

    @property
    def enabled(self) -> bool:
        return self.interval > 0

    async def acquire(self, cancel: CancelToken | None = None) -> float:
        """Wait for the next dispatch slot. Returns seconds reserved.

        A ``cancel`` token cuts the wait short; the caller checks it before
        dispatching.
        """
        if not self.enabled:
            self.granted += 1
            return 0.0
        async with self._lock:
            now = self.clock()
            slot = now if self._next_at is None else max(now, self._next_at)
            self._next_at = slot + self.interval
            self.granted += 1
        if (wait := slot - now) > 0:
            self.total_wait += wait
            if cancel is None:
                await self.sleep(wait)
            else:
                await self._sleep_unless_cancelled(wait, cancel)
        return max(wait, 0.0)

    async def _sleep_unless_cancelled(self, wait: float, cancel: CancelToken) -> None:
        if cancel.cancelled:
            return
        sleeper = asyncio.ensure_future(self.sleep(wait))
        stopper = asyncio.ensure_future(cancel.wait())
        try:
            await asyncio.wait({sleeper, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            sleeper.cancel()
            stopper.cancel()

    def reset(self) -> None:
        """Forget the cursor so the next acquire() is granted immediately."""
        self._next_at = None
