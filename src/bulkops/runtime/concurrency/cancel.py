"""Cooperative cancellation for bulk runs.

A CancelToken is the external stop signal for a run. Cancelling never
interrupts work already in flight: the pool stops dispatching, lets running
invocations finish and reports everything it never started as unprocessed.
A deadline is just a token that cancels itself after a delay.

Example:
    >>> token = CancelToken()
    >>> result_task = asyncio.create_task(executor.run(items, worker, cancel=token))
    >>> token.cancel("operator requested stop")
    >>> result = await result_task
    >>> result.cancelled
    True
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field


@dataclass(slots=True)
class CancelToken:
    """One-shot cancellation signal shared between caller and pool."""

    reason: str | None = None
    _event: asyncio.Event = field(default_factory=asyncio.Event, repr=False)
    _timer: asyncio.TimerHandle | None = field(default=None, repr=False)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> bool:
        """Signal cancellation. Returns False if already cancelled."""
        if self._event.is_set():
            return False
        self.reason = reason
        self._event.set()
        self._clear_timer()
        return True

    def cancel_after(self, delay: float, reason: str = "deadline exceeded") -> None:
        """Arm a deadline on the running loop."""
        self._clear_timer()
        self._timer = asyncio.get_running_loop().call_later(delay, self.cancel, reason)

    async def wait(self) -> None:
        await self._event.wait()

    async def sleep(self, delay: float) -> bool:
        """Sleep up to ``delay`` seconds. Returns True if cancelled meanwhile."""
        if self.cancelled:
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except TimeoutError:
            return False
        return True

    def _clear_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def dispose(self) -> None:
        """Disarm any pending deadline."""
        self._clear_timer()
