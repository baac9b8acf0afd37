"""Wait-time schedules between retries of a failed task.

``attempt`` is the 1-based number of the retry about to happen, so with
the executor defaults (2 s base, doubling) a task waits 2, 4, then 8 s.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@runtime_checkable
class Backoff(Protocol):
    def delay(self, attempt: int) -> float: ...


def _capped(seconds: float, ceiling: float | None) -> float:
    return seconds if ceiling is None else min(seconds, ceiling)


@dataclass(frozen=True, slots=True)
class ExponentialBackoff:
    """``base * multiplier ** (attempt - 1)``, optionally capped at ``max_delay``.

    With ``jitter`` the result is scaled by a random factor in [0.5, 1.5) so
    tasks that failed together do not all come back together.
    """

    base: float = 1.0
    max_delay: float | None = None
    multiplier: float = 2.0
    jitter: bool = False

    def delay(self, attempt: int) -> float:
        seconds = _capped(self.base * self.multiplier ** max(attempt - 1, 0), self.max_delay)
        if not self.jitter:
            return seconds
        return seconds * random.uniform(0.5, 1.5)


@dataclass(frozen=True, slots=True)
class LinearBackoff:
    base: float = 1.0
    increment: float = 1.0
    max_delay: float = 30.0

    def delay(self, attempt: int) -> float:
        return _capped(self.base + self.increment * max(attempt - 1, 0), self.max_delay)


@dataclass(frozen=True, slots=True)
class ConstantBackoff:
    """Same wait every time, e.g. a provider's documented cooldown."""

    delay_seconds: float = 1.0

    def delay(self, attempt: int) -> float:
        return self.delay_seconds
