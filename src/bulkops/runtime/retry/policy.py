"""Retry policy for failed units of work.

Decides, for a failed task attempt, whether to retry and how long to wait.
All errors are retryable by default; errors marked permanent by the worker
function (PermanentError, or any exception with ``retryable = False``)
bypass the policy and fail immediately.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated, Callable

from pydantic import BaseModel, ConfigDict, Field, computed_field

from bulkops.foundation.errors import is_permanent

from .backoff import Backoff, ExponentialBackoff

if TYPE_CHECKING:
    from bulkops.runtime.batch.models import BatchOperationConfig


class RetryPolicy(BaseModel):
    """How often a failing task is re-run and how long it waits in between.

    ``retry_on`` can narrow which errors are worth another attempt; it is
    never consulted for permanent errors.

    Example:
        >>> policy = RetryPolicy(max_retries=3, backoff=ExponentialBackoff(base=2.0))
        >>> policy.should_retry(1, TimeoutError("slow"))
        True
        >>> policy.delay_for(3)
        8.0
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True, extra="forbid")

    max_retries: Annotated[int, Field(ge=0)] = 3
    backoff: Backoff = Field(default_factory=ExponentialBackoff, repr=False)
    retry_on: Callable[[BaseException], bool] | None = Field(default=None, exclude=True, repr=False)

    @computed_field
    @property
    def is_disabled(self) -> bool:
        return self.max_retries == 0

    @classmethod
    def from_config(cls, config: BatchOperationConfig) -> RetryPolicy:
        """Doubling backoff from ``retry_delay``, capped at ``max_retry_delay``."""
        return cls(
            max_retries=config.max_retries,
            backoff=ExponentialBackoff(base=config.retry_delay, max_delay=config.max_retry_delay),
        )

    def should_retry(self, attempt: int, error: BaseException) -> bool:
        """``attempt`` is the 1-based number of the retry being considered."""
        if attempt > self.max_retries or is_permanent(error):
            return False
        return self.retry_on(error) if self.retry_on else True

    def delay_for(self, attempt: int) -> float:
        return self.backoff.delay(attempt)

    def __hash__(self) -> int:
        return hash((self.max_retries, self.backoff))


NO_RETRY = RetryPolicy(max_retries=0)
