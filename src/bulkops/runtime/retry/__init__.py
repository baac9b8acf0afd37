"""Retry policies for failed units of work.

Example:
    >>> from bulkops.runtime.retry import RetryPolicy, ExponentialBackoff
    >>> policy = RetryPolicy(
    ...     max_retries=3,
    ...     backoff=ExponentialBackoff(base=2.0, max_delay=60.0),
    ...     retry_on=lambda exc: not isinstance(exc, KeyError),
    ... )
"""

from .backoff import Backoff, ConstantBackoff, ExponentialBackoff, LinearBackoff
from .policy import NO_RETRY, RetryPolicy

__all__ = [
    # Backoff strategies
    "Backoff",
    "ExponentialBackoff",
    "LinearBackoff",
    "ConstantBackoff",
    # Policy
    "RetryPolicy",
    "NO_RETRY",
]
