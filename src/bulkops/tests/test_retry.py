"""Tests for backoff strategies and the retry policy."""

import pytest

from bulkops.foundation.errors import PermanentError, TransientError
from bulkops.runtime.batch import BatchOperationConfig
from bulkops.runtime.retry import NO_RETRY, ConstantBackoff, ExponentialBackoff, LinearBackoff, RetryPolicy


class TestBackoff:
    def test_exponential_doubles(self) -> None:
        b = ExponentialBackoff(base=2.0)
        assert [b.delay(n) for n in (1, 2, 3, 4)] == [2.0, 4.0, 8.0, 16.0]

    def test_exponential_cap(self) -> None:
        b = ExponentialBackoff(base=1.0, max_delay=5.0)
        assert b.delay(10) == 5.0

    def test_exponential_jitter_bounds(self) -> None:
        b = ExponentialBackoff(base=1.0, jitter=True)
        assert all(0.5 <= b.delay(1) <= 1.5 for _ in range(50))

    def test_linear_and_constant(self) -> None:
        assert LinearBackoff(base=1.0, increment=2.0, max_delay=4.0).delay(3) == 4.0
        assert ConstantBackoff(0.3).delay(7) == 0.3


class TestRetryPolicy:
    def test_bounded_by_max_retries(self) -> None:
        policy = RetryPolicy(max_retries=2)
        err = TransientError("flaky")
        assert policy.should_retry(1, err)
        assert policy.should_retry(2, err)
        assert not policy.should_retry(3, err)

    def test_permanent_never_retried(self) -> None:
        assert not RetryPolicy(max_retries=5).should_retry(1, PermanentError("taken"))

    def test_retry_on_predicate(self) -> None:
        policy = RetryPolicy(max_retries=3, retry_on=lambda e: isinstance(e, TimeoutError))
        assert policy.should_retry(1, TimeoutError())
        assert not policy.should_retry(1, KeyError("x"))

    def test_no_retry(self) -> None:
        assert NO_RETRY.is_disabled
        assert not NO_RETRY.should_retry(1, TransientError("x"))

    def test_from_config(self) -> None:
        policy = RetryPolicy.from_config(BatchOperationConfig(max_retries=4, retry_delay=0.5, max_retry_delay=1.5))
        assert policy.max_retries == 4
        assert [policy.delay_for(n) for n in (1, 2, 3)] == [0.5, 1.0, 1.5]

    def test_rejects_negative(self) -> None:
        with pytest.raises(ValueError):
            RetryPolicy(max_retries=-1)
