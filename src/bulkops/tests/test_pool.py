"""Tests for the bounded worker pool."""

import asyncio
import threading

import pytest

from bulkops.foundation.errors import PermanentError, TransientError
from bulkops.runtime.concurrency import CancelToken, Task, TaskOutcome, TaskState, WorkerPool
from bulkops.runtime.observability import BoundLogger, CaptureRenderer
from bulkops.runtime.ratelimit import RateLimiter
from bulkops.runtime.retry import ConstantBackoff, RetryPolicy


def make_tasks(n: int, batch_size: int = 100) -> list[Task[int]]:
    return [Task(id=f"t{i}", index=i, data=i, batch=i // batch_size) for i in range(n)]


FAST_RETRY = RetryPolicy(max_retries=2, backoff=ConstantBackoff(0.001))


class TestScheduling:
    @pytest.mark.asyncio
    async def test_all_settle_once(self) -> None:
        settled: list[TaskOutcome[int]] = []

        async def square(x: int) -> int:
            return x * x

        pool: WorkerPool[int, int] = WorkerPool(square, concurrency=3, on_settled=settled.append)
        outcomes = await pool.run(make_tasks(10))
        assert len(outcomes) == len(settled) == 10
        assert sorted(o.value for o in outcomes) == sorted(i * i for i in range(10))
        assert all(o.state is TaskState.SUCCEEDED and o.attempts == 1 for o in outcomes)

    @pytest.mark.asyncio
    async def test_concurrency_bound(self) -> None:
        running = 0
        peak = 0

        async def slow(x: int) -> int:
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.005)
            running -= 1
            return x

        pool: WorkerPool[int, int] = WorkerPool(slow, concurrency=3)
        await pool.run(make_tasks(12))
        assert peak == 3
        assert pool.peak_in_flight == 3

    @pytest.mark.asyncio
    async def test_greedy_not_lockstep(self) -> None:
        """A free worker picks the next task without waiting for a slow sibling."""
        order: list[int] = []

        async def work(x: int) -> int:
            await asyncio.sleep(0.05 if x == 0 else 0.001)
            order.append(x)
            return x

        await WorkerPool(work, concurrency=2).run(make_tasks(5))
        assert order[-1] == 0

    @pytest.mark.asyncio
    async def test_chunks_announced_in_order(self) -> None:
        batches: list[int] = []

        async def echo(x: int) -> int:
            return x

        await WorkerPool(echo, concurrency=2, batch_size=2, on_batch=batches.append).run(make_tasks(5, batch_size=2))
        assert batches == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_sync_worker_runs_off_loop(self) -> None:
        loop_thread = threading.get_ident()
        threads: set[int] = set()

        def blocking(x: int) -> int:
            threads.add(threading.get_ident())
            return x + 1

        outcomes = await WorkerPool(blocking, concurrency=2).run(make_tasks(4))
        assert sorted(o.value for o in outcomes) == [1, 2, 3, 4]
        assert loop_thread not in threads

    @pytest.mark.asyncio
    async def test_rate_limited_dispatch(self) -> None:
        limiter = RateLimiter(0.01)

        async def echo(x: int) -> int:
            return x

        await WorkerPool(echo, concurrency=4, limiter=limiter).run(make_tasks(5))
        assert limiter.granted == 5
        assert limiter.total_wait > 0

    @pytest.mark.asyncio
    async def test_single_use(self) -> None:
        async def echo(x: int) -> int:
            return x

        pool: WorkerPool[int, int] = WorkerPool(echo)
        await pool.run(make_tasks(1))
        with pytest.raises(RuntimeError):
            await pool.run(make_tasks(1))


class TestRetries:
    @pytest.mark.asyncio
    async def test_recovers_within_retry_limit(self, capture: CaptureRenderer, capture_logger: BoundLogger) -> None:
        calls: dict[int, int] = {}

        async def flaky(x: int) -> int:
            calls[x] = calls.get(x, 0) + 1
            if calls[x] < 3:
                raise TransientError("try again")
            return x

        outcomes = await WorkerPool(flaky, retry_policy=FAST_RETRY, logger=capture_logger).run(make_tasks(2))
        assert all(o.ok and o.attempts == 3 and o.retries == 2 for o in outcomes)
        assert all(len(o.durations_ms) == 3 for o in outcomes)
        assert capture.events("debug").count("task retry scheduled") == 4

    @pytest.mark.asyncio
    async def test_exhausted(self, capture: CaptureRenderer, capture_logger: BoundLogger) -> None:
        async def always(x: int) -> int:
            raise TransientError(f"down {x}", status_code=503)

        [outcome] = await WorkerPool(always, retry_policy=FAST_RETRY, logger=capture_logger).run(make_tasks(1))
        assert outcome.state is TaskState.FAILED
        assert outcome.attempts == 3
        assert str(outcome.error) == "down 0"
        assert capture.events("warning") == ["task failed"]

    @pytest.mark.asyncio
    async def test_permanent_not_retried(self) -> None:
        async def reject(x: int) -> int:
            raise PermanentError("address taken", status_code=422)

        [outcome] = await WorkerPool(reject, retry_policy=FAST_RETRY).run(make_tasks(1))
        assert not outcome.ok
        assert outcome.attempts == 1

    @pytest.mark.asyncio
    async def test_backoff_releases_slot(self) -> None:
        """While one task waits out its backoff, others keep the single worker busy."""
        done: list[int] = []
        failed_once: set[int] = set()

        async def work(x: int) -> int:
            if x == 0 and x not in failed_once:
                failed_once.add(x)
                raise TransientError("later")
            done.append(x)
            return x

        policy = RetryPolicy(max_retries=1, backoff=ConstantBackoff(0.05))
        await WorkerPool(work, concurrency=1, retry_policy=policy).run(make_tasks(4))
        assert done == [1, 2, 3, 0]


class TestCancellation:
    @pytest.mark.asyncio
    async def test_unstarted_tasks_skipped(self) -> None:
        token = CancelToken()

        async def work(x: int) -> int:
            if x == 1:
                token.cancel("stop")
            return x

        pool: WorkerPool[int, int] = WorkerPool(work, concurrency=1, cancel=token)
        outcomes = await pool.run(make_tasks(5))
        assert [o.task.index for o in outcomes] == [0, 1]
        assert all(o.ok for o in outcomes)
        assert [t.index for t in pool.skipped] == [2, 3, 4]

    @pytest.mark.asyncio
    async def test_task_in_backoff_fails_as_cancelled(self) -> None:
        token = CancelToken()

        async def always(x: int) -> int:
            raise TransientError("unavailable")

        policy = RetryPolicy(max_retries=5, backoff=ConstantBackoff(10.0))
        asyncio.get_running_loop().call_later(0.02, token.cancel, "stop")
        [outcome] = await asyncio.wait_for(
            WorkerPool(always, retry_policy=policy, cancel=token).run(make_tasks(1)), timeout=2.0
        )
        assert outcome.state is TaskState.FAILED
        assert outcome.cancelled
        assert outcome.attempts == 1
        assert str(outcome.error) == "unavailable"
