"""Bounded, pull-based worker pool for opaque units of work.

A fixed number of worker coroutines share one task queue. Each worker takes
the next task as soon as it is free (greedy, not lock-step batches), waits
for its rate-limiter slot, invokes the worker function and settles or
re-schedules the task.

Per-task state machine:
    PENDING → RUNNING → SUCCEEDED
                      → RETRYING → PENDING   (backoff timer, holds no slot)
                      → FAILED

Example:
    >>> pool = WorkerPool(fetch_account, concurrency=4, limiter=RateLimiter(0.25),
    ...                   retry_policy=RetryPolicy(max_retries=2))
    >>> outcomes = await pool.run(tasks)
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Callable, Generic, TypeVar

from bulkops.foundation.errors import InvariantViolation, is_permanent
from bulkops.runtime.observability import BoundLogger, get_logger
from bulkops.runtime.ratelimit import RateLimiter
from bulkops.runtime.retry import NO_RETRY, RetryPolicy

from .cancel import CancelToken
from .interop import call_worker

T = TypeVar("T")
R = TypeVar("R")


class TaskState(StrEnum):
    """Task lifecycle states."""
    PENDING = "pending"      # Queued, waiting for a slot
    RUNNING = "running"      # Worker function in flight
    RETRYING = "retrying"    # Waiting out a backoff delay
    SUCCEEDED = "succeeded"  # Terminal: value available
    FAILED = "failed"        # Terminal: error recorded
    SKIPPED = "skipped"      # Never started (run cancelled)


@dataclass(frozen=True, slots=True)
class Task(Generic[T]):
    """One unit of work: a caller item plus its identity. Immutable once enqueued."""
    id: str
    index: int
    data: T
    batch: int = 0


@dataclass(frozen=True, slots=True)
class TaskOutcome(Generic[R]):
    """Terminal result of a task.

    Attributes:
        task: The settled task
        state: SUCCEEDED or FAILED
        value: Worker result (successes only)
        error: Last exception raised (failures only)
        attempts: Worker invocations made (1 + retries)
        durations_ms: Wall time of each invocation
        settled_at: UTC time of settlement
        cancelled: Failure finalized early because the run was cancelled
    """
    task: Task[Any]
    state: TaskState
    value: R | None = None
    error: BaseException | None = None
    attempts: int = 1
    durations_ms: tuple[float, ...] = ()
    settled_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.state is TaskState.SUCCEEDED

    @property
    def retries(self) -> int:
        return max(self.attempts - 1, 0)

    @property
    def elapsed_ms(self) -> float:
        return sum(self.durations_ms)


@dataclass(slots=True)
class _Attempt(Generic[T]):
    """Mutable per-task bookkeeping, private to the pool."""
    task: Task[T]
    state: TaskState = TaskState.PENDING
    attempts: int = 0
    durations_ms: list[float] = field(default_factory=list)
    last_error: BaseException | None = None


SettleCallback = Callable[[TaskOutcome[Any]], None]


class WorkerPool(Generic[T, R]):
    """Runs at most ``concurrency`` worker invocations over a shared queue.

    Args:
        worker: Sync or async callable applied to ``Task.data``
        concurrency: Max simultaneous invocations (clamped to >= 1)
        limiter: Shared RateLimiter gating every dispatch
        retry_policy: Decides retries of failed attempts
        batch_size: Tasks moved into the queue per refill
        cancel: Cooperative stop signal
        on_settled: Called exactly once per terminal task
        on_batch: Called with the 0-based chunk index as each chunk is queued
        logger: Structured logger, bound by the caller
    """

    def __init__(
        self,
        worker: Callable[[T], Any],
        *,
        concurrency: int = 1,
        limiter: RateLimiter | None = None,
        retry_policy: RetryPolicy = NO_RETRY,
        batch_size: int | None = None,
        cancel: CancelToken | None = None,
        on_settled: SettleCallback | None = None,
        on_batch: Callable[[int], None] | None = None,
        logger: BoundLogger | None = None,
    ) -> None:
        self.worker = worker
        self.concurrency = max(1, concurrency)
        self.limiter = limiter or RateLimiter()
        self.retry_policy = retry_policy
        self.batch_size = batch_size
        self.cancel = cancel or CancelToken()
        self.on_settled = on_settled
        self.on_batch = on_batch
        self.log = logger or get_logger("bulkops.pool")
        self.in_flight = 0
        self.peak_in_flight = 0
        self._queue: asyncio.Queue[_Attempt[T] | None] = asyncio.Queue()
        self._chunks: Iterator[list[Task[T]]] = iter(())
        self._settled: dict[int, TaskOutcome[R]] = {}
        self._skipped: list[Task[T]] = []
        self._timers: set[asyncio.Task[None]] = set()
        self._open = 0
        self._workers_n = 0

    @property
    def skipped(self) -> list[Task[T]]:
        """Tasks never started because the run was cancelled."""
        return list(self._skipped)

    async def run(self, tasks: Sequence[Task[T]]) -> list[TaskOutcome[R]]:
        """Drive every task to a terminal state (or skip it on cancellation).

        Returns settled outcomes in completion order.
        """
        if self._settled or self._skipped:
            raise RuntimeError("WorkerPool instances are single-use")
        if not tasks:
            return []
        size = self.batch_size or len(tasks)
        self._chunks = iter([list(tasks[i:i + size]) for i in range(0, len(tasks), size)])
        self._open = len(tasks)
        self._workers_n = min(self.concurrency, len(tasks))
        self._refill()

        workers = [asyncio.create_task(self._work(), name=f"bulkops-worker-{i}") for i in range(self._workers_n)]
        try:
            await asyncio.gather(*workers)
        except BaseException:
            for w in workers:
                w.cancel()
            for t in self._timers:
                t.cancel()
            raise
        return list(self._settled.values())

    # ─────────────────────────────────────────────────────────────────
    # Worker loop
    # ─────────────────────────────────────────────────────────────────

    async def _work(self) -> None:
        while True:
            if self._queue.empty():
                self._refill()
            attempt = await self._queue.get()
            if attempt is None:
                return
            if self.cancel.cancelled:
                self._drop(attempt)
                continue
            await self.limiter.acquire(self.cancel)
            if self.cancel.cancelled:
                self._drop(attempt)
                continue
            await self._execute(attempt)

    async def _execute(self, attempt: _Attempt[T]) -> None:
        attempt.state = TaskState.RUNNING
        attempt.attempts += 1
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        t0 = time.perf_counter()
        try:
            value = await call_worker(self.worker, attempt.task.data)
        except Exception as e:
            attempt.durations_ms.append((time.perf_counter() - t0) * 1000)
            self.in_flight -= 1
            self._on_failure(attempt, e)
        else:
            attempt.durations_ms.append((time.perf_counter() - t0) * 1000)
            self.in_flight -= 1
            self._settle(attempt, TaskState.SUCCEEDED, value=value)

    def _on_failure(self, attempt: _Attempt[T], error: BaseException) -> None:
        attempt.last_error = error
        retry_no = attempt.attempts  # 1-based number of the retry that would follow
        if self.cancel.cancelled:
            self._settle(attempt, TaskState.FAILED, error=error, cancelled=True)
        elif not self.retry_policy.should_retry(retry_no, error):
            self.log.warning("task failed", item_id=attempt.task.id, attempts=attempt.attempts,
                             error=str(error), error_type=type(error).__name__,
                             permanent=is_permanent(error))
            self._settle(attempt, TaskState.FAILED, error=error)
        else:
            delay = self.retry_policy.delay_for(retry_no)
            attempt.state = TaskState.RETRYING
            self.log.debug("task retry scheduled", item_id=attempt.task.id, retry=retry_no,
                           max_retries=self.retry_policy.max_retries, delay_s=round(delay, 3),
                           error=str(error))
            timer = asyncio.create_task(self._backoff(attempt, delay), name=f"bulkops-retry-{attempt.task.id}")
            self._timers.add(timer)
            timer.add_done_callback(self._timers.discard)

    async def _backoff(self, attempt: _Attempt[T], delay: float) -> None:
        # Cut short on cancellation; the worker loop finalizes the attempt
        await self.cancel.sleep(delay)
        attempt.state = TaskState.PENDING
        self._queue.put_nowait(attempt)

    # ─────────────────────────────────────────────────────────────────
    # Bookkeeping
    # ─────────────────────────────────────────────────────────────────

    def _refill(self) -> None:
        """Move the next chunk of fresh tasks into the queue."""
        if (chunk := next(self._chunks, None)) is None:
            return
        if self.on_batch:
            self.on_batch(chunk[0].batch)
        for task in chunk:
            self._queue.put_nowait(_Attempt(task))

    def _drop(self, attempt: _Attempt[T]) -> None:
        """Retire a queued attempt after cancellation."""
        if attempt.attempts == 0:
            attempt.state = TaskState.SKIPPED
            self._skipped.append(attempt.task)
            self._close_one()
        else:
            self._settle(attempt, TaskState.FAILED, error=attempt.last_error, cancelled=True)

    def _settle(
        self,
        attempt: _Attempt[T],
        state: TaskState,
        *,
        value: Any = None,
        error: BaseException | None = None,
        cancelled: bool = False,
    ) -> None:
        key = attempt.task.index
        if key in self._settled:
            raise InvariantViolation(f"task {attempt.task.id!r} settled twice")
        attempt.state = state
        outcome: TaskOutcome[R] = TaskOutcome(
            task=attempt.task, state=state, value=value, error=error,
            attempts=attempt.attempts, durations_ms=tuple(attempt.durations_ms), cancelled=cancelled,
        )
        self._settled[key] = outcome
        if self.on_settled:
            self.on_settled(outcome)
        self._close_one()

    def _close_one(self) -> None:
        self._open -= 1
        if self._open < 0:
            raise InvariantViolation("more tasks retired than were scheduled")
        if self._open == 0:
            for _ in range(self._workers_n):
                self._queue.put_nowait(None)
