"""Batch execution engine.

Provides bulk execution of an opaque worker function with:
- Bounded, greedy concurrency (WorkerPool)
- Global dispatch spacing (RateLimiter)
- Per-task retries with exponential backoff (RetryPolicy)
- Live progress snapshots (ProgressTracker)
- Cancellation and overall deadlines (CancelToken)
- Result aggregation with metrics and summary (BatchResult)

Individual task failures never raise: they are recorded as
OperationFailure entries. Only configuration problems (ConfigurationError)
and internal accounting bugs (InvariantViolation) propagate.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Iterable, Sequence
from typing import Any, Callable, Generic, TypeVar

from pydantic import ValidationError

from bulkops.foundation.errors import ConfigurationError, InvariantViolation
from bulkops.runtime.concurrency import CancelToken, Task, TaskOutcome, WorkerPool, run_sync
from bulkops.runtime.observability import BoundLogger, get_logger
from bulkops.runtime.progress import ProgressCallback, ProgressTracker
from bulkops.runtime.ratelimit import RateLimiter
from bulkops.runtime.retry import RetryPolicy

from .models import BatchOperationConfig, BatchResult, BatchSummary, OperationFailure, OperationMetrics

T = TypeVar("T")
R = TypeVar("R")

IdFunction = Callable[[Any], str]


def coerce_config(config: BatchOperationConfig | dict[str, Any] | None) -> BatchOperationConfig:
    """Validate configuration up front, surfacing problems as ConfigurationError."""
    if config is None:
        return BatchOperationConfig()
    if isinstance(config, BatchOperationConfig):
        return config
    if isinstance(config, dict):
        try:
            return BatchOperationConfig(**config)
        except ValidationError as e:
            raise ConfigurationError(f"invalid batch configuration: {e}") from e
    raise ConfigurationError(f"unsupported config type: {type(config).__name__}")


def build_tasks(items: Sequence[T], batch_size: int, id_of: IdFunction | None = None) -> list[Task[T]]:
    """Wrap items into Tasks with stable ids and chunk numbers. Rejects duplicate ids."""
    tasks: list[Task[T]] = []
    seen: set[str] = set()
    for i, item in enumerate(items):
        try:
            task_id = str(id_of(item)) if id_of else str(i)
        except Exception as e:
            raise ConfigurationError(f"cannot derive id for item {i}: {e}") from e
        if task_id in seen:
            raise ConfigurationError(f"duplicate item id {task_id!r} at index {i}")
        seen.add(task_id)
        tasks.append(Task(id=task_id, index=i, data=item, batch=i // batch_size))
    return tasks


class BatchExecutor(Generic[T, R]):
    """Orchestrates bulk runs of a worker function.

    One executor may serve many runs; each run() builds its own limiter,
    tracker, and pool, so runs share no mutable state. Pass a ``limiter`` to
    share dispatch spacing across runs hitting the same remote service.

    Example:
        >>> executor = BatchExecutor(BatchOperationConfig(concurrency=5, request_delay=0.2))
        >>> result = await executor.run(emails, create_account, on_progress=print)
        >>> print(f"{result.summary.success_count} created, {len(result.failed)} failed")
    """

    def __init__(
        self,
        config: BatchOperationConfig | dict[str, Any] | None = None,
        *,
        retry_policy: RetryPolicy | None = None,
        limiter: RateLimiter | None = None,
        logger: BoundLogger | None = None,
    ) -> None:
        self.config = coerce_config(config)
        self.retry_policy = retry_policy
        self.limiter = limiter
        self.log = logger or get_logger("bulkops.batch")

    async def run(
        self,
        items: Iterable[T],
        worker: Callable[[T], Any],
        config: BatchOperationConfig | dict[str, Any] | None = None,
        on_progress: ProgressCallback | None = None,
        *,
        cancel: CancelToken | None = None,
        id_of: IdFunction | None = None,
        step: str = "processing",
    ) -> BatchResult[R]:
        """Run ``worker`` over every item and aggregate the outcome.

        Args:
            items: Input collection; each item becomes one Task
            worker: Sync or async callable applied once per attempt
            config: Overrides the executor's configuration for this run
            on_progress: Receives an OperationProgress snapshot per settlement
            cancel: External cancellation signal
            id_of: Derives a stable item id (default: input position)
            step: Label used in progress snapshots

        Raises:
            ConfigurationError: Invalid config, non-callable worker, bad ids
            InvariantViolation: Internal accounting mismatch
        """
        cfg = coerce_config(config) if config is not None else self.config
        if not callable(worker):
            raise ConfigurationError("worker must be callable")
        if isinstance(items, (str, bytes)):
            raise ConfigurationError("items must be a collection, not a string")
        items = list(items)
        tasks = build_tasks(items, cfg.batch_size, id_of)
        if not tasks:
            return BatchResult.empty()

        batch_id = uuid.uuid4().hex[:12]
        log = self.log.bind_batch(batch_id, total=len(tasks))
        token = cancel or CancelToken()
        n_batches = tasks[-1].batch + 1
        tracker = ProgressTracker(
            len(tasks),
            on_progress if cfg.enable_progress_tracking else None,
            min_interval=cfg.progress_interval,
        )
        pool: WorkerPool[T, R] = WorkerPool(
            worker,
            concurrency=cfg.concurrency,
            limiter=self.limiter or RateLimiter(cfg.request_delay),
            retry_policy=self.retry_policy or RetryPolicy.from_config(cfg),
            batch_size=cfg.batch_size,
            cancel=token,
            on_settled=tracker.on_task_settled,
            on_batch=lambda b: tracker.set_step(f"{step} batch {b + 1} of {n_batches}"),
            logger=log,
        )

        log.info("batch started", concurrency=pool.concurrency, batch_size=cfg.batch_size,
                 request_delay=cfg.request_delay, max_retries=pool.retry_policy.max_retries)
        start = time.perf_counter()
        tracker.start(step)
        if cfg.timeout is not None:
            token.cancel_after(cfg.timeout)
        try:
            outcomes = await pool.run(tasks)
        finally:
            if cancel is None or cfg.timeout is not None:
                token.dispose()
        total_ms = (time.perf_counter() - start) * 1000

        result: BatchResult[R] = self._aggregate(tasks, outcomes, pool.skipped, total_ms, token.cancelled, cfg)
        if tracker.completed != len(result.successful) + len(result.failed):
            raise InvariantViolation(
                f"progress counted {tracker.completed} settlements, result holds {len(result)}"
            )
        tracker.finish("cancelled" if result.cancelled else "completed")

        if result.cancelled:
            log.warning("batch cancelled", reason=token.reason, succeeded=result.summary.success_count,
                        failed=result.summary.failure_count, unprocessed=len(result.unprocessed))
        log.info("batch completed", succeeded=result.summary.success_count, failed=result.summary.failure_count,
                 retries=result.metrics.total_retries, duration_ms=round(total_ms, 2),
                 peak_in_flight=pool.peak_in_flight)
        return result

    @staticmethod
    def _aggregate(
        tasks: list[Task[T]],
        outcomes: list[TaskOutcome[R]],
        skipped: list[Task[T]],
        total_ms: float,
        cancelled: bool,
        cfg: BatchOperationConfig,
    ) -> BatchResult[R]:
        successful = [o.value for o in outcomes if o.ok]
        failed = [OperationFailure.from_outcome(o) for o in outcomes if not o.ok]

        seen = [o.task.id for o in outcomes] + [t.id for t in skipped]
        if len(seen) != len(tasks) or set(seen) != {t.id for t in tasks}:
            raise InvariantViolation(
                f"{len(tasks)} tasks scheduled but {len(outcomes)} settled and {len(skipped)} skipped"
            )
        if skipped and not cancelled:
            raise InvariantViolation("tasks skipped without cancellation")

        total = len(tasks)
        summary = BatchSummary(
            total_attempted=total,
            success_count=len(successful),
            failure_count=len(failed),
            unprocessed_count=len(skipped),
            success_rate=(len(successful) / total) * 100,
            total_time_ms=total_ms,
            average_time_per_item_ms=total_ms / total,
        )
        metrics = OperationMetrics.compute(outcomes, total_ms, detailed=cfg.enable_performance_metrics)
        return BatchResult(
            successful=successful,
            failed=failed,
            metrics=metrics,
            summary=summary,
            cancelled=cancelled,
            unprocessed=[t.id for t in sorted(skipped, key=lambda t: t.index)],
            outcomes=outcomes,
        )


async def run_batch(
    items: Iterable[T],
    worker: Callable[[T], Any],
    config: BatchOperationConfig | dict[str, Any] | None = None,
    on_progress: ProgressCallback | None = None,
    **kwargs: Any,
) -> BatchResult[Any]:
    """Run a batch with a one-off executor.

    Example:
        >>> result = await run_batch(urls, fetch, {"concurrency": 5, "request_delay": 0.1})
        >>> print(f"Success rate: {result.success_rate:.0f}%")
    """
    return await BatchExecutor(config).run(items, worker, on_progress=on_progress, **kwargs)


def run_batch_sync(
    items: Iterable[T],
    worker: Callable[[T], Any],
    config: BatchOperationConfig | dict[str, Any] | None = None,
    on_progress: ProgressCallback | None = None,
    **kwargs: Any,
) -> BatchResult[Any]:
    """Synchronous batch execution. Wraps run_batch for sync contexts."""
    return run_sync(run_batch(items, worker, config, on_progress, **kwargs))
