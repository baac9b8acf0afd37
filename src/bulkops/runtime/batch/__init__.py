"""Bulk execution of a worker function over many items.

Key Components:
    - BatchExecutor: orchestrates limiter, retries, pool, and progress per run
    - BatchOperationConfig: validated run configuration (durations in seconds)
    - BatchResult: successes, failures, metrics, and summary

Example:
    >>> from bulkops.runtime.batch import BatchOperationConfig, run_batch
    >>> result = await run_batch(items, worker, BatchOperationConfig(concurrency=5))
    >>> print(f"{result.summary.success_count}/{result.summary.total_attempted}")
"""

from .executor import BatchExecutor, build_tasks, coerce_config, run_batch, run_batch_sync
from .models import BatchOperationConfig, BatchResult, BatchSummary, OperationFailure, OperationMetrics

__all__ = [
    # Execution
    "BatchExecutor",
    "run_batch",
    "run_batch_sync",
    "build_tasks",
    "coerce_config",
    # Contracts
    "BatchOperationConfig",
    "BatchResult",
    "BatchSummary",
    "OperationFailure",
    "OperationMetrics",
]
