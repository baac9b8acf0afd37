"""Bulkops - Throttled, retrying bulk execution of asynchronous work.

Runs one worker function over many items with bounded concurrency, global
request spacing, per-task exponential-backoff retries, live progress, and
cancellation. Individual failures are collected, never raised.

Quick Start:
    >>> from bulkops import BatchExecutor, BatchOperationConfig
    >>>
    >>> async def create(email: str) -> dict:
    ...     return await api.create_account(email, "S3cret!pass")
    >>>
    >>> executor = BatchExecutor(BatchOperationConfig(concurrency=3, request_delay=1.0, max_retries=3))
    >>> result = await executor.run(emails, create, on_progress=lambda p: print(f"{p.percentage:.0f}%"))
    >>> print(result.summary.success_count, [f.error for f in result.failed])

Synchronous Use:
    >>> from bulkops import run_batch_sync
    >>> result = run_batch_sync(urls, fetch, {"concurrency": 5, "request_delay": 0.2})

Marking Terminal Failures:
    >>> from bulkops import PermanentError
    >>> raise PermanentError("address already taken", status_code=422)  # recorded, never retried
"""

from __future__ import annotations

__version__ = "0.1.0"

# Errors
from .foundation.errors import (
    BulkOpsError,
    ConfigurationError,
    ErrorCode,
    InvariantViolation,
    OperationError,
    PermanentError,
    TransientError,
    classify_exception,
)

# Configuration
from .foundation.config import BulkOpsSettings, get_settings

# Batch execution
from .runtime.batch import (
    BatchExecutor,
    BatchOperationConfig,
    BatchResult,
    BatchSummary,
    OperationFailure,
    OperationMetrics,
    run_batch,
    run_batch_sync,
)

# Building blocks
from .runtime.concurrency import CancelToken, Task, TaskOutcome, TaskState, WorkerPool
from .runtime.progress import OperationProgress, ProgressEvent, ProgressEventKind, ProgressTracker
from .runtime.ratelimit import RateLimiter
from .runtime.retry import ExponentialBackoff, RetryPolicy

# Logging
from .runtime.observability import configure_logging, get_logger

__all__ = [
    # Version
    "__version__",
    # Errors
    "BulkOpsError",
    "ConfigurationError",
    "ErrorCode",
    "InvariantViolation",
    "OperationError",
    "PermanentError",
    "TransientError",
    "classify_exception",
    # Configuration
    "BulkOpsSettings",
    "get_settings",
    # Batch execution
    "BatchExecutor",
    "BatchOperationConfig",
    "BatchResult",
    "BatchSummary",
    "OperationFailure",
    "OperationMetrics",
    "run_batch",
    "run_batch_sync",
    # Building blocks
    "CancelToken",
    "Task",
    "TaskOutcome",
    "TaskState",
    "WorkerPool",
    "OperationProgress",
    "ProgressEvent",
    "ProgressEventKind",
    "ProgressTracker",
    "RateLimiter",
    "ExponentialBackoff",
    "RetryPolicy",
    # Logging
    "configure_logging",
    "get_logger",
]
