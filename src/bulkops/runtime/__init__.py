"""Runtime - Execution flow, control, and monitoring.

Contains: batch, concurrency, ratelimit, retry, progress, observability.
"""

from __future__ import annotations

__all__ = [
    # Batch
    "BatchExecutor", "BatchOperationConfig", "BatchResult", "BatchSummary",
    "OperationFailure", "OperationMetrics", "run_batch", "run_batch_sync",
    # Concurrency
    "CancelToken", "Task", "TaskOutcome", "TaskState", "WorkerPool", "run_sync",
    # Rate limiting
    "RateLimiter",
    # Retry
    "Backoff", "ExponentialBackoff", "LinearBackoff", "ConstantBackoff", "RetryPolicy", "NO_RETRY",
    # Progress
    "OperationProgress", "ProgressCallback", "ProgressTracker",
    "ProgressEvent", "ProgressEventKind", "ProgressEventCallback",
    # Observability
    "BoundLogger", "configure_logging", "get_logger",
]

_SUBMODULES: dict[str, frozenset[str]] = {
    "batch": frozenset({
        "BatchExecutor", "BatchOperationConfig", "BatchResult", "BatchSummary",
        "OperationFailure", "OperationMetrics", "run_batch", "run_batch_sync",
    }),
    "concurrency": frozenset({"CancelToken", "Task", "TaskOutcome", "TaskState", "WorkerPool", "run_sync"}),
    "ratelimit": frozenset({"RateLimiter"}),
    "retry": frozenset({
        "Backoff", "ExponentialBackoff", "LinearBackoff", "ConstantBackoff", "RetryPolicy", "NO_RETRY",
    }),
    "progress": frozenset({
        "OperationProgress", "ProgressCallback", "ProgressTracker",
        "ProgressEvent", "ProgressEventKind", "ProgressEventCallback",
    }),
    "observability": frozenset({"BoundLogger", "configure_logging", "get_logger"}),
}


def __getattr__(name: str):
    """Lazy imports to avoid circular dependencies."""
    import importlib

    for module, attrs in _SUBMODULES.items():
        if name in attrs:
            return getattr(importlib.import_module(f"{__name__}.{module}"), name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
