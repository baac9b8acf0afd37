"""Concurrency primitives for bulk runs.

Key Components:
    - WorkerPool: bounded, pull-based execution of a worker function
    - Task/TaskOutcome/TaskState: units of work and their terminal results
    - CancelToken: cooperative cancellation and deadlines
    - run_sync/call_worker: sync/async interop

Example:
    >>> from bulkops.runtime.concurrency import CancelToken, Task, WorkerPool
    >>> tasks = [Task(id=str(i), index=i, data=i) for i in range(10)]
    >>> outcomes = await WorkerPool(square, concurrency=3).run(tasks)
"""

from __future__ import annotations

from .cancel import CancelToken
from .interop import call_worker, is_async_callable, run_sync
from .pool import SettleCallback, Task, TaskOutcome, TaskState, WorkerPool

__all__ = [
    "CancelToken",
    "SettleCallback",
    "Task",
    "TaskOutcome",
    "TaskState",
    "WorkerPool",
    "call_worker",
    "is_async_callable",
    "run_sync",
]
