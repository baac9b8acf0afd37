"""Sync/async interoperability.

Bridges synchronous callers and worker functions with the asyncio runtime:
- run_sync: drive a coroutine to completion from sync code
- call_worker: invoke a worker function that may be sync or async
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import threading
from collections.abc import Coroutine
from typing import Any, Callable, TypeVar

T = TypeVar("T")


def run_sync(coro: Coroutine[object, object, T]) -> T:
    """Run async coroutine from synchronous context.

    Handles two scenarios:
    1. No running loop → Use asyncio.run()
    2. Called from within event loop → Run on a fresh loop in a helper thread

    Example:
        >>> result = run_sync(executor.run(items, worker))
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    # Inside a running loop (Jupyter, nested async calls)
    return _run_in_thread_loop(coro)


def _run_in_thread_loop(coro: Coroutine[object, object, T]) -> T:
    """Run coroutine on a new event loop in a separate thread."""
    result: list[T] = []
    error: list[BaseException] = []

    def runner() -> None:
        try:
            result.append(asyncio.run(coro))
        except BaseException as e:  # re-raised in the calling thread
            error.append(e)

    thread = threading.Thread(target=runner, name="bulkops-run-sync", daemon=True)
    thread.start()
    thread.join()
    if error:
        raise error[0]
    return result[0]


def is_async_callable(func: Callable[..., Any]) -> bool:
    """Whether calling ``func`` returns a coroutine (functions, partials, async __call__)."""
    while isinstance(func, functools.partial):
        func = func.func
    return inspect.iscoroutinefunction(func) or inspect.iscoroutinefunction(getattr(func, "__call__", None))


async def call_worker(func: Callable[[Any], Any], arg: Any) -> Any:
    """Invoke a worker function: coroutines are awaited, sync callables run in a thread."""
    if is_async_callable(func):
        return await func(arg)
    result = await asyncio.to_thread(func, arg)
    if inspect.isawaitable(result):
        return await result
    return result
