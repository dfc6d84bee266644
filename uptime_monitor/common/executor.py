"""
Blocking Call Helper

Runs blocking storage methods in the default thread pool so the event loop
keeps serving the schedulers and the HTTP server, with a caller-enforced
timeout.
"""

import asyncio
import functools
import sqlite3
from typing import Any, Callable

from .exceptions import StorageError, StorageTimeoutError


async def run_blocking(
    func: Callable[..., Any],
    *args: Any,
    timeout_s: float | None = None,
    operation: str | None = None,
) -> Any:
    """
    Await func(*args) executed in a worker thread.

    The worker thread is not interrupted on timeout; the caller stops
    waiting and treats the call as failed for this tick.

    Raises:
        StorageTimeoutError: the call did not finish within timeout_s
        StorageError: SQLite reported an operational error (e.g. database is locked)
    """
    operation = operation or getattr(func, "__name__", "call")
    loop = asyncio.get_running_loop()
    future = loop.run_in_executor(None, functools.partial(func, *args))

    try:
        if timeout_s is None:
            return await future
        return await asyncio.wait_for(future, timeout_s)
    except asyncio.TimeoutError:
        raise StorageTimeoutError(operation, timeout_s)
    except sqlite3.OperationalError as e:
        raise StorageError(f"{operation} failed: {e}", operation) from e
