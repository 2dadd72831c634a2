"""Future and callback delivery for store operations.

Every public store operation validates its arguments synchronously and then
returns a coroutine. Callers either await it, or pass ``callback=fn`` to have
it scheduled on the running loop with ``fn(err, result)`` called exactly once.
"""

from __future__ import annotations

import asyncio
import functools
from collections.abc import Callable, Coroutine
from typing import Any, TypeVar

T = TypeVar("T")

Callback = Callable[[BaseException | None, Any], None]

# The loop only keeps weak references to tasks; callback deliveries are held
# here until they finish.
_pending: set[asyncio.Task[None]] = set()


async def _deliver(coro: Coroutine[Any, Any, T], callback: Callback) -> None:
    try:
        result = await coro
    except Exception as e:
        callback(e, None)
        return
    callback(None, result)


def deliver(coro: Coroutine[Any, Any, T], callback: Callback | None) -> Any:
    """Return ``coro`` to be awaited, or schedule it and report through ``callback``.

    The callback form needs a running event loop and returns the scheduled task.
    """
    if callback is None:
        return coro
    if not callable(callback):
        coro.close()
        raise TypeError(f"callback must be callable, got {type(callback).__name__}")
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        coro.close()
        raise
    task = loop.create_task(_deliver(coro, callback))
    _pending.add(task)
    task.add_done_callback(_pending.discard)
    return task


def store_operation(method: Callable[..., Coroutine[Any, Any, T]]) -> Callable[..., Any]:
    """Give a coroutine-returning method an optional ``callback=`` keyword."""

    @functools.wraps(method)
    def wrapper(self: Any, *args: Any, callback: Callback | None = None, **kwargs: Any) -> Any:
        return deliver(method(self, *args, **kwargs), callback)

    return wrapper
