"""Fire-and-forget invocation of the shared scope hooks.

Hooks never block a state transition: a coroutine returned by a hook is
scheduled as a background task, and a failing hook is logged instead of
propagated into the request flow.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Callable
from typing import Any

import structlog

log = structlog.get_logger()

# Strong references so scheduled hook coroutines are not garbage collected mid-flight
_background_tasks: set[asyncio.Task[Any]] = set()


def notify(hook: Callable[..., Any] | None, *args: Any, event: str) -> None:
    if hook is None:
        return
    try:
        result = hook(*args)
    except Exception:
        log.warning("hook_error", hook=event, exc_info=True)
        return

    if inspect.isawaitable(result):
        task = asyncio.ensure_future(result)
        _background_tasks.add(task)
        task.add_done_callback(lambda done: _finish(done, event))


def _finish(task: asyncio.Task[Any], event: str) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        log.warning("hook_error", hook=event, error=str(exc), error_type=type(exc).__name__)
