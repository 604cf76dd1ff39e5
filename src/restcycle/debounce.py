"""Coalescing scheduler for bursts of triggers.

A Debouncer keeps one timer and one pending-arguments slot on the running
event loop. Calls inside the wait window replace the pending arguments and
push the timer back; when it fires, the wrapped function runs once with
the most recent arguments.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import structlog

from restcycle.config import DebounceDefaults
from restcycle.models.options import DebounceSettings

log = structlog.get_logger()


def debounce_settings(
    value: bool | float | DebounceSettings, defaults: DebounceDefaults
) -> DebounceSettings | None:
    """Normalize a ``debounce`` option. Returns None when debouncing is off."""
    if isinstance(value, DebounceSettings):
        return value
    if value is True:
        return DebounceSettings(
            wait=defaults.wait_seconds,
            leading=defaults.leading,
            trailing=defaults.trailing,
            max_wait=defaults.max_wait_seconds,
        )
    if value is False or value is None:
        return None
    return DebounceSettings(
        wait=float(value),
        leading=defaults.leading,
        trailing=defaults.trailing,
        max_wait=defaults.max_wait_seconds,
    )


class Debouncer:
    def __init__(
        self,
        func: Callable[..., Any],
        wait: float = 0.0,
        *,
        leading: bool = False,
        trailing: bool = True,
        max_wait: float | None = None,
    ) -> None:
        self._func = func
        self.wait = wait
        self.leading = leading
        self.trailing = trailing
        self.max_wait = max(max_wait, wait) if max_wait is not None else None

        self._handle: asyncio.TimerHandle | None = None
        self._pending_args: tuple[tuple[Any, ...], dict[str, Any]] | None = None
        self._burst_started: float | None = None
        self._waiters: list[asyncio.Future[None]] = []

    @classmethod
    def from_settings(cls, func: Callable[..., Any], settings: DebounceSettings) -> Debouncer:
        return cls(
            func,
            settings.wait,
            leading=settings.leading,
            trailing=settings.trailing,
            max_wait=settings.max_wait,
        )

    @property
    def pending(self) -> bool:
        """True while a window is open (an execution may still fire)."""
        return self._handle is not None

    def __call__(self, *args: Any, **kwargs: Any) -> None:
        loop = asyncio.get_running_loop()
        now = loop.time()
        self._pending_args = (args, kwargs)

        if self._handle is None:
            self._burst_started = now
            if self.leading:
                self._invoke()
            self._schedule(loop, now)
            return

        self._handle.cancel()
        if (
            self.max_wait is not None
            and self._burst_started is not None
            and now - self._burst_started >= self.max_wait
        ):
            self._invoke()
            self._burst_started = now
        self._schedule(loop, now)

    def cancel(self) -> None:
        """Drop any scheduled execution without running it."""
        if self._handle is not None:
            self._handle.cancel()
        self._reset()

    def flush(self) -> None:
        """Run the scheduled execution now, if there is one."""
        if self._handle is None:
            return
        self._handle.cancel()
        if self._pending_args is not None:
            self._invoke()
        self._reset()

    async def wait_idle(self) -> None:
        """Wait until the current window has closed (fired or cancelled)."""
        if self._handle is None:
            return
        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        await waiter

    def _schedule(self, loop: asyncio.AbstractEventLoop, now: float) -> None:
        delay = self.wait
        if self.max_wait is not None and self._burst_started is not None:
            delay = min(delay, self._burst_started + self.max_wait - now)
        self._handle = loop.call_later(max(delay, 0.0), self._fire)

    def _fire(self) -> None:
        self._handle = None
        if self.trailing and self._pending_args is not None:
            self._invoke()
        self._reset()

    def _invoke(self) -> None:
        if self._pending_args is None:
            return
        args, kwargs = self._pending_args
        self._pending_args = None
        try:
            self._func(*args, **kwargs)
        except Exception:
            log.warning("debounced_call_error", exc_info=True)

    def _reset(self) -> None:
        self._handle = None
        self._pending_args = None
        self._burst_started = None
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(None)
