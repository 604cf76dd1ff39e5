"""Cancellation tokens owned by controllers.

Every attempt gets a fresh token. A controller keeps its tokens in a
``TokenSlot`` so that at most one is live at a time: ``renew`` invalidates
the current token before handing out the next one.
"""

from __future__ import annotations

from collections.abc import Callable

import structlog

log = structlog.get_logger()


class CancellationToken:
    def __init__(self) -> None:
        self._valid = True
        self._callbacks: list[Callable[[], None]] = []

    def is_valid(self) -> bool:
        return self._valid

    def invalidate(self) -> None:
        if not self._valid:
            return
        self._valid = False
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                log.warning("cancellation_callback_error", exc_info=True)

    def on_invalidate(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Run ``callback`` when the token is invalidated (immediately if it already is).

        Returns a callable that unregisters ``callback``.
        """
        if not self._valid:
            callback()
            return lambda: None
        self._callbacks.append(callback)

        def unregister() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unregister


class TokenSlot:
    """Holds the single live token of one controller."""

    def __init__(self) -> None:
        self._current: CancellationToken | None = None

    @property
    def current(self) -> CancellationToken | None:
        return self._current

    def renew(self) -> CancellationToken:
        self.invalidate()
        self._current = CancellationToken()
        return self._current

    def invalidate(self) -> None:
        if self._current is not None:
            self._current.invalidate()
