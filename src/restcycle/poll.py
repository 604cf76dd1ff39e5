"""Long-polling engine.

Every request carries ``Prefer: wait=<N>s;`` and, once the server has
handed out a session index, ``index=<I>``. The engine keeps polling while
responses carry the index header; a response without it, or a satisfied
``until`` predicate, finishes the poll. Request errors are recorded and
reported but are transient: polling continues after the interval.

    Idle --start--> Polling --no index / until--> Finished
                      |  ^                            |
                      +--+ (error: retry later)       +--start--> Polling
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

import structlog

from restcycle.cancellation import CancellationToken
from restcycle.errors import ErrorKind, NormalizedError, RequestAborted, RestCycleError
from restcycle.hooks import notify
from restcycle.lifecycle import Session
from restcycle.models.options import PollOptions
from restcycle.models.state import PollState
from restcycle.request import build_request

if TYPE_CHECKING:
    import httpx

log = structlog.get_logger()


class LongPollEngine(Session[PollOptions, PollState]):
    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._task: asyncio.Task[None] | None = None
        self._wake = asyncio.Event()

    def _initial_state(self) -> PollState:
        mock = self._options.mock
        if mock is not None:
            return PollState(data=mock.data, loading=mock.loading, error=mock.error)
        lazy = self._options.lazy
        return PollState(loading=not lazy, polling=not lazy)

    @property
    def wait(self) -> int:
        """Seconds the server may hold each request open."""
        if self._options.wait is not None:
            return self._options.wait
        return self._settings.poll.wait_seconds

    @property
    def interval(self) -> float:
        if self._options.interval is not None:
            return self._options.interval
        return self._settings.poll.interval_seconds

    # -- actions ------------------------------------------------------------

    def start(self) -> None:
        """Begin polling, or resume after ``stop``/finish, keeping data and index."""
        if self._closed or self._options.mock is not None:
            return
        if self._task is not None and not self._task.done() and self._state.polling:
            return
        token = self._tokens.renew()
        self._commit(polling=True, finished=False)
        log.info("poll_started", url=self.absolute_path, session_index=self._state.session_index)
        self._task = asyncio.create_task(self._cycle(token))

    def stop(self) -> None:
        """Pause polling. Accumulated data is kept; ``start`` resumes."""
        self._tokens.invalidate()
        self._wake.set()
        self._commit(polling=False, finished=True, loading=False)

    def close(self) -> None:
        self.stop()
        super().close()

    def reconfigure(self, options: PollOptions) -> None:
        """Replace the options; a different resource restarts the poll from scratch."""
        if self._closed:
            return
        previous_key = self._fetch_key(self._options)
        self._options = options
        if self._fetch_key(options) == previous_key or not self._state.polling:
            return
        self._tokens.invalidate()
        self._wake.set()
        self._commit(session_index=None)
        self._task = None
        self.start()

    async def join(self) -> None:
        """Wait for the polling loop to end (finish, stop or close)."""
        task = self._task
        if task is not None and not task.done():
            await asyncio.wait([task])

    # -- loop ---------------------------------------------------------------

    async def _cycle(self, token: CancellationToken) -> None:
        loop = asyncio.get_running_loop()
        while token.is_valid():
            if self._until_met(self._options, self._state.response):
                self._finish(token, reason="until")
                return

            started = loop.time()
            if not await self._poll_once(self._options, token):
                return

            # A long-poll that already blocked server-side needs no extra delay
            delay = max(self.interval - (loop.time() - started), 0.0)
            await self._sleep(delay)

    async def _sleep(self, delay: float) -> None:
        self._wake.clear()
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=delay)
        except TimeoutError:
            pass

    async def _poll_once(self, options: PollOptions, token: CancellationToken) -> bool:
        """Issue one request. Returns False when the loop must end."""
        index = self._state.session_index
        prefer = f"wait={self.wait}s;index={index}" if index else f"wait={self.wait}s;"

        try:
            descriptor = await build_request(
                "GET",
                self._url(options),
                token=token,
                sources=self._sources(options),
                default_headers={self._settings.poll.prefer_header: prefer},
            )
            if not token.is_valid():
                return False
            notify(self._scope.on_request, descriptor, event="on_request")
            outcome = await self._processor.execute(descriptor)
        except RequestAborted:
            return False
        except RestCycleError as exc:
            if not token.is_valid():
                return False
            self._record_error(options, exc.error, None)
            return True

        if not token.is_valid():
            return False
        response = outcome.response
        notify(self._scope.on_response, response, event="on_response")

        changes: dict[str, Any] = {"loading": False, "error": None, "response": response}
        if outcome.status != 304:
            data, error = await self._processor.normalize(
                outcome, self._resolve_fn(options), previous=self._state.data
            )
            if not token.is_valid():
                return False
            if error is not None:
                self._record_error(options, error, response)
                return True
            if data != self._state.data:
                changes["data"] = data

        next_index = response.headers.get(self._settings.poll.index_header)
        if next_index is None:
            self._commit(**changes)
            self._finish(token, reason="no_index")
            return False

        changes["session_index"] = next_index
        self._commit(**changes)

        if self._until_met(options, response):
            self._finish(token, reason="until")
            return False
        return True

    def _until_met(self, options: PollOptions, response: httpx.Response | None) -> bool:
        """Evaluate ``until``. A predicate that raises is recorded as an error and ends the poll."""
        until = options.until
        if until is None:
            return False
        try:
            return bool(until(self._state.data, response))
        except Exception as exc:
            log.warning("until_failed", error=str(exc), error_type=type(exc).__name__)
            error = NormalizedError(message="UNTIL_ERROR", data=str(exc), kind=ErrorKind.CALLBACK)
            self._record_error(options, error, response)
            return True

    def _record_error(
        self, options: PollOptions, error: NormalizedError, response: Any
    ) -> None:
        # Data survives a poll error: the next cycle may recover
        self._commit(loading=False, error=error, response=response)
        log.info("poll_error", url=self.absolute_path, message=error.message)

        async def retry(headers: Mapping[str, str] | None = None) -> None:
            # Skip the rest of the current interval, or resume a finished poll
            if self._state.polling:
                self._wake.set()
            else:
                self.start()

        self._report_error(options, error, retry, response)

    def _finish(self, token: CancellationToken, *, reason: str) -> None:
        token.invalidate()
        self._commit(polling=False, finished=True, loading=False)
        log.info(
            "poll_finished",
            url=self.absolute_path,
            reason=reason,
            session_index=self._state.session_index,
        )
