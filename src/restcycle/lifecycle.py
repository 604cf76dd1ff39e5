"""Per-session request lifecycle for GET-style subscriptions.

A LifecycleController owns one ``LifecycleState`` and one cancellation
token slot. Starting, reconfiguring, refetching and retrying all launch an
attempt; launching always invalidates the previous attempt's token first,
and an attempt whose token is no longer valid when it resumes commits
nothing.

    Idle --start/reconfigure--> Loading --response--> Settled(Success|Error)
      ^                             |
      +----------- cancel ----------+

Controllers must be driven from inside a running event loop.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from dataclasses import replace
from typing import TYPE_CHECKING, Any, Generic, TypeVar

import structlog

from restcycle.cancellation import CancellationToken, TokenSlot
from restcycle.config import Settings
from restcycle.debounce import Debouncer, debounce_settings
from restcycle.errors import NormalizedError, RequestAborted, RestCycleError
from restcycle.hooks import notify
from restcycle.models.options import FetchOptions, GetOptions, Scope
from restcycle.models.state import LifecycleState
from restcycle.paths import resolve_url
from restcycle.querystring import merge_query_params
from restcycle.request import build_request

if TYPE_CHECKING:
    import httpx

    from restcycle.models.options import RequestOptionsSource, ResolveFunction, RetryFunction
    from restcycle.protocols import ProcessorProtocol

log = structlog.get_logger()

StateT = TypeVar("StateT", bound=LifecycleState)
OptionsT = TypeVar("OptionsT", bound=FetchOptions)
Listener = Callable[[Any], None]


class Session(Generic[OptionsT, StateT]):
    """State, subscribers, token slot and configuration layering shared by all controllers."""

    def __init__(
        self,
        processor: ProcessorProtocol,
        scope: Scope,
        options: OptionsT,
        *,
        settings: Settings | None = None,
    ) -> None:
        self._processor = processor
        self._scope = scope
        self._options = options
        self._settings = settings or Settings()
        self._tokens = TokenSlot()
        self._listeners: list[Listener] = []
        self._closed = False
        self._state: StateT = self._initial_state()

    def _initial_state(self) -> StateT:
        raise NotImplementedError

    @property
    def state(self) -> StateT:
        return self._state

    @property
    def options(self) -> OptionsT:
        return self._options

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def absolute_path(self) -> str:
        """Absolute URL (with query string) the current options resolve to."""
        return self._url(self._options)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` with every committed state. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def close(self) -> None:
        """End the session. Terminal: nothing is committed or reported afterwards."""
        if self._closed:
            return
        self._closed = True
        self._tokens.invalidate()
        self._listeners.clear()
        log.debug("session_closed", controller=type(self).__name__, url=self.absolute_path)

    async def __aenter__(self):
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()

    def start(self) -> None:
        """Activate the session."""

    # -- state ------------------------------------------------------------

    def _commit(self, **changes: Any) -> None:
        if self._closed:
            return
        self._state = replace(self._state, **changes)
        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception:
                log.warning("listener_error", controller=type(self).__name__, exc_info=True)

    def _report_error(
        self,
        options: FetchOptions,
        error: NormalizedError,
        retry: RetryFunction,
        response: httpx.Response | None,
    ) -> None:
        if options.local_error_only or self._closed:
            return
        notify(self._scope.on_error, error, retry, response, event="on_error")

    # -- configuration layering ---------------------------------------------

    def _base(self, options: FetchOptions) -> str:
        return options.base if options.base is not None else self._scope.base

    def _parent_path(self, options: FetchOptions) -> str:
        # An instance-level base starts a new composition root
        return "" if options.base is not None else self._scope.parent_path

    def _query_params(
        self, options: FetchOptions, extra: Mapping[str, Any] | None = None
    ) -> dict[str, Any]:
        return merge_query_params(self._scope.query_params, options.query_params, extra)

    def _url(
        self,
        options: FetchOptions,
        *,
        path: str | None = None,
        extra_query: Mapping[str, Any] | None = None,
    ) -> str:
        return resolve_url(
            self._base(options),
            self._parent_path(options),
            options.path if path is None else path,
            self._query_params(options, extra_query),
            options.query_param_options or self._scope.query_param_options,
        )

    def _resolve_fn(self, options: FetchOptions) -> ResolveFunction | None:
        return options.resolve if options.resolve is not None else self._scope.resolve

    def _sources(
        self, options: FetchOptions, call_options: RequestOptionsSource = None
    ) -> tuple[RequestOptionsSource, ...]:
        return (self._scope.request_options, options.request_options, call_options)

    def _fetch_key(self, options: FetchOptions) -> tuple[Any, ...]:
        """Identity of the request an options value asks for.

        A reconfiguration only warrants a new attempt when this changes.
        """
        return (
            self._base(options),
            resolve_url(self._base(options), self._parent_path(options), options.path),
            self._resolve_fn(options),
            self._query_params(options),
        )


class LifecycleController(Session[GetOptions, LifecycleState]):
    """GET subscription: data/loading/error plus refetch, cancel and retry."""

    def __init__(
        self,
        processor: ProcessorProtocol,
        scope: Scope,
        options: GetOptions,
        *,
        settings: Settings | None = None,
    ) -> None:
        super().__init__(processor, scope, options, settings=settings)
        self._task: asyncio.Task[Any] | None = None
        self._started = False
        self._last_key: tuple[Any, ...] | None = None
        self._debouncer = self._build_debouncer(options)

    def _initial_state(self) -> LifecycleState:
        mock = self._options.mock
        if mock is not None:
            return LifecycleState(data=mock.data, loading=mock.loading, error=mock.error)
        return LifecycleState(loading=not self._options.lazy)

    def _build_debouncer(self, options: GetOptions) -> Debouncer | None:
        settings = debounce_settings(options.debounce, self._settings.debounce)
        if settings is None:
            return None
        return Debouncer.from_settings(self._launch, settings)

    # -- session boundaries -------------------------------------------------

    def start(self) -> None:
        """Activate the session; issues the initial attempt unless lazy."""
        if self._closed or self._started:
            return
        self._started = True
        if self._options.mock is None and not self._options.lazy:
            self._trigger(self._options)

    def stop(self) -> None:
        """End the session (alias of ``close``)."""
        self.close()

    def close(self) -> None:
        if self._debouncer is not None:
            self._debouncer.cancel()
        super().close()

    # -- operations ---------------------------------------------------------

    def reconfigure(self, options: GetOptions) -> None:
        """Replace the instance options wholesale.

        A new attempt is issued only if the base, the composed path, the
        resolve function or the query parameters changed.
        """
        if self._closed:
            return
        previous = self._options
        self._options = options

        if options.debounce != previous.debounce:
            if self._debouncer is not None:
                self._debouncer.cancel()
            self._debouncer = self._build_debouncer(options)

        if options.mock is not None:
            mock = options.mock
            self._commit(data=mock.data, loading=mock.loading, error=mock.error)
            return

        if not self._started or options.lazy:
            return
        if self._fetch_key(options) == self._last_key:
            return
        self._trigger(options)

    async def refetch(self, **overrides: Any) -> Any:
        """Cancel any in-flight attempt and fetch again.

        Keyword overrides (``path``, ``query_params``, ``base``, ...) apply to
        this attempt only. Returns the resolved data, or None when the
        attempt failed or was superseded.
        """
        if self._closed:
            return None
        if self._debouncer is not None:
            self._debouncer.cancel()
        options = replace(self._options, **overrides) if overrides else self._options
        if options.mock is not None:
            return options.mock.data
        return await self._launch(options)

    def cancel(self) -> None:
        """Abort the in-flight attempt. Data and error are left untouched."""
        if self._debouncer is not None:
            self._debouncer.cancel()
        self._tokens.invalidate()
        self._commit(loading=False)

    async def join(self) -> None:
        """Wait until no debounced trigger is pending and no attempt is in flight."""
        while True:
            if self._debouncer is not None and self._debouncer.pending:
                await self._debouncer.wait_idle()
                continue
            task = self._task
            if task is None or task.done():
                return
            await asyncio.wait([task])

    # -- attempts -----------------------------------------------------------

    def _trigger(self, options: GetOptions) -> None:
        self._last_key = self._fetch_key(options)
        if self._debouncer is not None:
            self._debouncer(options)
        else:
            self._launch(options)

    def _launch(
        self, options: GetOptions, retry_headers: Mapping[str, str] | None = None
    ) -> asyncio.Task[Any]:
        token = self._tokens.renew()
        if self._state.error is not None or not self._state.loading:
            self._commit(loading=True, error=None)
        self._task = asyncio.create_task(self._attempt(options, token, retry_headers))
        return self._task

    async def _attempt(
        self,
        options: GetOptions,
        token: CancellationToken,
        retry_headers: Mapping[str, str] | None,
    ) -> Any:
        url = self._url(options)
        response = None
        data: Any = None
        try:
            descriptor = await build_request(
                "GET",
                url,
                token=token,
                sources=self._sources(options),
                retry_headers=retry_headers,
            )
            if not token.is_valid():
                return None
            notify(self._scope.on_request, descriptor, event="on_request")
            outcome = await self._processor.execute(descriptor)
        except RequestAborted:
            return None
        except RestCycleError as exc:
            error: NormalizedError | None = exc.error
        else:
            if not token.is_valid():
                return None
            response = outcome.response
            notify(self._scope.on_response, response, event="on_response")
            data, error = await self._processor.normalize(outcome, self._resolve_fn(options))

        if not token.is_valid():
            log.debug("stale_response_discarded", url=url)
            return None

        if error is not None:
            self._commit(loading=False, error=error, data=None, response=response)

            async def retry(headers: Mapping[str, str] | None = None) -> Any:
                if self._closed:
                    return None
                return await self._launch(options, headers)

            self._report_error(options, error, retry, response)
            return None

        self._commit(loading=False, error=None, data=data, response=response)
        return data
