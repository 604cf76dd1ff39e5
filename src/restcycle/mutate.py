"""POST/PUT/PATCH/DELETE with a dual contract.

``MutationController.mutate`` commits its outcome to the observable state
and also returns the resolved data (or raises MutationError carrying the
same NormalizedError that was committed). A new call supersedes an
in-flight call of the same controller; the superseded call returns None.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import structlog

from restcycle.errors import MutationError, NormalizedError, RequestAborted, RestCycleError
from restcycle.hooks import notify
from restcycle.lifecycle import Session
from restcycle.models.options import MockOutcome, MutateOptions, RequestOptionsSource
from restcycle.models.state import LifecycleState
from restcycle.paths import with_identifier
from restcycle.request import build_request

log = structlog.get_logger()


class MutationController(Session[MutateOptions, LifecycleState]):
    def _initial_state(self) -> LifecycleState:
        mock = self._options.mock
        if mock is not None:
            return LifecycleState(data=mock.data, loading=mock.loading, error=mock.error)
        return LifecycleState()

    def stop(self) -> None:
        """End the session (alias of ``close``)."""
        self.close()

    def reconfigure(self, options: MutateOptions) -> None:
        """Replace the options used by subsequent ``mutate`` calls."""
        if not self._closed:
            self._options = options

    def cancel(self) -> None:
        """Abort the in-flight mutation without recording an error."""
        self._tokens.invalidate()
        self._commit(loading=False)

    async def mutate(
        self,
        body: Any = None,
        *,
        request_options: RequestOptionsSource = None,
        query_params: Mapping[str, Any] | None = None,
        retry_headers: Mapping[str, str] | None = None,
    ) -> Any:
        """Send ``body`` with the configured verb.

        For DELETE, ``body`` is an identifier appended to the path instead
        of being sent. Raises MutationError on any failure.
        """
        if self._closed:
            return None
        options = self._options

        if options.mock is not None:
            return self._apply_mock(options.mock)

        token = self._tokens.renew()
        if self._state.error is not None or not self._state.loading:
            self._commit(loading=True, error=None)

        path = options.path
        payload = body
        if options.verb == "DELETE" and body is not None:
            path = with_identifier(path, body)
            payload = None

        url = self._url(options, path=path, extra_query=query_params)
        response = None
        data: Any = None
        try:
            descriptor = await build_request(
                options.verb,
                url,
                token=token,
                body=payload,
                sources=self._sources(options, request_options),
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
            log.debug("stale_mutation_discarded", method=options.verb, url=url)
            return None

        if error is not None:
            self._commit(loading=False, error=error, data=None, response=response)

            async def retry(headers: Mapping[str, str] | None = None) -> Any:
                return await self.mutate(
                    body,
                    request_options=request_options,
                    query_params=query_params,
                    retry_headers=headers,
                )

            self._report_error(options, error, retry, response)
            raise MutationError(error)

        self._commit(loading=False, error=None, data=data, response=response)
        return data

    def _apply_mock(self, mock: MockOutcome) -> Any:
        self._commit(data=mock.data, loading=mock.loading, error=mock.error)
        if mock.error is not None:
            raise MutationError(mock.error)
        return mock.data
