"""Execute request descriptors and normalize their outcomes.

All network I/O goes through a single ResponseProcessor that receives an
httpx.AsyncClient via constructor injection. The owner of the client (see
restcycle.provider) owns its lifecycle.
"""

from __future__ import annotations

import asyncio
import inspect
import json
from typing import TYPE_CHECKING, Any

import httpx
import structlog

from restcycle.config import HttpSettings
from restcycle.errors import ErrorKind, NormalizedError, RequestAborted, RestCycleError
from restcycle.models.state import FetchOutcome
from restcycle.request import call_with_prefix

if TYPE_CHECKING:
    from restcycle.models.options import ResolveFunction
    from restcycle.models.state import RequestDescriptor

log = structlog.get_logger()

_NO_PREVIOUS = object()


def build_http_client(settings: HttpSettings | None = None) -> httpx.AsyncClient:
    """Create the shared httpx client. Called once per provider."""
    settings = settings or HttpSettings()
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.timeout_seconds),
        headers={"User-Agent": settings.user_agent},
        limits=httpx.Limits(
            max_connections=settings.max_connections,
            max_keepalive_connections=settings.max_keepalive_connections,
        ),
    )


def parse_response(response: httpx.Response) -> FetchOutcome:
    """Parse the body as the declared content type.

    JSON is assumed when the response declares no content type. An empty
    body parses to None.
    """
    raw_body = response.text
    content_type = response.headers.get("content-type", "")
    data: Any = raw_body or None
    parse_failed = False
    parse_error: str | None = None

    if raw_body and ("json" in content_type or not content_type):
        try:
            data = json.loads(raw_body)
        except ValueError as exc:
            parse_failed = True
            parse_error = str(exc)

    return FetchOutcome(
        response=response,
        raw_body=raw_body,
        data=data,
        ok=response.is_success,
        status=response.status_code,
        status_text=response.reason_phrase,
        parse_failed=parse_failed,
        parse_error=parse_error,
    )


async def apply_resolve(
    data: Any, resolve: ResolveFunction | None, *args: Any
) -> tuple[Any, NormalizedError | None]:
    """Run a sync or async resolve function, funnelling every failure into RESOLVE_ERROR."""
    if resolve is None:
        return data, None
    try:
        result = call_with_prefix(resolve, data, *args)
        if inspect.isawaitable(result):
            result = await result
    except Exception as exc:
        log.warning("resolve_failed", error=str(exc), error_type=type(exc).__name__)
        return None, NormalizedError(message="RESOLVE_ERROR", data=str(exc), kind=ErrorKind.RESOLVE)
    return result, None


class ResponseProcessor:
    """Runs one attempt at a time per call; holds no per-attempt state."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def execute(self, descriptor: RequestDescriptor) -> FetchOutcome:
        """Dispatch ``descriptor`` bound to its cancellation token.

        Raises RequestAborted when the token is invalidated before the
        response arrives, and RestCycleError on transport failures.
        """
        token = descriptor.token
        if not token.is_valid():
            raise RequestAborted(descriptor.url)

        try:
            request = self._client.build_request(
                descriptor.method,
                descriptor.url,
                headers=dict(descriptor.headers),
                content=descriptor.body,
                timeout=(
                    descriptor.timeout
                    if descriptor.timeout is not None
                    else httpx.USE_CLIENT_DEFAULT
                ),
            )
            send = asyncio.create_task(self._client.send(request))
            unregister = token.on_invalidate(send.cancel)
            try:
                response = await send
            finally:
                unregister()
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if not token.is_valid() and (current is None or not current.cancelling()):
                log.debug("request_aborted", method=descriptor.method, url=descriptor.url)
                raise RequestAborted(descriptor.url) from None
            raise
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            reason = str(exc) or type(exc).__name__
            log.info(
                "request_failed",
                method=descriptor.method,
                url=descriptor.url,
                reason=reason,
            )
            raise RestCycleError(
                NormalizedError(message=f"Failed to fetch: {reason}", kind=ErrorKind.TRANSPORT)
            ) from exc

        log.info(
            "fetch_complete",
            method=descriptor.method,
            url=descriptor.url,
            status_code=response.status_code,
            content_length=len(response.content),
        )
        return parse_response(response)

    async def normalize(
        self,
        outcome: FetchOutcome,
        resolve: ResolveFunction | None = None,
        previous: Any = _NO_PREVIOUS,
    ) -> tuple[Any, NormalizedError | None]:
        """Turn an outcome into ``(data, error)``; exactly one of them is meaningful."""
        if not outcome.ok or outcome.parse_failed:
            message = f"Failed to fetch: {outcome.status} {outcome.status_text}"
            if outcome.parse_failed:
                message = f"{message} - {outcome.parse_error}"
            return None, NormalizedError(
                message=message,
                data=outcome.raw_body if outcome.parse_failed else outcome.data,
                status=outcome.status,
                kind=ErrorKind.HTTP_STATUS if not outcome.ok else ErrorKind.PARSE,
            )

        if previous is _NO_PREVIOUS:
            return await apply_resolve(outcome.data, resolve)
        return await apply_resolve(outcome.data, resolve, previous)
