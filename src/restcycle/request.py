"""Build one RequestDescriptor from layered request options.

Layers are applied lowest priority first: engine defaults, provider,
instance, call-time, then retry-time headers. Headers merge shallowly
(case-insensitive); every other option is last-layer-wins.
"""

from __future__ import annotations

import inspect
import json
from collections.abc import Iterable, Mapping
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

import httpx
import structlog

from restcycle.errors import ErrorKind, NormalizedError, RestCycleError
from restcycle.models.state import RequestDescriptor

if TYPE_CHECKING:
    from restcycle.cancellation import CancellationToken
    from restcycle.models.options import RequestOptionsSource

log = structlog.get_logger()


def serialize_body(body: Any) -> tuple[str | bytes | None, str | None]:
    """Return the wire body and its default content type."""
    if body is None:
        return None, None
    if isinstance(body, str):
        return body, "text/plain"
    if isinstance(body, bytes):
        return body, "application/octet-stream"
    return json.dumps(body), "application/json"


def call_with_prefix(func: Any, *args: Any) -> Any:
    """Call ``func`` with as many leading positional ``args`` as it accepts."""
    try:
        params = list(inspect.signature(func).parameters.values())
    except (TypeError, ValueError):
        return func(*args)
    if any(p.kind is inspect.Parameter.VAR_POSITIONAL for p in params):
        return func(*args)
    positional = [
        p
        for p in params
        if p.kind in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)
    ]
    return func(*args[: len(positional)])


async def evaluate_request_options(
    source: RequestOptionsSource,
    url: str,
    method: str,
    body: str | bytes | None,
) -> dict[str, Any]:
    """Evaluate a static or computed options layer. Never cached."""
    if source is None:
        return {}
    if callable(source):
        result = call_with_prefix(source, url, method, body)
        if inspect.isawaitable(result):
            result = await result
        return dict(result or {})
    return dict(source)


async def build_request(
    method: str,
    url: str,
    *,
    token: CancellationToken,
    body: Any = None,
    sources: Iterable[RequestOptionsSource] = (),
    retry_headers: Mapping[str, str] | None = None,
    default_headers: Mapping[str, str] | None = None,
) -> RequestDescriptor:
    """Raises RestCycleError (kind ``callback``) when a computed options layer fails."""
    method = method.upper()
    content, content_type = (None, None) if method == "GET" else serialize_body(body)

    headers = httpx.Headers(default_headers or {})
    if content_type is not None and "content-type" not in headers:
        headers["content-type"] = content_type

    timeout: float | None = None
    for source in sources:
        try:
            options = await evaluate_request_options(source, url, method, content)
        except Exception as exc:
            log.warning(
                "request_options_failed",
                method=method,
                url=url,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise RestCycleError(
                NormalizedError(
                    message="REQUEST_OPTIONS_ERROR", data=str(exc), kind=ErrorKind.CALLBACK
                )
            ) from exc
        if options.get("headers"):
            headers.update(options["headers"])
        if "timeout" in options:
            timeout = options["timeout"]

    if retry_headers:
        headers.update(retry_headers)

    return RequestDescriptor(
        method=method,
        url=url,
        headers=MappingProxyType(dict(headers.items())),
        body=content,
        token=token,
        timeout=timeout,
    )
