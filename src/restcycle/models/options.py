from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    import httpx

    from restcycle.errors import NormalizedError

RequestOptions = Mapping[str, Any]  # {"headers": {...}, "timeout": 5.0}
RequestOptionsSource = (
    RequestOptions | Callable[..., "RequestOptions | Awaitable[RequestOptions] | None"] | None
)
ResolveFunction = Callable[..., Any]
RetryFunction = Callable[[], Awaitable[Any]]
ErrorHook = Callable[["NormalizedError", RetryFunction, "httpx.Response | None"], Any]
RequestHook = Callable[..., Any]
ResponseHook = Callable[["httpx.Response"], Any]
UntilPredicate = Callable[[Any, "httpx.Response | None"], bool]

MutateVerb = Literal["POST", "PUT", "PATCH", "DELETE"]


@dataclass(frozen=True)
class QueryStringOptions:
    """How query parameters are serialized onto the composed URL."""

    # a[0]=x (indices), a[]=x (brackets), a=x&a=y (repeat), a=x,y (comma)
    array_format: Literal["indices", "brackets", "repeat", "comma"] = "indices"
    delimiter: str = "&"
    allow_dots: bool = False  # a.b=c instead of a[b]=c
    skip_nulls: bool = False
    encode: bool = True


@dataclass(frozen=True)
class DebounceSettings:
    wait: float = 0.0
    leading: bool = False
    trailing: bool = True
    max_wait: float | None = None


@dataclass(frozen=True)
class MockOutcome:
    """Fixed state substituted for the network, for tests and previews."""

    data: Any = None
    loading: bool = False
    error: NormalizedError | None = None


@dataclass(frozen=True, kw_only=True)
class Scope:
    """Provider-level configuration layer.

    Nested scopes are built with ``nest``; they are values passed into every
    controller, never looked up from ambient state.
    """

    base: str = ""
    parent_path: str = ""
    query_params: Mapping[str, Any] = field(default_factory=dict)
    query_param_options: QueryStringOptions | None = None
    request_options: RequestOptionsSource = None
    resolve: ResolveFunction | None = None
    on_error: ErrorHook | None = None
    on_request: RequestHook | None = None
    on_response: ResponseHook | None = None

    def nest(self, path: str = "", *, base: str | None = None, **overrides: Any) -> Scope:
        """Return a child scope whose parent path includes ``path``.

        An explicit ``base`` starts a new composition root: the inherited
        parent path is discarded and ``path`` composes against the new base.
        """
        from restcycle.paths import compose_path

        if base is not None:
            return replace(self, base=base, parent_path=compose_path("", path), **overrides)
        return replace(self, parent_path=compose_path(self.parent_path, path), **overrides)


@dataclass(frozen=True, kw_only=True)
class FetchOptions:
    """Instance-level configuration shared by every controller kind."""

    path: str = ""
    base: str | None = None
    query_params: Mapping[str, Any] | None = None
    query_param_options: QueryStringOptions | None = None
    request_options: RequestOptionsSource = None
    resolve: ResolveFunction | None = None
    local_error_only: bool = False
    mock: MockOutcome | None = None


@dataclass(frozen=True, kw_only=True)
class GetOptions(FetchOptions):
    lazy: bool = False
    # True, a wait in seconds, or full DebounceSettings
    debounce: bool | float | DebounceSettings = False


@dataclass(frozen=True, kw_only=True)
class MutateOptions(FetchOptions):
    verb: MutateVerb = "POST"


@dataclass(frozen=True, kw_only=True)
class PollOptions(FetchOptions):
    lazy: bool = False
    wait: int | None = None  # seconds; Settings.poll.wait_seconds when None
    interval: float | None = None  # seconds; Settings.poll.interval_seconds when None
    until: UntilPredicate | None = None
