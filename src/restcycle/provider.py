"""Provider: the outermost configuration layer.

A RestProvider bundles the settings, the shared ResponseProcessor (and the
httpx client behind it) and the provider-level Scope. Controllers created
from a provider inherit its scope; ``nest`` derives a child provider whose
scope composes a further parent path, or starts a new composition root
when given its own ``base``.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

import structlog

from restcycle.config import Settings
from restcycle.lifecycle import LifecycleController
from restcycle.models.options import GetOptions, MutateOptions, MutateVerb, PollOptions, Scope
from restcycle.mutate import MutationController
from restcycle.poll import LongPollEngine
from restcycle.processor import ResponseProcessor, build_http_client

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    import httpx

log = structlog.get_logger()


@dataclass
class RestProvider:
    """Holds the shared runtime collaborators. Passed by value to every controller."""

    settings: Settings
    processor: ResponseProcessor
    scope: Scope = field(default_factory=Scope)

    # Owned by open_provider; None when the caller manages the client
    http_client: httpx.AsyncClient | None = None

    def nest(self, path: str = "", *, base: str | None = None, **overrides: Any) -> RestProvider:
        return replace(self, scope=self.scope.nest(path, base=base, **overrides))

    def get(self, path: str = "", **options: Any) -> LifecycleController:
        return LifecycleController(
            self.processor, self.scope, GetOptions(path=path, **options), settings=self.settings
        )

    def mutate(self, verb: MutateVerb, path: str = "", **options: Any) -> MutationController:
        return MutationController(
            self.processor,
            self.scope,
            MutateOptions(verb=verb, path=path, **options),
            settings=self.settings,
        )

    def poll(self, path: str = "", **options: Any) -> LongPollEngine:
        return LongPollEngine(
            self.processor, self.scope, PollOptions(path=path, **options), settings=self.settings
        )


@asynccontextmanager
async def open_provider(
    base: str = "",
    *,
    settings: Settings | None = None,
    client: httpx.AsyncClient | None = None,
    **scope_options: Any,
) -> AsyncIterator[RestProvider]:
    """Create a provider for ``base``; closes the httpx client it created on exit."""
    settings = settings or Settings()
    owns_client = client is None
    http_client = client if client is not None else build_http_client(settings.http)
    log.debug("provider_opened", base=base, owns_client=owns_client)
    try:
        yield RestProvider(
            settings=settings,
            processor=ResponseProcessor(http_client),
            scope=Scope(base=base, **scope_options),
            http_client=http_client if owns_client else None,
        )
    finally:
        if owns_client:
            await http_client.aclose()
