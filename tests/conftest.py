"""Shared test fixtures for the restcycle test suite."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import TYPE_CHECKING

import httpx
import pytest

from restcycle.config import Settings
from restcycle.models.options import Scope
from restcycle.processor import ResponseProcessor, parse_response

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from restcycle.models.state import FetchOutcome, RequestDescriptor

BASE = "https://api.fake"


def echo(request: httpx.Request) -> httpx.Response:
    """Default response: echoes the path and query parameters as JSON."""
    return httpx.Response(
        200,
        json={"path": request.url.path, "params": dict(request.url.params)},
    )


class FakeServer:
    """httpx.MockTransport handler that records requests.

    Responses come from ``script`` (consumed in order) and then from
    ``respond``. Setting ``gate`` holds every response until the event is set.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.script: list[httpx.Response | Exception] = []
        self.respond: Callable[[httpx.Request], httpx.Response] = echo
        self.gate: asyncio.Event | None = None

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.gate is not None:
            await self.gate.wait()
        if self.script:
            item = self.script.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        return self.respond(request)


class GatedProcessor(ResponseProcessor):
    """Processor whose responses are released one by one by the test.

    It ignores cancellation on purpose, so late completions reach the
    controllers and must be discarded by their token checks.
    """

    def __init__(self, respond: Callable[[RequestDescriptor], httpx.Response] | None = None) -> None:
        self.calls: list[tuple[RequestDescriptor, asyncio.Event]] = []
        self.respond = respond or (lambda d: httpx.Response(200, json={"url": d.url}))

    async def execute(self, descriptor: RequestDescriptor) -> FetchOutcome:
        gate = asyncio.Event()
        self.calls.append((descriptor, gate))
        await gate.wait()
        return parse_response(self.respond(descriptor))

    def release(self, index: int) -> None:
        self.calls[index][1].set()


@pytest.fixture()
def settings() -> Settings:
    return Settings()


@pytest.fixture()
def scope() -> Scope:
    return Scope(base=BASE)


@pytest.fixture()
def server() -> FakeServer:
    return FakeServer()


@pytest.fixture()
async def http_client(server: FakeServer) -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(server)) as client:
        yield client


@pytest.fixture()
def processor(http_client: httpx.AsyncClient) -> ResponseProcessor:
    return ResponseProcessor(http_client)


@pytest.fixture()
def gated() -> GatedProcessor:
    return GatedProcessor()
