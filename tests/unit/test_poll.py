"""Unit tests for LongPollEngine.

Most tests run with ``interval=0`` so the loop re-polls as soon as a
response lands; the FakeServer script decides when the session ends.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import httpx

from restcycle.errors import ErrorKind, NormalizedError, RestCycleError
from restcycle.models.options import MockOutcome, PollOptions, Scope
from restcycle.poll import LongPollEngine

if TYPE_CHECKING:
    from restcycle.models.state import RequestDescriptor
    from restcycle.processor import ResponseProcessor
    from tests.conftest import FakeServer, GatedProcessor

BASE = "https://api.fake"


def indexed(index: str, body: Any, status: int = 200) -> httpx.Response:
    return httpx.Response(status, json=body, headers={"x-polling-index": index})


def prefer_headers(server: FakeServer) -> list[str]:
    return [request.headers["prefer"] for request in server.requests]


async def _wait_for_requests(server: FakeServer, count: int) -> None:
    for _ in range(100):
        if len(server.requests) >= count:
            await asyncio.sleep(0.01)
            return
        await asyncio.sleep(0.01)
    raise AssertionError(f"expected {count} requests, saw {len(server.requests)}")


async def _settle(rounds: int = 5) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


class TestPolling:
    async def test_prefer_header_carries_index(
        self, processor: ResponseProcessor, scope: Scope, server: FakeServer
    ) -> None:
        server.script = [
            indexed("1", {"v": 1}),
            indexed("2", {"v": 2}),
            httpx.Response(200, json={"v": 3}),
        ]
        engine = LongPollEngine(processor, scope, PollOptions(path="/events", interval=0))
        engine.start()
        await engine.join()

        assert prefer_headers(server) == ["wait=60s;", "wait=60s;index=1", "wait=60s;index=2"]
        assert engine.state.data == {"v": 3}
        assert engine.state.session_index == "2"
        assert engine.state.finished is True
        assert engine.state.polling is False
        assert engine.state.loading is False

    async def test_missing_index_finishes_without_more_requests(
        self, processor: ResponseProcessor, scope: Scope, server: FakeServer
    ) -> None:
        engine = LongPollEngine(processor, scope, PollOptions(path="/events", interval=0))
        engine.start()
        await engine.join()
        await asyncio.sleep(0.05)
        assert len(server.requests) == 1
        assert engine.state.finished is True

    async def test_wait_option_sets_prefer(
        self, processor: ResponseProcessor, scope: Scope, server: FakeServer
    ) -> None:
        engine = LongPollEngine(processor, scope, PollOptions(path="/events", wait=5, interval=0))
        engine.start()
        await engine.join()
        assert prefer_headers(server) == ["wait=5s;"]

    async def test_until_predicate_finishes(
        self, processor: ResponseProcessor, scope: Scope, server: FakeServer
    ) -> None:
        server.script = [
            indexed("1", {"done": False}),
            indexed("2", {"done": True}),
            indexed("3", {"done": True}),
        ]
        def until(data: Any, response: httpx.Response | None) -> bool:
            return bool(data and data["done"])

        engine = LongPollEngine(
            processor, scope, PollOptions(path="/jobs/1", interval=0, until=until)
        )
        engine.start()
        await engine.join()

        assert len(server.requests) == 2
        assert engine.state.data == {"done": True}
        assert engine.state.finished is True

    async def test_until_already_satisfied_skips_request(
        self, processor: ResponseProcessor, scope: Scope, server: FakeServer
    ) -> None:
        engine = LongPollEngine(
            processor, scope, PollOptions(path="/jobs/1", interval=0, until=lambda d, r: True)
        )
        engine.start()
        await engine.join()
        assert server.requests == []
        assert engine.state.finished is True

    async def test_not_modified_keeps_data(
        self, processor: ResponseProcessor, scope: Scope, server: FakeServer
    ) -> None:
        server.script = [
            indexed("1", {"v": 1}),
            httpx.Response(304, headers={"x-polling-index": "2"}),
            httpx.Response(304),
        ]
        engine = LongPollEngine(processor, scope, PollOptions(path="/events", interval=0))
        engine.start()
        await engine.join()

        assert len(server.requests) == 3
        assert engine.state.data == {"v": 1}
        assert engine.state.error is None
        assert engine.state.finished is True

    async def test_resolve_receives_previous_data(
        self, processor: ResponseProcessor, scope: Scope, server: FakeServer
    ) -> None:
        server.script = [indexed("1", [1]), indexed("2", [2]), httpx.Response(200, json=[3])]

        def accumulate(data: list[int], previous: list[int] | None) -> list[int]:
            return (previous or []) + data

        engine = LongPollEngine(
            processor, scope, PollOptions(path="/feed", interval=0, resolve=accumulate)
        )
        engine.start()
        await engine.join()
        assert engine.state.data == [1, 2, 3]


class TestPollErrors:
    async def test_http_error_is_transient(
        self, processor: ResponseProcessor, server: FakeServer
    ) -> None:
        reported: list[tuple] = []
        scope = Scope(base=BASE, on_error=lambda *args: reported.append(args))
        server.script = [
            httpx.Response(500, json={}),
            indexed("1", {"v": 1}),
            httpx.Response(200, json={"v": 2}),
        ]
        engine = LongPollEngine(processor, scope, PollOptions(path="/events", interval=0))
        errors: list[Any] = []
        engine.subscribe(lambda state: errors.append(state.error) if state.error else None)
        engine.start()
        await engine.join()

        assert len(server.requests) == 3
        assert len(reported) == 1
        assert errors[0].status == 500
        assert engine.state.error is None
        assert engine.state.data == {"v": 2}
        # The failed request handed out no index
        assert prefer_headers(server)[:2] == ["wait=60s;", "wait=60s;"]

    async def test_error_keeps_previous_data(
        self, processor: ResponseProcessor, scope: Scope, server: FakeServer
    ) -> None:
        server.script = [indexed("1", {"v": 1}), httpx.Response(502, json={})]
        engine = LongPollEngine(processor, scope, PollOptions(path="/events", interval=0))
        failed: list[Any] = []
        engine.subscribe(lambda state: failed.append(state) if state.error else None)
        engine.start()
        await engine.join()

        assert failed[0].data == {"v": 1}
        assert failed[0].error.status == 502
        assert failed[0].polling is True

    async def test_transport_error_continues(
        self, processor: ResponseProcessor, scope: Scope, server: FakeServer
    ) -> None:
        server.script = [httpx.ConnectError("reset"), httpx.Response(200, json={"ok": True})]
        engine = LongPollEngine(processor, scope, PollOptions(path="/events", interval=0))
        engine.start()
        await engine.join()
        assert len(server.requests) == 2
        assert engine.state.data == {"ok": True}

    async def test_retry_skips_remaining_interval(
        self, processor: ResponseProcessor, server: FakeServer
    ) -> None:
        reported: list[tuple] = []
        scope = Scope(base=BASE, on_error=lambda *args: reported.append(args))
        server.script = [httpx.Response(503, json={})]
        engine = LongPollEngine(processor, scope, PollOptions(path="/events", interval=10))
        engine.start()
        await _wait_for_requests(server, 1)

        _, retry, _ = reported[0]
        await retry()
        await engine.join()
        assert len(server.requests) == 2
        assert engine.state.finished is True

    async def test_error_after_stop_is_discarded(self, gated: GatedProcessor) -> None:
        reported: list[tuple] = []
        scope = Scope(base=BASE, on_error=lambda *args: reported.append(args))

        def reset(descriptor: RequestDescriptor) -> httpx.Response:
            raise RestCycleError(
                NormalizedError(message="Failed to fetch: reset", kind=ErrorKind.TRANSPORT)
            )

        gated.respond = reset
        engine = LongPollEngine(gated, scope, PollOptions(path="/events", interval=0))
        engine.start()
        await _settle()
        assert len(gated.calls) == 1

        engine.stop()
        gated.release(0)
        await engine.join()

        assert engine.state.error is None
        assert engine.state.polling is False
        assert reported == []
        assert len(gated.calls) == 1

    async def test_failing_until_before_first_request(
        self, processor: ResponseProcessor, server: FakeServer
    ) -> None:
        reported: list[tuple] = []
        scope = Scope(base=BASE, on_error=lambda *args: reported.append(args))
        engine = LongPollEngine(
            processor,
            scope,
            PollOptions(path="/events", interval=0, until=lambda data, response: data["done"]),
        )
        engine.start()
        await engine.join()

        error = engine.state.error
        assert error is not None
        assert error.message == "UNTIL_ERROR"
        assert error.kind == ErrorKind.CALLBACK
        assert engine.state.polling is False
        assert engine.state.finished is True
        assert engine.state.loading is False
        assert server.requests == []
        assert reported[0][0] == error

    async def test_failing_until_after_response_keeps_data(
        self, processor: ResponseProcessor, scope: Scope, server: FakeServer
    ) -> None:
        server.script = [indexed("1", {"v": 1})]
        engine = LongPollEngine(
            processor,
            scope,
            PollOptions(
                path="/events",
                interval=0,
                until=lambda data, response: data is not None and data["done"],
            ),
        )
        engine.start()
        await engine.join()

        assert len(server.requests) == 1
        assert engine.state.data == {"v": 1}
        assert engine.state.session_index == "1"
        assert engine.state.error is not None
        assert engine.state.error.data == "'done'"
        assert engine.state.finished is True
        assert engine.state.polling is False


class TestPollControl:
    async def test_lazy_waits_for_start(
        self, processor: ResponseProcessor, scope: Scope, server: FakeServer
    ) -> None:
        engine = LongPollEngine(processor, scope, PollOptions(path="/events", lazy=True))
        assert engine.state.polling is False
        assert engine.state.loading is False
        await asyncio.sleep(0.01)
        assert server.requests == []

    async def test_stop_then_start_resumes_with_index(
        self, processor: ResponseProcessor, scope: Scope, server: FakeServer
    ) -> None:
        server.respond = lambda request: indexed("7", {"v": 7})
        engine = LongPollEngine(processor, scope, PollOptions(path="/events", interval=10))
        engine.start()
        await _wait_for_requests(server, 1)
        assert engine.state.session_index == "7"

        engine.stop()
        await engine.join()
        assert engine.state.polling is False
        assert engine.state.finished is True
        assert engine.state.data == {"v": 7}

        engine.start()
        await _wait_for_requests(server, 2)
        assert prefer_headers(server) == ["wait=60s;", "wait=60s;index=7"]
        assert engine.state.polling is True
        engine.close()
        await engine.join()

    async def test_close_while_pending(
        self, processor: ResponseProcessor, scope: Scope, server: FakeServer
    ) -> None:
        server.gate = asyncio.Event()
        engine = LongPollEngine(processor, scope, PollOptions(path="/events", interval=0))
        engine.start()
        await _wait_for_requests(server, 1)

        engine.close()
        server.gate.set()
        await engine.join()
        assert engine.closed
        assert engine.state.data is None

        engine.start()
        await asyncio.sleep(0.01)
        assert len(server.requests) == 1

    async def test_reconfigure_restarts_session(
        self, processor: ResponseProcessor, scope: Scope, server: FakeServer
    ) -> None:
        server.respond = lambda request: indexed("3", {"path": request.url.path})
        engine = LongPollEngine(processor, scope, PollOptions(path="/a", interval=10))
        engine.start()
        await _wait_for_requests(server, 1)
        assert engine.state.session_index == "3"

        engine.reconfigure(PollOptions(path="/b", interval=10))
        await _wait_for_requests(server, 2)
        assert server.requests[1].url.path == "/b"
        assert server.requests[1].headers["prefer"] == "wait=60s;"
        engine.close()
        await engine.join()

    async def test_mock_never_polls(
        self, processor: ResponseProcessor, scope: Scope, server: FakeServer
    ) -> None:
        engine = LongPollEngine(
            processor, scope, PollOptions(path="/events", mock=MockOutcome(data=["x"]))
        )
        engine.start()
        await asyncio.sleep(0.01)
        assert engine.state.data == ["x"]
        assert server.requests == []

    async def test_async_context_manager(
        self, processor: ResponseProcessor, scope: Scope, server: FakeServer
    ) -> None:
        async with LongPollEngine(processor, scope, PollOptions(path="/events", interval=0)) as engine:
            await engine.join()
        assert engine.closed
        assert len(server.requests) == 1
