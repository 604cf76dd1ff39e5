from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    import httpx

    from restcycle.cancellation import CancellationToken
    from restcycle.errors import NormalizedError


@dataclass(frozen=True)
class RequestDescriptor:
    """One concrete attempt. Built fresh per attempt, never mutated."""

    method: str
    url: str
    headers: Mapping[str, str]
    body: str | bytes | None
    token: CancellationToken
    timeout: float | None = None


@dataclass(frozen=True)
class FetchOutcome:
    """The unresolved result of one network exchange."""

    response: httpx.Response
    raw_body: str
    data: Any  # Parsed JSON, text, or None for an empty body
    ok: bool
    status: int
    status_text: str
    parse_failed: bool = False
    parse_error: str | None = None

    @property
    def headers(self) -> httpx.Headers:
        return self.response.headers


@dataclass(frozen=True)
class LifecycleState:
    """Snapshot handed to subscribers after every commit.

    ``data`` from a previous success survives a new ``loading`` transition
    until the new attempt settles.
    """

    data: Any = None
    loading: bool = False
    error: NormalizedError | None = None
    response: httpx.Response | None = None


@dataclass(frozen=True)
class PollState(LifecycleState):
    polling: bool = False
    finished: bool = False
    session_index: str | None = None
