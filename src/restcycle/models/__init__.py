from __future__ import annotations

from restcycle.models.options import (
    DebounceSettings,
    FetchOptions,
    GetOptions,
    MockOutcome,
    MutateOptions,
    PollOptions,
    QueryStringOptions,
    Scope,
)
from restcycle.models.state import (
    FetchOutcome,
    LifecycleState,
    PollState,
    RequestDescriptor,
)

__all__ = [
    # options
    "Scope",
    "FetchOptions",
    "GetOptions",
    "MutateOptions",
    "PollOptions",
    "QueryStringOptions",
    "DebounceSettings",
    "MockOutcome",
    # state
    "RequestDescriptor",
    "FetchOutcome",
    "LifecycleState",
    "PollState",
]
