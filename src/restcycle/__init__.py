"""restcycle: declarative HTTP request lifecycles and long-polling for asyncio.

Typical use::

    async with open_provider("https://api.example.com") as provider:
        async with provider.nest("users").get("42") as user:
            await user.join()
            print(user.state.data)
"""

from __future__ import annotations

import warnings
from importlib.metadata import PackageNotFoundError, version

from restcycle.config import Settings
from restcycle.errors import ErrorKind, MutationError, NormalizedError, RestCycleError
from restcycle.lifecycle import LifecycleController
from restcycle.models import (
    DebounceSettings,
    GetOptions,
    LifecycleState,
    MockOutcome,
    MutateOptions,
    PollOptions,
    PollState,
    QueryStringOptions,
    Scope,
)
from restcycle.mutate import MutationController
from restcycle.poll import LongPollEngine
from restcycle.provider import RestProvider, open_provider

try:
    __version__ = version("restcycle")
except PackageNotFoundError:
    warnings.warn(
        "restcycle is not installed; __version__ falls back to '0.0.0+unknown'.",
        RuntimeWarning,
        stacklevel=2,
    )
    __version__ = "0.0.0+unknown"

__all__ = [
    "__version__",
    "open_provider",
    "RestProvider",
    "Settings",
    # controllers
    "LifecycleController",
    "MutationController",
    "LongPollEngine",
    # options and state
    "Scope",
    "GetOptions",
    "MutateOptions",
    "PollOptions",
    "QueryStringOptions",
    "DebounceSettings",
    "MockOutcome",
    "LifecycleState",
    "PollState",
    # errors
    "ErrorKind",
    "NormalizedError",
    "RestCycleError",
    "MutationError",
]
