"""Protocol interfaces for swappable components.

Controllers reference these protocols, not the concrete implementations.
This allows:
- Tests to drive controllers with scripted in-memory processors
- Alternative transports to be swapped without changing controller code
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from restcycle.errors import NormalizedError
    from restcycle.models.options import ResolveFunction
    from restcycle.models.state import FetchOutcome, RequestDescriptor


class ProcessorProtocol(Protocol):
    """Interface for executing a request and normalizing its outcome."""

    async def execute(self, descriptor: RequestDescriptor) -> FetchOutcome: ...

    async def normalize(
        self,
        outcome: FetchOutcome,
        resolve: ResolveFunction | None = None,
        previous: Any = ...,
    ) -> tuple[Any, NormalizedError | None]: ...
