from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict


class ErrorKind(StrEnum):
    TRANSPORT = "transport"
    HTTP_STATUS = "http_status"
    PARSE = "parse"
    RESOLVE = "resolve"
    # A request_options callable or an until predicate raised
    CALLBACK = "callback"


class NormalizedError(BaseModel):
    """The single error shape committed to state for every failure path."""

    model_config = ConfigDict(frozen=True)

    message: str
    data: Any = None
    status: int | None = None
    kind: ErrorKind = ErrorKind.HTTP_STATUS


class RestCycleError(Exception):
    """Raised when a request cannot produce a usable response.

    Carries the NormalizedError that was (or would have been) committed to
    controller state, so callers handling the exception and callers
    observing state see the same value.
    """

    def __init__(self, error: NormalizedError) -> None:
        super().__init__(error.message)
        self.error = error
        self.message = error.message

    @property
    def kind(self) -> ErrorKind:
        return self.error.kind

    def to_dict(self) -> dict:
        return {
            "error": {
                "kind": self.error.kind,
                "message": self.error.message,
                "status": self.error.status,
                "data": self.error.data,
            }
        }


class MutationError(RestCycleError):
    """Raised from ``MutationController.mutate`` when the mutation failed."""


class RequestAborted(Exception):
    """The attempt's cancellation token was invalidated before it completed.

    Internal signal only: controllers catch it and discard the attempt.
    """
