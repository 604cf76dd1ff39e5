"""structlog configuration for hosts embedding restcycle.

Hosts that already configure structlog can skip this; restcycle only ever
logs through ``structlog.get_logger()``.
"""

from __future__ import annotations

import logging
import sys
from typing import IO

import structlog

from restcycle.config import Settings

_RENDERERS = {
    "json": structlog.processors.JSONRenderer,
    "text": structlog.dev.ConsoleRenderer,
}


def _tag_library(name: str) -> structlog.types.Processor:
    def processor(logger: object, method_name: str, event_dict: dict) -> dict:
        event_dict.setdefault("library", name)
        return event_dict

    return processor


def setup_logging(settings: Settings, *, stream: IO[str] | None = None) -> None:
    """Route restcycle events to ``stream`` (stderr by default).

    Every record carries ``library="restcycle"`` unless the event binds its own.
    """
    config = settings.logging
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            _tag_library("restcycle"),
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            _RENDERERS[config.format](),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelNamesMapping()[config.level]
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream or sys.stderr),
        cache_logger_on_first_use=True,
    )
