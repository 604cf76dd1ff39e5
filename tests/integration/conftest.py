"""Integration test fixtures.

Provides a RestProvider wired to a real httpx.AsyncClient; tests mock the
network with respx.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import pytest

from restcycle.config import Settings
from restcycle.provider import RestProvider, open_provider

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

BASE = "https://api.fake/v1"


@pytest.fixture()
async def provider() -> AsyncIterator[RestProvider]:
    """Provider rooted at BASE, sharing one client for the whole test."""
    settings = Settings(poll={"interval_seconds": 0})
    async with httpx.AsyncClient() as client:
        async with open_provider(BASE, settings=settings, client=client) as provider:
            yield provider
