"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
import pytest
from qdrant_client import AsyncQdrantClient

from deskhook.storage import WebhookStorage
from deskhook.webhooks import WebhookDispatcher

# Add tests directory to path so helpers can be imported
tests_dir = Path(__file__).parent
if str(tests_dir) not in sys.path:
    sys.path.insert(0, str(tests_dir))

from helpers import FakeClock  # noqa: E402


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def storage():
    """In-memory storage using qdrant-client's local mode."""
    store = WebhookStorage(prefix="test", client=AsyncQdrantClient(location=":memory:"))
    await store.initialize()

    yield store

    await store.client.close()


@pytest.fixture
def dispatcher_factory(
    storage: WebhookStorage, clock: FakeClock
) -> Callable[..., WebhookDispatcher]:
    """Build a dispatcher whose HTTP calls go to a MockTransport handler."""

    def build(handler: Callable[..., Any], **kwargs: Any) -> WebhookDispatcher:
        return WebhookDispatcher(
            storage,
            max_concurrent=kwargs.pop("max_concurrent", 5),
            response_body_max_chars=kwargs.pop("response_body_max_chars", 1000),
            claim_lease_seconds=kwargs.pop("claim_lease_seconds", 600),
            transport=httpx.MockTransport(handler),
            clock=kwargs.pop("clock", clock),
        )

    return build
