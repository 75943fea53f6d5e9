"""Test helpers shared across modules."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx

from deskhook.models import RetryPolicy, WebhookEventType, WebhookSubscription

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


class FakeClock:
    """Settable clock passed to dispatchers and sweepers."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingHandler:
    """httpx.MockTransport handler replaying a script of responses.

    Each entry is a status code or an exception instance to raise. The
    last entry repeats once the script runs out.
    """

    def __init__(self, *script: int | Exception, body: str = "ok") -> None:
        self.script = list(script) or [200]
        self.body = body
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        index = min(len(self.requests), len(self.script) - 1)
        self.requests.append(request)
        step = self.script[index]
        if isinstance(step, Exception):
            raise step
        return httpx.Response(step, text=self.body)

    @property
    def calls(self) -> int:
        return len(self.requests)


class GatedHandler:
    """Async MockTransport handler that holds every request until released."""

    def __init__(self, status: int = 200) -> None:
        self.status = status
        self.entered = asyncio.Event()
        self.released = asyncio.Event()
        self.delivery_ids: list[str] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.delivery_ids.append(request.headers["X-Webhook-Delivery-Id"])
        self.entered.set()
        await self.released.wait()
        return httpx.Response(self.status)


def make_subscription(**overrides: Any) -> WebhookSubscription:
    """Build a subscription with sensible test defaults."""
    values: dict[str, Any] = {
        "name": "CRM sync",
        "created_by": "admin_1",
        "url": "https://hooks.example.com/helpdesk",
        "secret": "s3cret-s3cret-s3cret",
        "events": [WebhookEventType.TICKET_CREATED],
        "retry_policy": RetryPolicy(max_retries=3, retry_delay_ms=1000, backoff_multiplier=2.0),
        "created_at": T0,
        "updated_at": T0,
    }
    values.update(overrides)
    return WebhookSubscription(**values)
