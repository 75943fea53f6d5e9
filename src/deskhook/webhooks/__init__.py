"""Webhook delivery system for deskhook.

Provides HMAC-signed delivery, the retry decision, and the periodic
retry sweeper.

Example:
    ```python
    from deskhook.webhooks import WebhookDispatcher

    dispatcher = WebhookDispatcher(storage)
    await dispatcher.notify("ticket.created", {"ticket_id": "T-1042"})
    await dispatcher.process_retries()
    ```
"""

from .delivery import (
    MIN_CLAIM_LEASE_SECONDS,
    SIGNATURE_HEADER,
    TEST_EVENT,
    USER_AGENT,
    AttemptOutcome,
    WebhookDispatcher,
    build_headers,
)
from .scheduler import RetryDecision, decide
from .signing import compute_signature, serialize_payload, verify_signature
from .sweeper import RetrySweeper, SweepTask

__all__ = [
    "MIN_CLAIM_LEASE_SECONDS",
    "SIGNATURE_HEADER",
    "TEST_EVENT",
    "USER_AGENT",
    "AttemptOutcome",
    "RetryDecision",
    "RetrySweeper",
    "SweepTask",
    "WebhookDispatcher",
    "build_headers",
    "compute_signature",
    "decide",
    "serialize_payload",
    "verify_signature",
]
