"""Webhook delivery with HMAC signatures and exponential backoff retry.

Every event sent to a subscription becomes a durable DeliveryRecord. The
first attempt is made immediately; failed attempts are re-tried by the
retry sweep once their backoff has elapsed, until the record reaches
``success`` or ``failed``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Literal

import httpx

from deskhook import __version__
from deskhook.config import settings
from deskhook.exceptions import DeliveryClaimLostError, DeliveryPersistenceError, StorageError
from deskhook.logging import delivery_context
from deskhook.models import (
    MAX_TIMEOUT_MS,
    DeliveryAttempt,
    DeliveryRecord,
    SweepResult,
    WebhookEnvelope,
    WebhookEventType,
    WebhookSubscription,
    WebhookTestResult,
    generate_id,
    utcnow,
)

from .scheduler import decide
from .signing import compute_signature, serialize_payload

if TYPE_CHECKING:
    from deskhook.storage import WebhookStorage

logger = logging.getLogger(__name__)

USER_AGENT = f"deskhook-webhooks/{__version__}"
EVENT_HEADER = "X-Webhook-Event"
DELIVERY_ID_HEADER = "X-Webhook-Delivery-Id"
TIMESTAMP_HEADER = "X-Webhook-Timestamp"
SIGNATURE_HEADER = "X-Webhook-Signature"
TEST_EVENT = "webhook.test"

# A sweep claim must outlive the longest HTTP call it covers
MIN_CLAIM_LEASE_SECONDS = MAX_TIMEOUT_MS // 1000 + 30

RetryOutcome = Literal["success", "retrying", "failed", "skipped"]


def build_headers(
    custom: dict[str, str],
    event: str,
    delivery_id: str,
    timestamp: str,
    signature: str,
) -> dict[str, str]:
    """Merge subscription headers with the system headers.

    System headers always win; a custom header is dropped when it differs
    from one only by case.
    """
    system = {
        "User-Agent": USER_AGENT,
        "Content-Type": "application/json",
        EVENT_HEADER: event,
        DELIVERY_ID_HEADER: delivery_id,
        TIMESTAMP_HEADER: timestamp,
        SIGNATURE_HEADER: signature,
    }
    reserved = {name.lower() for name in system}
    headers = {name: value for name, value in custom.items() if name.lower() not in reserved}
    headers.update(system)
    return headers


@dataclass(frozen=True)
class AttemptOutcome:
    """Result of one HTTP call, before it is applied to a record."""

    attempt: DeliveryAttempt
    response_body: str | None = None
    response_headers: dict[str, str] | None = None


class WebhookDispatcher:
    """Dispatches helpdesk events to subscribed endpoints.

    Handles:
    - Finding active subscriptions for an event
    - Signing bodies with HMAC-SHA256
    - Recording each attempt and applying the retry decision
    - Sweeping due retries under an exclusive claim

    Example:
        ```python
        dispatcher = WebhookDispatcher(storage)

        # Fan an event out to all subscribed webhooks
        await dispatcher.notify(WebhookEventType.TICKET_CREATED, {"ticket_id": "T-1"})

        # Re-attempt deliveries whose backoff elapsed
        await dispatcher.process_retries()
        ```
    """

    def __init__(
        self,
        storage: WebhookStorage,
        max_concurrent: int | None = None,
        response_body_max_chars: int | None = None,
        claim_lease_seconds: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the webhook dispatcher.

        Args:
            storage: WebhookStorage for subscriptions and delivery records.
            max_concurrent: Maximum HTTP calls in flight, and records one sweep
                works on at once.
            response_body_max_chars: Stored response bodies are cut to this length.
            claim_lease_seconds: How long a sweep claim stays valid; never less
                than ``MIN_CLAIM_LEASE_SECONDS``.
            transport: Optional httpx transport (tests pass ``httpx.MockTransport``).
            clock: Source of "now" for timestamps and retry scheduling.
        """
        self._storage = storage
        self._max_concurrent = max_concurrent or settings.max_concurrent_deliveries
        self._body_limit = (
            response_body_max_chars
            if response_body_max_chars is not None
            else settings.response_body_max_chars
        )
        self._lease_seconds = max(
            claim_lease_seconds or settings.claim_lease_seconds, MIN_CLAIM_LEASE_SECONDS
        )
        self._transport = transport
        self._clock = clock
        self._semaphore = asyncio.Semaphore(self._max_concurrent)
        self._sweep_slots = asyncio.Semaphore(self._max_concurrent)

    @property
    def claim_lease(self) -> timedelta:
        return timedelta(seconds=self._lease_seconds)

    async def notify(
        self,
        event: WebhookEventType | str,
        data: dict[str, Any],
        metadata: dict[str, Any] | None = None,
    ) -> list[str]:
        """Deliver an event to every active subscription listening to it.

        Subscriptions are served concurrently. A failure for one of them is
        logged and does not affect the others.

        Args:
            event: Event type that occurred.
            data: Event-specific payload.
            metadata: Optional extra context included in the envelope.

        Returns:
            IDs of the delivery records created.
        """
        event = WebhookEventType(event)
        subscriptions = await self._storage.get_subscriptions_for_event(event)
        if not subscriptions:
            logger.debug("No webhooks subscribed to event %s", event.value)
            return []

        envelope = WebhookEnvelope(
            event=event, timestamp=self._clock(), data=data, metadata=metadata
        )
        payload = envelope.to_payload()

        results = await asyncio.gather(
            *(self.deliver(subscription, event, payload) for subscription in subscriptions),
            return_exceptions=True,
        )

        delivery_ids: list[str] = []
        for subscription, result in zip(subscriptions, results, strict=True):
            if isinstance(result, DeliveryPersistenceError):
                logger.error(
                    "Webhook %s attempted but not recorded: %s", subscription.id, result.message
                )
                delivery_ids.append(result.delivery_id)
            elif isinstance(result, Exception):
                logger.error("Webhook delivery to %s failed: %s", subscription.id, result)
            elif isinstance(result, BaseException):
                raise result
            else:
                delivery_ids.append(result.id)
        return delivery_ids

    async def deliver(
        self,
        subscription: WebhookSubscription,
        event: WebhookEventType,
        payload: dict[str, Any],
    ) -> DeliveryRecord:
        """Create a delivery record and make its first attempt.

        Raises:
            StorageError: If the record could not be created (nothing was sent).
            DeliveryPersistenceError: If the attempt was made but its
                outcome could not be saved.
        """
        now = self._clock()
        record = DeliveryRecord(
            webhook_id=subscription.id,
            event=event,
            payload=payload,
            url=str(subscription.url),
            http_method=subscription.http_method,
            headers=dict(subscription.headers),
            created_at=now,
            updated_at=now,
        )
        await self._storage.save_delivery(record)

        with delivery_context(subscription.id, record.id):
            return await self._run_attempt(subscription, record)

    async def attempt(
        self,
        subscription: WebhookSubscription,
        record: DeliveryRecord,
    ) -> AttemptOutcome:
        """Make one HTTP call for a record without changing the record."""
        return await self._send(
            subscription,
            payload=record.payload,
            attempt_number=record.attempt_count + 1,
            delivery_id=record.id,
            event_header=record.event.value,
            url=record.url,
            method=record.http_method,
            custom_headers=record.headers,
        )

    async def _run_attempt(
        self,
        subscription: WebhookSubscription,
        record: DeliveryRecord,
        claim_token: str | None = None,
    ) -> DeliveryRecord:
        """Attempt, apply the retry decision, and persist the result."""
        outcome = await self.attempt(subscription, record)
        attempt = outcome.attempt
        record.append_attempt(attempt)

        decision = decide(
            subscription.retry_policy,
            attempts_made=record.attempt_count,
            succeeded=attempt.succeeded,
            now=self._clock(),
        )
        if decision.status == "success":
            record.mark_success(
                outcome.response_body, outcome.response_headers, delivered_at=attempt.timestamp
            )
        elif decision.status == "retrying":
            assert decision.next_retry_at is not None
            record.mark_retrying(
                decision.next_retry_at,
                attempt.error_message,
                outcome.response_body,
                outcome.response_headers,
            )
        else:
            record.mark_failed(
                attempt.error_message, outcome.response_body, outcome.response_headers
            )

        await self._persist_outcome(subscription.id, attempt, record, claim_token)

        if record.status == "success":
            logger.info(
                "Webhook delivered: %s to %s (status %s)",
                record.event.value,
                record.url,
                attempt.response_status,
            )
        elif record.status == "retrying":
            assert record.next_retry_at is not None
            logger.info(
                "Webhook scheduled for retry: %s to %s (attempt %d failed, next at %s)",
                record.event.value,
                record.url,
                attempt.attempt_number,
                record.next_retry_at.isoformat(),
            )
        else:
            logger.warning(
                "Webhook failed permanently: %s to %s after %d attempts (%s)",
                record.event.value,
                record.url,
                record.attempt_count,
                attempt.error_message,
            )
        return record

    async def _persist_outcome(
        self,
        webhook_id: str,
        attempt: DeliveryAttempt,
        record: DeliveryRecord | None = None,
        claim_token: str | None = None,
    ) -> None:
        """Record an attempt in the ledger and save its delivery record.

        A record held under a sweep claim is written first, fenced on the
        claim token. If the claim was taken over the attempt is recorded
        nowhere and DeliveryClaimLostError is raised.
        """
        delivery_id = record.id if record is not None else None
        try:
            if record is not None and claim_token is not None:
                if not await self._storage.save_claimed_delivery(record, claim_token):
                    raise DeliveryClaimLostError(record.id, attempt.attempt_number)
            await self._storage.record_outcome(webhook_id, attempt, delivery_id=delivery_id)
            await self._storage.touch_subscription(webhook_id, attempt.timestamp)
            if record is not None and claim_token is None:
                await self._storage.save_delivery(record)
        except StorageError as e:
            raise DeliveryPersistenceError(delivery_id or webhook_id, attempt, e.message) from e

    async def _send(
        self,
        subscription: WebhookSubscription,
        payload: dict[str, Any],
        attempt_number: int,
        delivery_id: str,
        event_header: str,
        url: str | None = None,
        method: str | None = None,
        custom_headers: dict[str, str] | None = None,
    ) -> AttemptOutcome:
        body = serialize_payload(payload)
        headers = build_headers(
            subscription.headers if custom_headers is None else custom_headers,
            event=event_header,
            delivery_id=delivery_id,
            timestamp=str(payload.get("timestamp", "")),
            signature=compute_signature(subscription.secret, body),
        )

        status: int | None = None
        error: str | None = None
        response_body: str | None = None
        response_headers: dict[str, str] | None = None

        started_at = self._clock()
        async with self._semaphore:
            start = time.monotonic()
            try:
                async with httpx.AsyncClient(transport=self._transport, timeout=None) as client:
                    response = await asyncio.wait_for(
                        client.request(
                            method or subscription.http_method,
                            url or str(subscription.url),
                            content=body,
                            headers=headers,
                        ),
                        timeout=subscription.timeout_seconds,
                    )
                status = response.status_code
                response_body = response.text[: self._body_limit] if response.text else None
                response_headers = dict(response.headers)
                if not 200 <= status < 300:
                    error = f"HTTP {status}: {response.reason_phrase}"
            except (TimeoutError, httpx.TimeoutException):
                error = f"Request timed out after {subscription.timeout_ms}ms"
            except httpx.HTTPError as e:
                error = str(e) or type(e).__name__
            elapsed_ms = int((time.monotonic() - start) * 1000)

        attempt = DeliveryAttempt(
            attempt_number=attempt_number,
            timestamp=started_at,
            response_status=status,
            response_time_ms=elapsed_ms,
            error_message=error,
        )
        return AttemptOutcome(attempt, response_body, response_headers)

    async def test_webhook(self, subscription: WebhookSubscription) -> WebhookTestResult:
        """Send one synthetic event to check that an endpoint is reachable.

        No delivery record is created and nothing is retried; the outcome
        still counts towards the subscription's delivery counters.
        """
        envelope = WebhookEnvelope.for_test(timestamp=self._clock())
        with delivery_context(subscription.id):
            outcome = await self._send(
                subscription,
                payload=envelope.to_payload(),
                attempt_number=1,
                delivery_id=generate_id("test"),
                event_header=TEST_EVENT,
            )
            attempt = outcome.attempt
            await self._persist_outcome(subscription.id, attempt)

        if attempt.succeeded:
            message = "Webhook test successful"
        else:
            message = f"Webhook test failed: {attempt.error_message}"
        logger.info("Webhook test for %s: %s", subscription.id, message)

        return WebhookTestResult(
            success=attempt.succeeded,
            message=message,
            status_code=attempt.response_status,
            response_time_ms=attempt.response_time_ms,
        )

    async def process_retries(
        self,
        now: datetime | None = None,
        limit: int | None = None,
    ) -> SweepResult:
        """Re-attempt every retrying delivery whose backoff has elapsed.

        Each record is claimed right before it is dispatched, once one of
        ``max_concurrent`` sweep slots is free, so concurrent sweeps (in
        one process or many) never attempt the same record twice. Writes
        are fenced on the claim: a sweep whose claim was taken over after
        its lease ran out records nothing and counts the record under
        ``errors``.

        Args:
            now: Sweep time. Defaults to the dispatcher clock.
            limit: Maximum records handled in this sweep.

        Returns:
            SweepResult tallying what happened to each due record.
        """
        now = now or self._clock()
        due = await self._storage.list_due_deliveries(
            now, self.claim_lease, limit=limit or settings.sweep_batch_size
        )
        result = SweepResult()
        if not due:
            return result

        outcomes = await asyncio.gather(
            *(self._retry_one(record.id, now) for record in due),
            return_exceptions=True,
        )
        for record, outcome in zip(due, outcomes, strict=True):
            if isinstance(outcome, Exception):
                logger.error("Retry of delivery %s failed: %s", record.id, outcome)
                result.errors += 1
            elif isinstance(outcome, BaseException):
                raise outcome
            elif outcome == "skipped":
                result.skipped += 1
            else:
                result.processed += 1
                if outcome == "success":
                    result.succeeded += 1
                elif outcome == "retrying":
                    result.retrying += 1
                else:
                    result.failed += 1

        logger.info(
            "Retry sweep finished: %d processed (%d ok, %d retrying, %d failed), "
            "%d skipped, %d errors",
            result.processed,
            result.succeeded,
            result.retrying,
            result.failed,
            result.skipped,
            result.errors,
        )
        return result

    async def _retry_one(self, delivery_id: str, now: datetime) -> RetryOutcome:
        # Claim only once a slot is free, so the lease runs while the record is worked on
        async with self._sweep_slots:
            record = await self._storage.claim_delivery(
                delivery_id, max(now, self._clock()), self.claim_lease
            )
            if record is None:
                return "skipped"
            claim_token = record.claim_token
            assert claim_token is not None

            with delivery_context(record.webhook_id, record.id):
                try:
                    subscription = await self._storage.get_subscription(record.webhook_id)
                except StorageError:
                    await self._release(record.id, claim_token)
                    raise

                if subscription is None or not subscription.is_active:
                    reason = (
                        "Subscription not found"
                        if subscription is None
                        else "Subscription is inactive"
                    )
                    record.mark_failed(reason)
                    if not await self._storage.save_claimed_delivery(record, claim_token):
                        raise DeliveryClaimLostError(record.id)
                    logger.warning("Delivery %s abandoned: %s", record.id, reason)
                    return "failed"

                record = await self._run_attempt(subscription, record, claim_token)
                return record.status  # type: ignore[return-value]

    async def _release(self, delivery_id: str, claim_token: str) -> None:
        try:
            await self._storage.release_delivery(delivery_id, claim_token)
        except StorageError as e:
            logger.warning(
                "Could not release claim on %s, it lapses with its lease: %s",
                delivery_id,
                e.message,
            )
