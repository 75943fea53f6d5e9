"""Webhook service layer.

Combines storage and the dispatcher behind one interface used by the
API, the sweeper, and any in-process caller that emits helpdesk events.

Example:
    ```python
    from deskhook.service import WebhookService

    async with WebhookService.create() as hooks:
        subscription = await hooks.create_webhook(
            name="CRM sync",
            url="https://crm.example.com/hooks",
            events=["ticket.created"],
            created_by="admin_1",
        )
        await hooks.notify("ticket.created", {"ticket_id": "T-1042"})
    ```
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from deskhook.config import Settings
from deskhook.exceptions import NotFoundError, ValidationError
from deskhook.logging import get_logger
from deskhook.models import (
    DeliveryRecord,
    DeliveryStatus,
    RetryPolicy,
    SweepResult,
    WebhookEventType,
    WebhookSubscription,
    WebhookTestResult,
    utcnow,
)
from deskhook.storage import DeliveryStats, WebhookStorage
from deskhook.webhooks import RetrySweeper, SweepTask, WebhookDispatcher

logger = get_logger(__name__)

# Fields a caller may change on an existing subscription
UPDATABLE_FIELDS = frozenset(
    {
        "name",
        "url",
        "secret",
        "events",
        "is_active",
        "headers",
        "http_method",
        "retry_policy",
        "timeout_ms",
    }
)


def generate_secret() -> str:
    """Random 64-character hex secret for a new subscription."""
    return secrets.token_hex(32)


def _to_validation_error(error: PydanticValidationError) -> ValidationError:
    first = error.errors()[0]
    field_name = ".".join(str(part) for part in first["loc"]) or "body"
    return ValidationError(field_name, first["msg"])


def _parse_event(event: WebhookEventType | str) -> WebhookEventType:
    try:
        return WebhookEventType(event)
    except ValueError:
        raise ValidationError("event", f"Unknown event type: {event}") from None


@dataclass
class WebhookService:
    """High-level webhook service.

    This service provides:
    - Subscription CRUD with validation (secrets generated on create)
    - notify(): fan an event out to matching subscriptions
    - test_webhook(): one-off reachability check
    - process_retries(): the claim-based retry sweep
    - Delivery history, statistics, and retention purge

    Attributes:
        storage: Qdrant-backed webhook storage.
        dispatcher: Delivery engine sharing the same storage.
        settings: Configuration settings.
    """

    storage: WebhookStorage
    dispatcher: WebhookDispatcher
    settings: Settings
    _sweeper: RetrySweeper | None = field(default=None, init=False, repr=False)

    @classmethod
    def create(cls, settings: Settings | None = None, **dispatcher_kwargs: Any) -> WebhookService:
        """Create a WebhookService with default dependencies.

        Args:
            settings: Optional settings. Uses defaults if None.
            **dispatcher_kwargs: Passed to WebhookDispatcher (e.g. ``transport``).

        Returns:
            Configured WebhookService instance.
        """
        if settings is None:
            settings = Settings()

        storage = WebhookStorage(
            url=settings.qdrant_url,
            api_key=settings.qdrant_api_key,
            prefix=settings.collection_prefix,
        )
        dispatcher = WebhookDispatcher(
            storage,
            max_concurrent=settings.max_concurrent_deliveries,
            response_body_max_chars=settings.response_body_max_chars,
            claim_lease_seconds=settings.claim_lease_seconds,
            **dispatcher_kwargs,
        )
        return cls(storage=storage, dispatcher=dispatcher, settings=settings)

    async def initialize(self) -> None:
        """Initialize storage collections."""
        await self.storage.initialize()

    async def close(self) -> None:
        """Stop the sweeper (if running) and close storage."""
        if self._sweeper is not None:
            await self._sweeper.stop()
            self._sweeper = None
        await self.storage.close()

    async def __aenter__(self) -> WebhookService:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    # Registry

    async def create_webhook(
        self,
        name: str,
        url: str,
        events: list[WebhookEventType | str],
        created_by: str,
        secret: str | None = None,
        headers: dict[str, str] | None = None,
        http_method: str = "POST",
        retry_policy: RetryPolicy | dict[str, Any] | None = None,
        timeout_ms: int = 30_000,
        is_active: bool = True,
    ) -> WebhookSubscription:
        """Register a new subscription.

        The returned subscription carries the secret; it is the only
        response that should ever show it to the caller.

        Raises:
            ValidationError: If any field is invalid.
        """
        try:
            subscription = WebhookSubscription.model_validate(
                {
                    "name": name,
                    "url": url,
                    "events": events,
                    "created_by": created_by,
                    "secret": secret or generate_secret(),
                    "headers": headers or {},
                    "http_method": http_method,
                    "retry_policy": retry_policy or RetryPolicy(),
                    "timeout_ms": timeout_ms,
                    "is_active": is_active,
                }
            )
        except PydanticValidationError as e:
            raise _to_validation_error(e) from e

        await self.storage.store_subscription(subscription)
        logger.info(
            "Webhook created",
            webhook_id=subscription.id,
            url=str(subscription.url),
            events=[e.value for e in subscription.events],
        )
        return subscription

    async def get_webhook(
        self, webhook_id: str, created_by: str | None = None
    ) -> WebhookSubscription:
        """Get a subscription, optionally scoped to its owner.

        Raises:
            NotFoundError: If missing or owned by someone else.
        """
        subscription = await self.storage.get_subscription(webhook_id)
        if subscription is None or (
            created_by is not None and subscription.created_by != created_by
        ):
            raise NotFoundError("webhook", webhook_id)
        return subscription

    async def list_webhooks(
        self,
        created_by: str | None = None,
        event: WebhookEventType | str | None = None,
        active_only: bool = False,
    ) -> list[WebhookSubscription]:
        """List subscriptions, newest first."""
        return await self.storage.list_subscriptions(
            created_by=created_by,
            event=_parse_event(event) if event is not None else None,
            active_only=active_only,
        )

    async def find_active(self, event: WebhookEventType | str) -> list[WebhookSubscription]:
        """Active subscriptions listening to ``event``."""
        return await self.storage.get_subscriptions_for_event(_parse_event(event))

    async def update_webhook(
        self,
        webhook_id: str,
        created_by: str | None = None,
        **updates: Any,
    ) -> WebhookSubscription:
        """Apply a partial update and re-validate the whole subscription.

        ``retry_policy`` may be given partially; missing keys keep their
        current values.

        Raises:
            NotFoundError: If the subscription does not exist.
            ValidationError: If a field is unknown, immutable, or invalid.
        """
        unknown = set(updates) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(sorted(unknown)[0], "Field cannot be updated")

        current = await self.get_webhook(webhook_id, created_by)
        data = current.model_dump(mode="json", exclude={"success_rate"})

        policy_update = updates.pop("retry_policy", None)
        if isinstance(policy_update, RetryPolicy):
            policy_update = policy_update.model_dump()
        if policy_update is not None:
            data["retry_policy"] = {**data["retry_policy"], **policy_update}

        data.update(updates)
        data["updated_at"] = utcnow()

        try:
            subscription = WebhookSubscription.model_validate(data)
        except PydanticValidationError as e:
            raise _to_validation_error(e) from e

        await self.storage.store_subscription(subscription)
        logger.info("Webhook updated", webhook_id=webhook_id, fields=sorted(updates))
        return subscription

    async def delete_webhook(self, webhook_id: str, created_by: str | None = None) -> None:
        """Delete a subscription and all of its delivery records.

        Raises:
            NotFoundError: If the subscription does not exist.
        """
        await self.get_webhook(webhook_id, created_by)
        await self.storage.delete_subscription(webhook_id)
        logger.info("Webhook deleted", webhook_id=webhook_id)

    # Delivery

    async def notify(
        self,
        event: WebhookEventType | str,
        data: dict[str, Any],
        metadata: dict[str, Any] | None = None,
    ) -> list[str]:
        """Deliver an event to all matching subscriptions.

        Returns:
            IDs of the delivery records created.
        """
        return await self.dispatcher.notify(_parse_event(event), data, metadata)

    async def test_webhook(
        self, webhook_id: str, created_by: str | None = None
    ) -> WebhookTestResult:
        """Send a synthetic event to one subscription.

        Raises:
            NotFoundError: If the subscription does not exist.
        """
        subscription = await self.get_webhook(webhook_id, created_by)
        return await self.dispatcher.test_webhook(subscription)

    async def process_retries(
        self, now: datetime | None = None, limit: int | None = None
    ) -> SweepResult:
        """Run one retry sweep."""
        return await self.dispatcher.process_retries(now=now, limit=limit)

    # History

    async def list_deliveries(
        self,
        webhook_id: str,
        status: DeliveryStatus | None = None,
        limit: int = 50,
    ) -> list[DeliveryRecord]:
        """Delivery records of one subscription, newest first."""
        return await self.storage.list_deliveries(webhook_id, status=status, limit=limit)

    async def get_delivery(self, delivery_id: str) -> DeliveryRecord:
        """Get one delivery record.

        Raises:
            NotFoundError: If the record does not exist.
        """
        record = await self.storage.get_delivery(delivery_id)
        if record is None:
            raise NotFoundError("delivery", delivery_id)
        return record

    async def get_delivery_stats(self, webhook_id: str, days: int = 30) -> DeliveryStats:
        """Per-status counts and response times over the last ``days`` days."""
        if days < 1:
            raise ValidationError("days", "Must be at least 1")
        return await self.storage.get_delivery_stats(webhook_id, days=days)

    async def purge_expired(self, now: datetime | None = None) -> int:
        """Delete delivery records past the retention window.

        Returns:
            Number of records deleted.
        """
        cutoff = (now or utcnow()) - timedelta(days=self.settings.delivery_retention_days)
        deleted = await self.storage.purge_deliveries(cutoff)
        if deleted:
            logger.info("Purged expired deliveries", deleted=deleted, cutoff=cutoff.isoformat())
        return deleted

    # Background sweeping

    async def sweep_task(self, now: datetime) -> str | None:
        result = await self.process_retries(now=now)
        if result.processed == 0 and result.skipped == 0 and result.errors == 0:
            return None
        return (
            f"processed={result.processed} succeeded={result.succeeded} "
            f"retrying={result.retrying} failed={result.failed} skipped={result.skipped} "
            f"errors={result.errors}"
        )

    async def purge_task(self, now: datetime) -> str | None:
        deleted = await self.purge_expired(now)
        return f"deleted={deleted}" if deleted else None

    def build_sweeper(self) -> RetrySweeper:
        """Sweeper running the retry sweep and the retention purge."""
        return RetrySweeper(
            interval_seconds=self.settings.sweep_interval_seconds,
            tasks=[
                SweepTask(name="retry_sweep", fn=self.sweep_task),
                SweepTask(name="retention_purge", fn=self.purge_task),
            ],
        )

    @property
    def sweeper_running(self) -> bool:
        return self._sweeper is not None and self._sweeper.running

    async def start_sweeper(self) -> RetrySweeper:
        """Start the periodic sweeper (idempotent)."""
        if self._sweeper is None:
            self._sweeper = self.build_sweeper()
        await self._sweeper.start()
        return self._sweeper
